"""HTTP client for the auth endpoints.

Every endpoint has exactly one decoder that checks the envelope and the
payload shape it expects; anything else raises :class:`InvalidResponseShape`
rather than being passed through. Configuration comes in through
:class:`ClientConfig`, nothing is read from the environment.

    client = AuthAPIClient(ClientConfig(base_url="https://example.com"))
    client.request_magic_link("user@example.com")
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, TypeVar

import requests

T = TypeVar("T")

ROLES = ("owner", "admin", "subscriber")


@dataclass(frozen=True)
class ClientConfig:
    base_url: str
    timeout: float = 10.0


class APIError(Exception):
    """The server answered with an error (non-2xx or ``success: false``)."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429


class InvalidResponseShape(APIError):
    """The body does not match the contract of the endpoint that sent it."""


@dataclass(frozen=True)
class User:
    id: str
    email: str
    role: str


@dataclass(frozen=True)
class AuthSession:
    temp_token: str
    is_first_time: bool
    email: str
    totp_secret: Optional[str] = None
    qr_code_url: Optional[str] = None
    qr_code_data_uri: Optional[str] = None


# ----- Decoders -----

def _require(data: Dict[str, Any], key: str, kind: type) -> Any:
    value = data.get(key)
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise InvalidResponseShape(f"Expected {kind.__name__} at {key!r}")
    return value


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise InvalidResponseShape(f"Expected str at {key!r}")
    return value


def decode_message(data: Any) -> str:
    if not isinstance(data, dict):
        raise InvalidResponseShape("Expected an object")
    return _require(data, "message", str)


def decode_user(data: Any) -> User:
    """``{"user": {"id", "email", "role"}}``"""
    if not isinstance(data, dict):
        raise InvalidResponseShape("Expected an object")
    user = _require(data, "user", dict)
    role = _require(user, "role", str)
    if role not in ROLES:
        raise InvalidResponseShape(f"Unknown role {role!r}")
    return User(id=_require(user, "id", str), email=_require(user, "email", str), role=role)


def decode_auth_session(data: Any) -> AuthSession:
    if not isinstance(data, dict):
        raise InvalidResponseShape("Expected an object")
    is_first_time = _require(data, "is_first_time", bool)
    session = AuthSession(
        temp_token=_require(data, "temp_token", str),
        is_first_time=is_first_time,
        email=_require(data, "email", str),
        totp_secret=_optional_str(data, "totp_secret"),
        qr_code_url=_optional_str(data, "qr_code_url"),
        qr_code_data_uri=_optional_str(data, "qr_code_data_uri"),
    )
    if is_first_time and not (session.totp_secret and session.qr_code_url):
        raise InvalidResponseShape("First-time session without enrollment material")
    return session


def decode_envelope(response: requests.Response) -> Any:
    """Return ``data`` from ``{success, data?, error?}`` or raise."""
    try:
        body = response.json()
    except ValueError:
        raise InvalidResponseShape("Response is not JSON", response.status_code) from None

    if not isinstance(body, dict) or not isinstance(body.get("success"), bool):
        raise InvalidResponseShape("Missing envelope", response.status_code)

    if not (200 <= response.status_code < 300) or not body["success"]:
        error = body.get("error")
        if not isinstance(error, str) or not error:
            raise InvalidResponseShape("Error envelope without a message", response.status_code)
        raise APIError(error, response.status_code)

    return body.get("data")


# ----- Client -----

class AuthAPIClient:
    """Thin wrapper over the auth endpoints; keeps the session cookie between calls."""

    def __init__(self, config: ClientConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def _call(self, method: str, path: str, decoder: Callable[[Any], T], body: Optional[dict] = None) -> T:
        url = self.config.base_url.rstrip("/") + path
        try:
            response = self.session.request(method, url, json=body, timeout=self.config.timeout)
        except requests.RequestException as e:
            raise APIError(f"Network error: {e}") from e
        return decoder(decode_envelope(response))

    def request_magic_link(self, email: str) -> str:
        return self._call("POST", "/auth/request-magic-link", decode_message, {"email": email})

    def validate_magic_link(self, token: str) -> AuthSession:
        return self._call("POST", "/auth/validate-magic-link", decode_auth_session, {"token": token})

    def setup_totp(self, token: str, totp_code: str) -> User:
        return self._call("POST", "/auth/totp/setup", decode_user, {"token": token, "totpCode": totp_code})

    def verify_totp(self, token: str, totp_code: str) -> User:
        return self._call("POST", "/auth/totp/verify", decode_user, {"token": token, "totpCode": totp_code})

    def get_current_user(self) -> User:
        return self._call("GET", "/auth/me", decode_user)

    def logout(self) -> str:
        return self._call("POST", "/auth/logout", decode_message)
