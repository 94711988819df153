import hashlib
import secrets

from itsdangerous import URLSafeTimedSerializer

TEMP_TOKEN_SALT = "temp-auth-token"


def new_token(nbytes: int = 32) -> str:
    """Opaque, URL-safe random token."""
    return secrets.token_urlsafe(nbytes)


def hash_token(token: str) -> str:
    """SHA-256 hex digest stored in place of the raw token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _serializer(secret_key: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=secret_key, salt=TEMP_TOKEN_SALT)


def sign_temp_token(secret_key: str, token_id: str, purpose: str) -> str:
    return _serializer(secret_key).dumps({"tid": token_id, "purpose": purpose})


def load_temp_token(secret_key: str, token: str, max_age: int) -> dict:
    """Return the signed payload.

    Raises itsdangerous.SignatureExpired when older than `max_age` seconds and
    itsdangerous.BadSignature for anything tampered with or malformed.
    """
    return _serializer(secret_key).loads(token, max_age=max_age)
