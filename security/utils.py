import hmac
from typing import Optional


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Token from an ``Authorization: Bearer <token>`` header, else None."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token.strip():
        return None
    return token.strip()


def is_api_key_authorized(authorization: Optional[str], expected_key: Optional[str]) -> bool:
    if not expected_key:
        return False
    token = bearer_token(authorization)
    if token is None:
        return False
    return constant_time_equals(token, expected_key)
