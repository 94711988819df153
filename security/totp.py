import base64
import io
import re

import pyotp
import qrcode

_CODE_RE = re.compile(r"[0-9]{6}")


def normalize_code(code) -> str:
    """Drop all whitespace ("123 456" -> "123456")."""
    if code is None:
        return ""
    return "".join(str(code).split())


def is_valid_code_format(code: str) -> bool:
    """Exactly six ASCII digits."""
    return _CODE_RE.fullmatch(code) is not None


def new_secret() -> str:
    return pyotp.random_base32()


def provisioning_uri(secret: str, email: str, issuer: str) -> str:
    return pyotp.totp.TOTP(secret).provisioning_uri(name=email, issuer_name=issuer)


def qr_code_data_uri(otp_uri: str) -> str:
    # QR as data URI
    img = qrcode.make(otp_uri)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def verify_code(secret: str, code: str, valid_window: int = 1) -> bool:
    """Check `code` at the current step and `valid_window` steps either side.

    pyotp compares in constant time.
    """
    if not secret:
        return False
    return pyotp.TOTP(secret).verify(code, valid_window=valid_window)
