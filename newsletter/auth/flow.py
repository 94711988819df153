"""Credential issuance: magic link -> temp token -> TOTP -> session.

Each public function is one step of the sign-in flow and raises an error from
:mod:`newsletter.errors` when the step cannot complete. The routes only
translate HTTP in and out.

Single use is enforced with conditional UPDATEs (``... WHERE used_at IS NULL``)
whose affected-row count decides who wins, so two concurrent requests can
never both consume the same token.
"""

import datetime as dt
import logging
import math
import threading
from dataclasses import dataclass
from typing import Optional

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired
from sqlalchemy import select, update

from security import totp
from security.email import build_magic_link_message, send_with_retry
from security.tokens import hash_token, load_temp_token, new_token, sign_temp_token

from .. import db, mail
from ..errors import (CodeFormatInvalid, CodeMismatch, TokenConsumed, TokenExpired,
                      TokenExpiredOrInvalid, TokenNotFound)
from ..models import MagicLinkToken, TempAuthToken, User, utcnow
from .sessions import create_session

logger = logging.getLogger(__name__)

SETUP = 'setup'
VERIFY = 'verify'

MAGIC_LINK_ACK = 'If the address is registered, a sign-in link has been sent.'


@dataclass
class MagicLinkValidation:
    temp_token: str
    is_first_time: bool
    email: str
    totp_secret: Optional[str] = None
    qr_code_url: Optional[str] = None
    qr_code_data_uri: Optional[str] = None

    def to_dict(self):
        data = {'temp_token': self.temp_token, 'is_first_time': self.is_first_time, 'email': self.email}
        if self.is_first_time:
            data.update(totp_secret=self.totp_secret, qr_code_url=self.qr_code_url,
                        qr_code_data_uri=self.qr_code_data_uri)
        return data


# ----- Magic link -----

def magic_link_url(token):
    base = current_app.config['PUBLIC_BASE_URL'].rstrip('/')
    return f'{base}/auth/verify?token={token}'


def _deliver_magic_link(app, msg, user_id):
    # Runs after the response on the background path, so it needs its own context
    with app.app_context():
        try:
            send_with_retry(mail, msg, attempts=app.config['MAIL_SEND_ATTEMPTS'])
        except Exception as e:
            logger.error('Magic link delivery failed for user %s: %s', user_id, e)
            return
    logger.info('Magic link sent to user %s', user_id)


def request_magic_link(email):
    """Issue and mail a magic link if `email` belongs to an identity.

    `email` is already validated. The return value is the same whether or not
    the account exists, and with MAIL_SEND_IN_BACKGROUND the SMTP round trip
    happens off the request so response time does not tell either.
    """
    cfg = current_app.config
    user = User.find_by_email(email)
    if user is None:
        logger.info('Magic link requested for an unknown address')
        return MAGIC_LINK_ACK

    token = new_token()
    now = utcnow()
    db.session.add(MagicLinkToken(
        token_hash=hash_token(token),
        email=user.email,
        created_at=now,
        expires_at=now + dt.timedelta(seconds=cfg['MAGIC_LINK_TTL']),
    ))
    db.session.commit()

    msg = build_magic_link_message(user.email, magic_link_url(token), math.ceil(cfg['MAGIC_LINK_TTL'] / 60))
    app = current_app._get_current_object()
    if cfg['MAIL_SEND_IN_BACKGROUND']:
        threading.Thread(target=_deliver_magic_link, args=(app, msg, user.id),
                         name='magic-link-mail', daemon=True).start()
    else:
        _deliver_magic_link(app, msg, user.id)
    return MAGIC_LINK_ACK


def _consume_magic_link(token_hash, now):
    result = db.session.execute(
        update(MagicLinkToken)
        .where(MagicLinkToken.token_hash == token_hash,
               MagicLinkToken.used_at.is_(None),
               MagicLinkToken.expires_at > now)
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return db.session.execute(
            select(MagicLinkToken).where(MagicLinkToken.token_hash == token_hash)
        ).scalar_one()

    db.session.rollback()
    row = db.session.execute(
        select(MagicLinkToken).where(MagicLinkToken.token_hash == token_hash)
    ).scalar_one_or_none()
    if row is None:
        raise TokenNotFound()
    if row.used_at is not None:
        raise TokenConsumed()
    raise TokenExpired()


def validate_magic_link(token):
    """Consume a magic-link token and hand out a temp token.

    First-time identities (TOTP not enrolled yet) also get fresh enrollment
    material, shown this once.
    """
    cfg = current_app.config
    if not token:
        raise TokenNotFound()

    now = utcnow()
    link = _consume_magic_link(hash_token(token), now)

    user = User.find_by_email(link.email)
    if user is None:
        db.session.commit()
        raise TokenNotFound()

    is_first_time = not user.totp_enabled
    secret = totp.new_secret() if is_first_time else None

    temp = TempAuthToken(
        user_id=user.id,
        email=user.email,
        is_first_time=is_first_time,
        pending_totp_secret=secret,
        created_at=now,
        expires_at=now + dt.timedelta(seconds=cfg['TEMP_TOKEN_MAX_AGE']),
    )
    db.session.add(temp)
    db.session.commit()

    result = MagicLinkValidation(
        temp_token=sign_temp_token(cfg['SECRET_KEY'], temp.id, temp.purpose),
        is_first_time=is_first_time,
        email=user.email,
    )
    if is_first_time:
        otp_uri = totp.provisioning_uri(secret, user.email, cfg['TOTP_ISSUER'])
        result.totp_secret = secret
        result.qr_code_url = otp_uri
        result.qr_code_data_uri = totp.qr_code_data_uri(otp_uri)

    logger.info('Magic link validated for user %s (first_time=%s)', user.id, is_first_time)
    return result


# ----- TOTP -----

def _check_code(code):
    code = totp.normalize_code(code)
    if not totp.is_valid_code_format(code):
        raise CodeFormatInvalid()
    return code


def _load_temp_token(temp_token, purpose):
    cfg = current_app.config
    if not temp_token or not isinstance(temp_token, str):
        raise TokenNotFound()
    try:
        payload = load_temp_token(cfg['SECRET_KEY'], temp_token, cfg['TEMP_TOKEN_MAX_AGE'])
    except SignatureExpired:
        raise TokenExpired() from None
    except BadSignature:
        raise TokenNotFound() from None

    if not isinstance(payload, dict) or payload.get('purpose') != purpose:
        raise TokenExpiredOrInvalid('wrong_purpose')

    row = db.session.get(TempAuthToken, payload.get('tid'))
    if row is None or row.purpose != purpose:
        raise TokenNotFound()
    if row.used_at is not None:
        raise TokenConsumed()
    if row.expires_at <= utcnow():
        raise TokenExpired()
    return row


def _claim_attempt(row):
    """Spend one of the token's code attempts; False once they are used up.

    The counter moves in a single conditional UPDATE before the code is
    checked, so parallel requests cannot get more than TOTP_MAX_ATTEMPTS tries.
    """
    result = db.session.execute(
        update(TempAuthToken)
        .where(TempAuthToken.id == row.id,
               TempAuthToken.used_at.is_(None),
               TempAuthToken.attempts < current_app.config['TOTP_MAX_ATTEMPTS'])
        .values(attempts=TempAuthToken.attempts + 1)
        .execution_options(synchronize_session=False)
    )
    claimed = result.rowcount == 1
    db.session.commit()
    return claimed


def _lock_if_exhausted(row):
    max_attempts = current_app.config['TOTP_MAX_ATTEMPTS']
    result = db.session.execute(
        update(TempAuthToken)
        .where(TempAuthToken.id == row.id,
               TempAuthToken.used_at.is_(None),
               TempAuthToken.attempts >= max_attempts)
        .values(used_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    locked = result.rowcount == 1
    db.session.commit()
    if locked:
        # the user has to start over from a new magic link
        logger.warning('Temp token %s locked after %d failed codes', row.id, max_attempts)


def _consume_temp_token(row, now):
    result = db.session.execute(
        update(TempAuthToken)
        .where(TempAuthToken.id == row.id,
               TempAuthToken.used_at.is_(None),
               TempAuthToken.expires_at > now)
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise TokenConsumed()


def _enroll_pending_secret(user, secret, now):
    # only the first setup to land may enroll; a later one must not swap the secret
    result = db.session.execute(
        update(User)
        .where(User.id == user.id, User.totp_enabled.is_(False))
        .values(totp_secret=secret, totp_enabled=True, totp_enrolled_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise TokenExpiredOrInvalid('already_enrolled')


def _exchange_temp_token(temp_token, code, purpose, user_agent=None, ip_address=None):
    code = _check_code(code)
    row = _load_temp_token(temp_token, purpose)

    user = db.session.get(User, row.user_id)
    if user is None or user.email.lower() != row.email.lower():
        raise TokenNotFound()

    if purpose == SETUP:
        if user.totp_enabled:
            # enrolled through another setup token since this one was issued
            raise TokenExpiredOrInvalid('already_enrolled')
        secret = row.pending_totp_secret
    else:
        if not user.totp_enabled:
            # enrollment was reset after this token was issued
            raise TokenExpiredOrInvalid('not_enrolled')
        secret = user.totp_secret

    if not _claim_attempt(row):
        raise TokenConsumed()

    if not totp.verify_code(secret, code, valid_window=current_app.config['TOTP_VALID_WINDOW']):
        _lock_if_exhausted(row)
        logger.info('TOTP %s failed for user %s', purpose, user.id)
        raise CodeMismatch()

    now = utcnow()
    _consume_temp_token(row, now)
    if purpose == SETUP:
        _enroll_pending_secret(user, secret, now)
    user.last_login_at = now
    session_token = create_session(user, user_agent=user_agent, ip_address=ip_address)
    db.session.commit()

    logger.info('TOTP %s succeeded for user %s', purpose, user.id)
    return user, session_token


def complete_totp_setup(temp_token, code, user_agent=None, ip_address=None):
    """Enroll the pending secret and open a session. Returns (user, session_token)."""
    return _exchange_temp_token(temp_token, code, SETUP, user_agent, ip_address)


def verify_totp(temp_token, code, user_agent=None, ip_address=None):
    """Check a returning user's code and open a session. Returns (user, session_token)."""
    return _exchange_temp_token(temp_token, code, VERIFY, user_agent, ip_address)
