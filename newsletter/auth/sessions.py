# /newsletter/auth/sessions.py
# Server-tracked sessions behind the HTTP-only cookie, and the lookup every
# protected request goes through.

import logging

from flask import current_app

from security.tokens import hash_token, new_token

from .. import db
from ..errors import Unauthenticated
from ..models import AuthSession, User, utcnow

logger = logging.getLogger(__name__)

# token_urlsafe(32) is 43 chars; anything far off is not one of ours
_MAX_TOKEN_LENGTH = 128


def create_session(user, user_agent=None, ip_address=None):
    """Create a session row for `user` and return the raw cookie token.

    The caller commits.
    """
    token = new_token()
    now = utcnow()
    db.session.add(AuthSession(
        token_hash=hash_token(token),
        user_id=user.id,
        created_at=now,
        expires_at=now + current_app.config['SESSION_LIFETIME'],
        user_agent=(user_agent or '')[:255] or None,
        ip_address=ip_address,
    ))
    return token


def resolve_current_user(token):
    """Return the User behind a session token or raise Unauthenticated.

    Missing token, unknown token, expired or revoked session and a deleted
    identity all end in the same exception.
    """
    if not token or len(token) > _MAX_TOKEN_LENGTH:
        raise Unauthenticated()

    auth_session = AuthSession.query.filter_by(token_hash=hash_token(token)).first()
    if auth_session is None or not auth_session.is_active(utcnow()):
        raise Unauthenticated()

    user = db.session.get(User, auth_session.user_id)
    if user is None:
        logger.info('Session %s points at a deleted user', auth_session.id)
        raise Unauthenticated()
    return user


def load_user_from_request(request):
    """Flask-Login request loader: the identity or None (anonymous)."""
    token = request.cookies.get(current_app.config['SESSION_TOKEN_COOKIE'])
    try:
        return resolve_current_user(token)
    except Unauthenticated:
        return None


def revoke_session(token):
    """Revoke the session for `token`. Returns False if there was nothing to revoke."""
    if not token or len(token) > _MAX_TOKEN_LENGTH:
        return False
    auth_session = AuthSession.query.filter_by(token_hash=hash_token(token), revoked_at=None).first()
    if auth_session is None:
        return False
    auth_session.revoked_at = utcnow()
    db.session.commit()
    return True


def set_session_cookie(response, token):
    cfg = current_app.config
    response.set_cookie(
        cfg['SESSION_TOKEN_COOKIE'],
        token,
        max_age=int(cfg['SESSION_LIFETIME'].total_seconds()),
        httponly=True,
        secure=cfg['SESSION_COOKIE_SECURE'],
        samesite=cfg['SESSION_COOKIE_SAMESITE'],
        path='/',
    )
    return response


def clear_session_cookie(response):
    cfg = current_app.config
    response.delete_cookie(
        cfg['SESSION_TOKEN_COOKIE'],
        path='/',
        httponly=True,
        secure=cfg['SESSION_COOKIE_SECURE'],
        samesite=cfg['SESSION_COOKIE_SAMESITE'],
    )
    return response
