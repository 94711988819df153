# /newsletter/models.py
# Database models (Flask-SQLAlchemy): identities, tokens, sessions, webhook events.

import datetime as dt
import uuid

from flask_login import UserMixin
from sqlalchemy.orm import validates

from . import db
from .roles import ROLES, SUBSCRIBER


def utcnow():
    """Naive UTC timestamp, the form every DateTime column stores."""
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


def _uuid():
    return str(uuid.uuid4())


class User(UserMixin, db.Model):
    """An identity: someone who can sign in with a magic link + TOTP."""
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    name = db.Column(db.String(100), nullable=True)

    # Roles: owner / admin / subscriber
    role = db.Column(db.String(32), nullable=False, default=SUBSCRIBER)

    # 2FA (TOTP)
    totp_secret = db.Column(db.String(64), nullable=True)
    totp_enabled = db.Column(db.Boolean, default=False, nullable=False)
    totp_enrolled_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    last_login_at = db.Column(db.DateTime, nullable=True)

    @validates('role')
    def validate_role(self, key, value):
        if value not in ROLES:
            raise ValueError(f'Invalid role: {value!r}')
        return value

    @classmethod
    def find_by_email(cls, email):
        return cls.query.filter(db.func.lower(cls.email) == email.strip().lower()).first()

    def enroll_totp(self, secret):
        self.totp_secret = secret
        self.totp_enabled = True
        self.totp_enrolled_at = utcnow()

    def reset_totp(self):
        self.totp_secret = None
        self.totp_enabled = False
        self.totp_enrolled_at = None

    def to_dict(self):
        return {'id': self.id, 'email': self.email, 'role': self.role}


class MagicLinkToken(db.Model):
    """Single-use sign-in token. Only the SHA-256 of the token is stored."""
    __tablename__ = 'magic_link_tokens'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    token_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    used_at = db.Column(db.DateTime, nullable=True)


class TempAuthToken(db.Model):
    """Issued after a magic link is validated; only good for TOTP setup/verify."""
    __tablename__ = 'temp_auth_tokens'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    is_first_time = db.Column(db.Boolean, nullable=False)
    # Secret being enrolled; copied onto the user only when setup succeeds
    pending_totp_secret = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    used_at = db.Column(db.DateTime, nullable=True)
    # code checks spent, successful or not
    attempts = db.Column(db.Integer, default=0, nullable=False)

    @property
    def purpose(self):
        return 'setup' if self.is_first_time else 'verify'


class AuthSession(db.Model):
    """Server-side record behind the session cookie."""
    __tablename__ = 'auth_sessions'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    token_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    revoked_at = db.Column(db.DateTime, nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    def is_active(self, now=None):
        now = now or utcnow()
        return self.revoked_at is None and self.expires_at > now


class WebhookEvent(db.Model):
    """Provider message ids already processed (redeliveries are acknowledged only)."""
    __tablename__ = 'webhook_events'

    id = db.Column(db.String(255), primary_key=True)
    event_type = db.Column(db.String(100), nullable=True)
    received_at = db.Column(db.DateTime, default=utcnow, nullable=False)
