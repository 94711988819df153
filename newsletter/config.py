# /newsletter/config.py
# Application settings. Defaults live on the class; the environment is only read
# when Config.from_env() is called, so tests can build an app from a plain dict.

import datetime as dt
import os

from dotenv import load_dotenv


def _env_bool(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name, default):
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


class Config:
    """Default settings for the newsletter backend."""

    SECRET_KEY = 'change-this-in-prod'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///newsletter.sqlite3'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Public URL used to build the links sent by email
    PUBLIC_BASE_URL = 'http://localhost:5000'

    # Magic link / temp token lifetimes (seconds)
    MAGIC_LINK_TTL = 15 * 60
    TEMP_TOKEN_MAX_AGE = 10 * 60

    # Session cookie
    SESSION_LIFETIME = dt.timedelta(days=7)
    SESSION_TOKEN_COOKIE = 'nl_session'
    SESSION_COOKIE_SECURE = False
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # TOTP
    TOTP_ISSUER = 'Newsletter'
    TOTP_VALID_WINDOW = 1
    TOTP_MAX_ATTEMPTS = 5

    # Rate limiting (Flask-Limiter)
    MAGIC_LINK_RATE_LIMIT = '5 per 10 minutes'
    RATELIMIT_STORAGE_URI = 'memory://'
    RATELIMIT_STRATEGY = 'moving-window'
    RATELIMIT_HEADERS_ENABLED = True

    # System-to-system access to admin routes
    ADMIN_API_KEY = None

    # Inbound webhooks (Resend / Svix)
    RESEND_WEBHOOK_SECRET = None
    WEBHOOK_TOLERANCE = 300

    # Mail
    MAIL_SERVER = 'localhost'
    MAIL_PORT = 587
    MAIL_USE_TLS = True
    MAIL_USERNAME = None
    MAIL_PASSWORD = None
    MAIL_DEFAULT_SENDER = 'no-reply@example.com'
    MAIL_SEND_ATTEMPTS = 3
    # Deliver after the response so known and unknown addresses answer alike
    MAIL_SEND_IN_BACKGROUND = True

    LOG_LEVEL = 'INFO'

    @classmethod
    def defaults(cls):
        return {key: getattr(cls, key) for key in dir(cls) if key.isupper()}

    @classmethod
    def from_env(cls):
        """Defaults overlaid with whatever the environment (and .env) provides."""
        load_dotenv()
        values = cls.defaults()

        for key in ('SECRET_KEY', 'SQLALCHEMY_DATABASE_URI', 'PUBLIC_BASE_URL', 'SESSION_TOKEN_COOKIE',
                    'TOTP_ISSUER', 'MAGIC_LINK_RATE_LIMIT', 'RATELIMIT_STORAGE_URI', 'ADMIN_API_KEY',
                    'RESEND_WEBHOOK_SECRET', 'MAIL_SERVER', 'MAIL_USERNAME', 'MAIL_PASSWORD',
                    'MAIL_DEFAULT_SENDER', 'LOG_LEVEL'):
            if os.getenv(key):
                values[key] = os.getenv(key)

        for key in ('MAGIC_LINK_TTL', 'TEMP_TOKEN_MAX_AGE', 'TOTP_VALID_WINDOW', 'TOTP_MAX_ATTEMPTS',
                    'WEBHOOK_TOLERANCE', 'MAIL_PORT', 'MAIL_SEND_ATTEMPTS'):
            values[key] = _env_int(key, values[key])

        values['SESSION_LIFETIME'] = dt.timedelta(
            days=_env_int('SESSION_LIFETIME_DAYS', values['SESSION_LIFETIME'].days))
        values['SESSION_COOKIE_SECURE'] = _env_bool('SESSION_COOKIE_SECURE', values['SESSION_COOKIE_SECURE'])
        values['MAIL_USE_TLS'] = _env_bool('MAIL_USE_TLS', values['MAIL_USE_TLS'])
        values['MAIL_SEND_IN_BACKGROUND'] = _env_bool('MAIL_SEND_IN_BACKGROUND', values['MAIL_SEND_IN_BACKGROUND'])
        return values
