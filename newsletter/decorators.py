# /newsletter/decorators.py
# Role guards for views. The role is always re-derived from the identity the
# session cookie resolves to on this request.

from functools import wraps

from flask import current_app, request
from flask_login import current_user

from security.utils import is_api_key_authorized

from .errors import Forbidden, Unauthenticated
from .roles import ADMIN_VARIANT, SUBSCRIBER_VARIANT, resolve_dashboard_variant


def roles_required(*variants, allow_api_key=False):
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            if allow_api_key and is_api_key_authorized(request.headers.get('Authorization'),
                                                       current_app.config.get('ADMIN_API_KEY')):
                return f(*args, **kwargs)
            if not current_user.is_authenticated:
                raise Unauthenticated()
            if resolve_dashboard_variant(current_user) not in variants:
                raise Forbidden()
            return f(*args, **kwargs)
        return wrapper
    return decorator


admin_required = roles_required(ADMIN_VARIANT, allow_api_key=True)
subscriber_required = roles_required(SUBSCRIBER_VARIANT)
