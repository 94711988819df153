# /newsletter/roles.py
# Roles and the dashboard variant each one may see.

from .errors import UnknownRole

OWNER = 'owner'
ADMIN = 'admin'
SUBSCRIBER = 'subscriber'
ROLES = (OWNER, ADMIN, SUBSCRIBER)

ADMIN_VARIANT = 'admin'
SUBSCRIBER_VARIANT = 'subscriber'

_VARIANTS = {
    OWNER: ADMIN_VARIANT,
    ADMIN: ADMIN_VARIANT,
    SUBSCRIBER: SUBSCRIBER_VARIANT,
}


def resolve_dashboard_variant(identity):
    """Map a resolved identity's role to the dashboard it may see.

    Always call this with an identity loaded server-side for the current
    request; a role sent by the client is never an input here.
    """
    try:
        return _VARIANTS[identity.role]
    except (KeyError, TypeError):
        raise UnknownRole(f'Unknown role: {identity.role!r}') from None
