# /newsletter/main/routes.py
# Dashboard entry point (admin vs. subscriber) and the pages behind each variant.

from flask import Blueprint, request
from flask_login import current_user, login_required
from sqlalchemy import select

from .. import db
from ..decorators import admin_required, subscriber_required
from ..models import User
from ..responses import success_response
from ..roles import resolve_dashboard_variant

main = Blueprint('main', __name__)


def _user_row(u):
    return {
        'id': u.id,
        'email': u.email,
        'name': u.name,
        'role': u.role,
        'totp_enabled': u.totp_enabled,
        'created_at': u.created_at.isoformat() if u.created_at else None,
        'last_login_at': u.last_login_at.isoformat() if u.last_login_at else None,
    }


@main.route('/dashboard')
@login_required
def dashboard():
    """Which dashboard the signed-in identity gets, decided server-side."""
    return success_response({
        'variant': resolve_dashboard_variant(current_user),
        'user': current_user.to_dict(),
    })


# -------- Admin --------

@main.route('/admin/users')
@admin_required
def users_list():
    role = request.args.get('role')
    query = select(User).order_by(User.created_at)
    if role:
        query = query.where(User.role == role)
    users = db.session.execute(query).scalars().all()
    return success_response({'users': [_user_row(u) for u in users], 'total': len(users)})


# -------- Subscriber "my page" --------

@main.route('/my/')
@subscriber_required
def my_page():
    return success_response({'profile': _user_row(current_user)})
