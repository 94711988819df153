# /newsletter/auth/routes.py
# Sign-in endpoints: magic link, TOTP setup/verify, current user, logout.

from flask import Blueprint, current_app, request
from flask_login import current_user, login_required
from werkzeug.datastructures import MultiDict

from security.forms import MagicLinkRequestForm, MagicLinkTokenForm

from . import flow
from .sessions import clear_session_cookie, revoke_session, set_session_cookie
from .. import limiter
from ..errors import InvalidEmailFormat, TokenNotFound
from ..responses import success_response

auth = Blueprint('auth', __name__, url_prefix='/auth')


# ----- Helpers -----
def _json_body():
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _magic_link_limit():
    return current_app.config['MAGIC_LINK_RATE_LIMIT']


def _email_rate_key():
    # Per-address bucket; falls back to the client IP for unusable bodies
    email = _json_body().get('email')
    if isinstance(email, str) and email.strip():
        return 'email:' + email.strip().lower()
    return 'ip:' + (request.remote_addr or '')


def _client_meta():
    return {'user_agent': request.headers.get('User-Agent'), 'ip_address': request.remote_addr}


def _signed_in(user, session_token):
    response, status = success_response({'user': user.to_dict()})
    set_session_cookie(response, session_token)
    return response, status


# ----- Magic link -----
@auth.route('/request-magic-link', methods=['POST'])
@limiter.limit(_magic_link_limit)
@limiter.limit(_magic_link_limit, key_func=_email_rate_key)
def request_magic_link():
    form = MagicLinkRequestForm(formdata=MultiDict(_json_body()))
    if not form.validate():
        raise InvalidEmailFormat()
    message = flow.request_magic_link(form.email.data)
    return success_response({'message': message})


@auth.route('/verify', methods=['GET'])
def verify_magic_link():
    form = MagicLinkTokenForm(formdata=request.args)
    if not form.validate():
        raise TokenNotFound()
    return success_response(flow.validate_magic_link(form.token.data).to_dict())


@auth.route('/validate-magic-link', methods=['POST'])
def validate_magic_link():
    form = MagicLinkTokenForm(formdata=MultiDict(_json_body()))
    if not form.validate():
        raise TokenNotFound()
    return success_response(flow.validate_magic_link(form.token.data).to_dict())


# ----- 2FA (TOTP) -----
@auth.route('/totp/setup', methods=['POST'])
def totp_setup():
    body = _json_body()
    user, session_token = flow.complete_totp_setup(body.get('token'), body.get('totpCode'), **_client_meta())
    return _signed_in(user, session_token)


@auth.route('/totp/verify', methods=['POST'])
def totp_verify():
    body = _json_body()
    user, session_token = flow.verify_totp(body.get('token'), body.get('totpCode'), **_client_meta())
    return _signed_in(user, session_token)


# ----- Session -----
@auth.route('/me', methods=['GET'])
@login_required
def me():
    return success_response({'user': current_user.to_dict()})


@auth.route('/logout', methods=['POST'])
def logout():
    revoke_session(request.cookies.get(current_app.config['SESSION_TOKEN_COOKIE']))
    response, status = success_response({'message': 'Logged out'})
    clear_session_cookie(response)
    return response, status
