# /newsletter/webhooks/routes.py
# Inbound provider webhooks. The body is trusted only after the signature checks out.

import json
import logging

from flask import Blueprint, current_app, request
from sqlalchemy.exc import IntegrityError

from security.webhook import WebhookHeaders, verify_webhook_signature

from .. import db
from ..models import WebhookEvent
from ..responses import error_response, success_response

webhooks = Blueprint('webhooks', __name__, url_prefix='/webhooks')

logger = logging.getLogger(__name__)


@webhooks.route('/resend', methods=['POST'])
def resend_webhook():
    headers = WebhookHeaders.from_mapping(request.headers)
    if headers is None:
        return error_response('Missing signature headers', 401)

    secret = current_app.config.get('RESEND_WEBHOOK_SECRET')
    if not secret:
        logger.error('RESEND_WEBHOOK_SECRET is not configured; rejecting webhook')
        return error_response('Invalid signature', 401)

    # Raw bytes: the signature covers the body exactly as sent
    payload = request.get_data(cache=True)
    if not verify_webhook_signature(payload, headers, secret,
                                    tolerance=current_app.config['WEBHOOK_TOLERANCE']):
        return error_response('Invalid signature', 401)

    try:
        event = json.loads(payload)
    except ValueError:
        return error_response('Invalid JSON', 400)
    if not isinstance(event, dict):
        return error_response('Invalid JSON', 400)

    event_type = event.get('type')
    if db.session.get(WebhookEvent, headers.id) is not None:
        logger.info('Webhook %s already processed', headers.id)
        return success_response({'duplicate': True})

    db.session.add(WebhookEvent(id=headers.id, event_type=str(event_type)[:100] if event_type else None))
    try:
        db.session.commit()
    except IntegrityError:
        # a concurrent delivery of the same message got there first
        db.session.rollback()
        return success_response({'duplicate': True})

    logger.info('Received webhook event %s (%s)', event_type, headers.id)
    return success_response({'duplicate': False})
