"""
Inbound payment provider webhooks.

Signature verification happens inside the ingest service against the raw
request body, so the body must never be re-serialized before it gets there.
"""
from flask import Blueprint, jsonify, request, current_app, abort
from logging_config import get_logger

logger = get_logger(__name__)

webhook_bp = Blueprint('webhooks', __name__)

SUPPORTED_PROVIDERS = ('stripe',)
CLIENT_ERROR_CODES = ('INVALID_SIGNATURE', 'MALFORMED_PAYLOAD')


@webhook_bp.route('/<provider>', methods=['POST'])
def receive_webhook(provider):
    if provider not in SUPPORTED_PROVIDERS:
        abort(404)

    ingest_service = current_app.services.get('webhook_ingest')
    if not ingest_service.is_configured:
        logger.error("Stripe webhook signing secret is not configured")
        abort(500)

    result = ingest_service.ingest(
        request.get_data(),
        request.headers.get('Stripe-Signature'),
        remote_addr=request.remote_addr
    )

    if result.is_success:
        return jsonify({'received': True}), 200

    if result.error_code in CLIENT_ERROR_CODES:
        return jsonify({'received': False, 'error': result.error, 'code': result.error_code}), 400

    # Storage failed; a 5xx makes Stripe redeliver
    logger.error("Webhook could not be stored", provider=provider, error=result.error)
    return jsonify({'received': False, 'error': 'Webhook could not be processed'}), 500
