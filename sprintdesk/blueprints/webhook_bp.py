"""
Webhook Blueprint — Stripe payment events.

Endpoint:
    POST /api/v1/webhooks/stripe   (public; authenticated by Stripe-Signature)

The raw body is read before any JSON decoding so the signature is checked
against the exact bytes Stripe signed.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from sprintdesk import limiter
from sprintdesk.services import payment_reconciler
from sprintdesk.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

webhook_bp = Blueprint("webhooks", __name__, url_prefix="/api/v1/webhooks")
register_error_handlers(webhook_bp)


@webhook_bp.route("/stripe", methods=["POST"])
@limiter.limit("120/minute")
def stripe_webhook():
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not set")
        return api_error(E.INTERNAL, "Webhook secret not configured")

    signature = request.headers.get("Stripe-Signature")
    if not signature:
        return api_error(E.SIGNATURE_INVALID, "Missing Stripe-Signature header")

    payload = request.get_data()
    try:
        event = payment_reconciler.verify_and_parse(payload, signature, secret)
    except payment_reconciler.WebhookVerificationError as e:
        return api_error(E.SIGNATURE_INVALID, str(e))

    payment_reconciler.process_event(event)
    return jsonify({"received": True}), 200
