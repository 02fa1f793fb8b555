# Overview: Flask API route for gateway webhooks; public, signature-verified.

"""
Webhook API Route

Responses (the gateway retries anything that is not 2xx):
    200: processed, duplicate, ignored (unknown type) or skipped (malformed)
    400: missing/invalid signature, unparseable body
    500: webhook secret not configured, or an unexpected processing error
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..services import webhook_service
from ..services.webhook_service import SignatureError


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


@webhooks_bp.post("/stripe")
def stripe_webhook_route():
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        current_app.logger.error("STRIPE_WEBHOOK_SECRET is not set; rejecting webhook")
        return jsonify({"error": "Webhook secret not configured"}), 500

    try:
        envelope = webhook_service.verify_and_parse(
            request.get_data(),
            request.headers.get("Stripe-Signature"),
            secret,
            current_app.config.get("STRIPE_WEBHOOK_TOLERANCE", 300),
        )
    except SignatureError as e:
        current_app.logger.warning("Rejected webhook: %s", e)
        return jsonify({"error": str(e)}), 400

    try:
        result = webhook_service.handle_event(envelope)
        return jsonify(result.to_dict()), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to process webhook %s", envelope.get("id"))
        return jsonify({"error": "Internal server error"}), 500
