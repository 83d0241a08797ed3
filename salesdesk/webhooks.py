# salesdesk/webhooks.py
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from .extensions import limiter

webhooks = Blueprint("webhooks", __name__, url_prefix="/webhooks")


# =========================================================
# WhatsApp (public: Meta calls these)
# =========================================================
@webhooks.route("/whatsapp", methods=["GET"])
def whatsapp_verify():
    mode = request.args.get("hub.mode")
    token = request.args.get("hub.verify_token")
    challenge = request.args.get("hub.challenge")

    if not mode or not token or not challenge:
        return jsonify(error="validation_error", message="Missing required parameters"), 400

    messenger = current_app.extensions["salesdesk"].messenger
    verified = messenger.verify_webhook(mode, token, challenge)
    if verified is None:
        current_app.logger.warning("WhatsApp webhook verification rejected")
        return jsonify(error="forbidden", message="Webhook verification failed"), 403

    return verified, 200, {"Content-Type": "text/plain"}


@webhooks.route("/whatsapp", methods=["POST"])
@limiter.exempt
def whatsapp_events():
    payload = request.get_json(silent=True) or {}
    result = current_app.extensions["salesdesk"].communications.handle_webhook(payload)
    current_app.logger.info(
        "WhatsApp webhook: %d status update(s), %d inbound message(s)",
        result.statuses_updated, result.messages_logged,
    )
    return jsonify(success=True, statuses_updated=result.statuses_updated, messages_logged=result.messages_logged)
