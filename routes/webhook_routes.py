from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from models.extensions import db
from services.date_utils import utcnow
from services.mercadopago import MercadoPagoError, validate_webhook_signature
from services.webhook_service import handle_notification

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__)


@webhooks_bp.post("/api/webhooks/mercadopago")
def mercadopago_webhook():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    data = payload.get("data")
    if not isinstance(data, dict):
        data = {}
    # Notificacoes antigas (IPN) mandam o id na query string
    data_id = str(data.get("id") or request.args.get("data.id") or "")
    if data_id and not data:
        payload["data"] = {"id": data_id}
    if not payload.get("type") and request.args.get("type"):
        payload["type"] = request.args.get("type")

    if not validate_webhook_signature(
        request.headers.get("x-signature"),
        request.headers.get("x-request-id"),
        data_id,
    ):
        logger.warning("Webhook MercadoPago: assinatura invalida (data.id=%s)", data_id)
        return jsonify({"error": "Invalid signature"}), 401

    # Sempre 200: erro aqui faria o gateway reenviar indefinidamente
    try:
        action = handle_notification(payload)
    except MercadoPagoError:
        db.session.rollback()
        logger.warning("Webhook MercadoPago: falha ao consultar o gateway (data.id=%s)", data_id, exc_info=True)
        return jsonify({"received": True, "error": "Processing error"})
    except Exception:
        db.session.rollback()
        logger.exception("Webhook MercadoPago: erro ao processar notificacao (data.id=%s)", data_id)
        return jsonify({"received": True, "error": "Processing error"})

    return jsonify({"received": True, "action": action})


@webhooks_bp.get("/api/webhooks/mercadopago")
def mercadopago_webhook_health():
    return jsonify(
        {
            "status": "ok",
            "message": "Mercado Pago Webhook endpoint is active",
            "timestamp": utcnow().isoformat(),
        }
    )
