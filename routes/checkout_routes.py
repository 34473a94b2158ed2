from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user

from services.checkout_service import (
    CheckoutContext,
    CheckoutError,
    get_payment_status,
    get_pending_pix,
    process_subscription_checkout,
)
from services.permissions import json_error
from services.rate_limiter import enforce, user_key
from services.subscription_store import list_active_plans


checkout_bp = Blueprint("checkout", __name__)


@checkout_bp.post("/api/checkout/subscription")
def subscription_checkout():
    ctx = CheckoutContext.from_user(current_user)

    if ctx.user_id:
        rate_block = enforce(
            user_key("checkout", ctx.user_id),
            "RATE_LIMIT_CHECKOUT",
            default_limit=5,
            message="Muitas tentativas. Aguarde um minuto e tente novamente.",
        )
        if rate_block is not None:
            return rate_block

    # JSON invalido chega como None e vira INVALID_JSON no checkout
    body = request.get_json(silent=True)
    result = process_subscription_checkout(ctx, body)
    return jsonify(result.to_dict()), result.status_code


@checkout_bp.get("/api/checkout/payment-status/<payment_id>")
def payment_status(payment_id: str):
    ctx = CheckoutContext.from_user(current_user)
    try:
        data = get_payment_status(ctx, payment_id)
    except CheckoutError as exc:
        return json_error(exc.message, exc.status, exc.error_code)
    return jsonify({"success": True, "data": data})


@checkout_bp.get("/api/checkout/pending-pix")
def pending_pix():
    ctx = CheckoutContext.from_user(current_user)
    try:
        data = get_pending_pix(ctx)
    except CheckoutError as exc:
        return json_error(exc.message, exc.status, exc.error_code)
    return jsonify({"success": True, "hasPendingPix": data is not None, "data": data})


@checkout_bp.get("/api/subscriptions/plans")
def plans():
    items = [
        {
            "id": p.id,
            "name": p.name,
            "slug": p.slug,
            "description": p.description,
            "price": float(p.price),
            "discountPercent": p.discount_percent,
        }
        for p in list_active_plans()
    ]
    return jsonify({"success": True, "data": items})
