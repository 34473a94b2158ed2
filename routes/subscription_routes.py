from __future__ import annotations

from flask import Blueprint, jsonify
from flask_login import current_user

from services.permissions import json_error, require_api_access
from services.subscription_service import (
    SubscriptionActionError,
    cancel_subscription,
    pause_subscription,
    resume_subscription,
)
from services.subscription_store import SubscriptionInfo, get_user_subscription_info


subscription_bp = Blueprint("subscription", __name__)


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _serialize(info: SubscriptionInfo | None) -> dict | None:
    if info is None:
        return None
    return {
        "id": info.id,
        "status": info.status,
        "startedAt": _iso(info.started_at),
        "nextBillingAt": _iso(info.next_billing_at),
        "canceledAt": _iso(info.canceled_at),
        "hasRecurrence": bool(info.provider_sub_id),
        "plan": {
            "id": info.plan.id,
            "name": info.plan.name,
            "slug": info.plan.slug,
            "price": float(info.plan.price),
            "discountPercent": info.plan.discount_percent,
        },
    }


@subscription_bp.get("/api/user/subscription")
def current_subscription():
    if not current_user.is_authenticated:
        return jsonify({"isLoggedIn": False, "subscription": None})
    info = get_user_subscription_info(current_user.id)
    return jsonify({"isLoggedIn": True, "subscription": _serialize(info)})


@subscription_bp.post("/api/user/subscription/pause")
@require_api_access
def pause():
    try:
        info = pause_subscription(current_user.id)
    except SubscriptionActionError as exc:
        return json_error(exc.message, exc.status, exc.error_code)
    return jsonify({"success": True, "data": _serialize(info)})


@subscription_bp.post("/api/user/subscription/resume")
@require_api_access
def resume():
    try:
        info = resume_subscription(current_user.id)
    except SubscriptionActionError as exc:
        return json_error(exc.message, exc.status, exc.error_code)
    return jsonify({"success": True, "data": _serialize(info)})


@subscription_bp.post("/api/user/subscription/cancel")
@require_api_access
def cancel():
    try:
        subscription_id = cancel_subscription(current_user.id)
    except SubscriptionActionError as exc:
        return json_error(exc.message, exc.status, exc.error_code)
    return jsonify({"success": True, "data": {"id": subscription_id, "status": "CANCELED"}})
