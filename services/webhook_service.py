from __future__ import annotations

import logging
from typing import Any, Dict

from flask import current_app

from models.order_model import Order
from models.payment_model import PaymentStatus
from models.subscription_model import SubscriptionStatus
from services import mercadopago, order_store, payment_store, subscription_store
from services.date_utils import next_billing_date
from services.mercadopago import MercadoPagoError
from services.subscription_store import DuplicateSubscriptionError

logger = logging.getLogger(__name__)

# status do preapproval no gateway -> status local
PREAPPROVAL_STATUS_MAP = {
    "authorized": SubscriptionStatus.ACTIVE,
    "paused": SubscriptionStatus.PAUSED,
    "cancelled": SubscriptionStatus.CANCELED,
}

CARD_INITIAL_TYPE = "subscription_initial"
SUBSCRIPTION_TYPES = {"subscription", CARD_INITIAL_TYPE}


def handle_notification(payload: Dict[str, Any]) -> str:
    """Despacha a notificacao pelo `type` e devolve a acao executada."""
    if not isinstance(payload, dict):
        return "ignored"
    kind = str(payload.get("type") or payload.get("topic") or "").strip()
    data = payload.get("data")
    data_id = str((data if isinstance(data, dict) else {}).get("id") or "").strip()
    if not data_id:
        return "ignored"

    if kind == "payment":
        return process_payment_notification(data_id)
    if kind == "subscription_preapproval":
        return process_preapproval_notification(data_id)
    if kind == "subscription_authorized_payment":
        return process_authorized_payment_notification(data_id)

    logger.info("Webhook MercadoPago: tipo %s ignorado (id=%s)", kind, data_id)
    return "ignored"


def _metadata_user_id(metadata: Dict[str, Any]) -> int | None:
    raw = metadata.get("user_id")
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def process_payment_notification(mp_payment_id: str) -> str:
    # Consulta o pagamento na API; o corpo da notificacao nao e confiavel
    info = mercadopago.get_payment(mp_payment_id)
    if not info.external_reference:
        logger.warning("Webhook MercadoPago: pagamento %s sem external_reference", mp_payment_id)
        return "no_action"

    order = order_store.get_order(info.external_reference)
    if not order:
        logger.warning("Webhook MercadoPago: pedido %s nao encontrado", info.external_reference)
        return "no_action"

    payment = payment_store.find_by_transaction_id(info.payment_id) or payment_store.latest_payment_for_order(order.id)
    if not payment:
        logger.warning("Webhook MercadoPago: pedido %s sem pagamento", order.id)
        return "no_action"

    status = mercadopago.map_payment_status(info.status)
    metadata = info.metadata or {}

    if status == "PAID" and payment.status == PaymentStatus.PENDING:
        payment_store.mark_payment_paid(
            payment.id,
            info.payment_id,
            {
                "status": info.status,
                "statusDetail": info.status_detail,
                "mpPaymentId": info.payment_id,
                "approvedAt": info.date_approved.isoformat() if info.date_approved else None,
                "cardLastFour": info.card_last_four,
                "cardBrand": info.card_brand,
            },
        )
        order_store.mark_order_paid(order.id)
        if metadata.get("type") in SUBSCRIPTION_TYPES:
            _activate_from_payment(order, payment.id, metadata, info)
        logger.info("Webhook MercadoPago: pagamento %s aprovado (pedido %s)", info.payment_id, order.id)
        return "payment_approved"

    if status in {"FAILED", "CANCELED"} and payment.status == PaymentStatus.PENDING:
        payment_store.mark_payment_failed(
            payment.id,
            {"status": info.status, "statusDetail": info.status_detail, "mpPaymentId": info.payment_id},
        )
        return "payment_rejected"

    if status == "REFUNDED" and payment.status != PaymentStatus.REFUNDED:
        payment_store.mark_payment_refunded(
            payment.id,
            {"originalStatus": info.status, "statusDetail": info.status_detail},
        )
        user_id = _metadata_user_id(metadata) or order.user_id
        plan_id = metadata.get("plan_id")
        if metadata.get("type") in SUBSCRIPTION_TYPES and plan_id:
            canceled = subscription_store.cancel_live_subscription_for_plan(user_id, plan_id)
            if canceled:
                logger.info("Webhook MercadoPago: assinatura %s cancelada por estorno", canceled.id)
                _cancel_recurrence(canceled)
        return "payment_refunded"

    return "no_action"


def _cancel_recurrence(subscription) -> None:
    """Assinatura estornada nao pode continuar sendo cobrada pelo gateway."""
    if not subscription.provider_sub_id:
        return
    try:
        mercadopago.cancel_preapproval(subscription.provider_sub_id)
    except MercadoPagoError:
        logger.error(
            "Webhook MercadoPago: falha ao cancelar preapproval %s da assinatura %s estornada",
            subscription.provider_sub_id,
            subscription.id,
            exc_info=True,
        )
        return
    logger.info("Webhook MercadoPago: preapproval %s cancelado por estorno", subscription.provider_sub_id)


def _activate_from_payment(order: Order, payment_id: str, metadata: Dict[str, Any], info) -> None:
    """PIX (ou cartao pendente) confirmado: cria a assinatura se ainda nao existir."""
    user_id = _metadata_user_id(metadata) or order.user_id
    plan_id = metadata.get("plan_id")
    if not plan_id:
        return
    if subscription_store.user_has_any_active_subscription(user_id):
        logger.info("Webhook MercadoPago: usuario %s ja tem assinatura vigente", user_id)
        return

    cycle_days = int(current_app.config.get("SUBSCRIPTION_CYCLE_DAYS") or 30)
    try:
        subscription = subscription_store.create_subscription(
            user_id=user_id,
            plan_id=plan_id,
            next_billing_at=next_billing_date(cycle_days),
        )
    except DuplicateSubscriptionError:
        return
    subscription_store.create_first_cycle(
        subscription.id,
        info.transaction_amount if info.transaction_amount is not None else order.total_amount,
        payment_id=payment_id,
    )
    logger.info("Webhook MercadoPago: assinatura %s ativada (pedido %s)", subscription.id, order.id)

    if metadata.get("type") == CARD_INITIAL_TYPE:
        # Cartao aprovado depois de pendente: o preapproval nunca foi criado
        payment_store.add_payload(payment_id, {"recurrenceMissing": True})
        logger.warning(
            "Webhook MercadoPago: assinatura %s ativada sem recorrencia no gateway (pedido %s)",
            subscription.id,
            order.id,
        )


def process_preapproval_notification(preapproval_id: str) -> str:
    subscription = subscription_store.find_by_provider_sub_id(preapproval_id)
    if not subscription:
        return "no_action"

    preapproval = mercadopago.get_preapproval(preapproval_id)
    new_status = PREAPPROVAL_STATUS_MAP.get(preapproval.status)
    if new_status and new_status != subscription.status:
        # Cancelada localmente nao volta a ficar ativa por notificacao atrasada
        if subscription.status == SubscriptionStatus.CANCELED:
            return "no_action"
        subscription_store.set_status(subscription, new_status)
        logger.info(
            "Webhook MercadoPago: assinatura %s -> %s (preapproval %s)",
            subscription.id,
            new_status,
            preapproval_id,
        )
    subscription_store.set_next_billing(subscription, preapproval.next_payment_date)
    return "subscription_synced"


def process_authorized_payment_notification(authorized_payment_id: str) -> str:
    charge = mercadopago.get_authorized_payment(authorized_payment_id)
    if not charge.preapproval_id:
        return "no_action"

    subscription = subscription_store.find_by_provider_sub_id(charge.preapproval_id)
    if not subscription:
        logger.warning("Webhook MercadoPago: preapproval %s sem assinatura local", charge.preapproval_id)
        return "no_action"

    if subscription.status not in SubscriptionStatus.LIVE:
        logger.warning(
            "Webhook MercadoPago: cobranca %s do preapproval %s para assinatura %s em %s ignorada",
            authorized_payment_id,
            charge.preapproval_id,
            subscription.id,
            subscription.status,
        )
        return "no_action"

    if mercadopago.map_payment_status(charge.payment_status) != "PAID":
        return "no_action"

    provider_payment_id = charge.payment_id or charge.authorized_payment_id
    if subscription_store.has_cycle_for_provider_payment(provider_payment_id):
        return "no_action"

    amount = charge.transaction_amount
    if amount is None:
        amount = subscription.plan.price
    cycle = subscription_store.create_renewal_cycle(subscription, amount, provider_payment_id=provider_payment_id)
    logger.info("Webhook MercadoPago: renovacao %s registrada (assinatura %s)", cycle.id, subscription.id)
    return "renewal_recorded"
