from __future__ import annotations

import logging

from models.subscription_model import Subscription, SubscriptionStatus
from services import mercadopago, subscription_store
from services.mercadopago import MercadoPagoError

logger = logging.getLogger(__name__)


class SubscriptionActionError(Exception):
    def __init__(self, error_code: str, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.status = status


def _live_or_404(user_id: int) -> Subscription:
    sub = subscription_store.get_live_subscription(user_id)
    if not sub:
        raise SubscriptionActionError("SUBSCRIPTION_NOT_FOUND", "Nenhuma assinatura ativa encontrada", 404)
    return sub


def _call_gateway(fn, sub: Subscription) -> None:
    # Sem preapproval (recorrencia falhou no checkout) so o estado local muda
    if not sub.provider_sub_id:
        logger.warning("Assinatura %s sem preapproval; alterando apenas localmente", sub.id)
        return
    try:
        fn(sub.provider_sub_id)
    except MercadoPagoError as exc:
        logger.warning("Assinatura %s: falha no gateway (%s)", sub.id, exc.error_code, exc_info=True)
        raise SubscriptionActionError("SUBSCRIPTION_ERROR", exc.message, 502) from exc


def pause_subscription(user_id: int) -> subscription_store.SubscriptionInfo:
    sub = _live_or_404(user_id)
    if sub.status != SubscriptionStatus.ACTIVE:
        raise SubscriptionActionError("INVALID_SUBSCRIPTION_STATE", "Apenas assinaturas ativas podem ser pausadas")
    _call_gateway(mercadopago.pause_preapproval, sub)
    subscription_store.set_status(sub, SubscriptionStatus.PAUSED)
    logger.info("Assinatura %s pausada", sub.id)
    return subscription_store.get_user_subscription_info(user_id)


def resume_subscription(user_id: int) -> subscription_store.SubscriptionInfo:
    sub = _live_or_404(user_id)
    if sub.status != SubscriptionStatus.PAUSED:
        raise SubscriptionActionError("INVALID_SUBSCRIPTION_STATE", "Apenas assinaturas pausadas podem ser retomadas")
    _call_gateway(mercadopago.resume_preapproval, sub)
    subscription_store.set_status(sub, SubscriptionStatus.ACTIVE)
    logger.info("Assinatura %s retomada", sub.id)
    return subscription_store.get_user_subscription_info(user_id)


def cancel_subscription(user_id: int) -> str:
    """Cancela no gateway e localmente. Devolve o id da assinatura cancelada."""
    sub = _live_or_404(user_id)
    _call_gateway(mercadopago.cancel_preapproval, sub)
    subscription_store.set_status(sub, SubscriptionStatus.CANCELED)
    logger.info("Assinatura %s cancelada", sub.id)
    return sub.id
