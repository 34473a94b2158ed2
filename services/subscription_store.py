from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from models.address_model import Address
from models.extensions import db
from models.plan_model import SubscriptionPlan
from models.subscription_model import (
    CycleStatus,
    Subscription,
    SubscriptionCycle,
    SubscriptionStatus,
)
from services.date_utils import add_months, utcnow
from services.pricing import to_money

logger = logging.getLogger(__name__)


class DuplicateSubscriptionError(RuntimeError):
    """O usuario ja tem uma assinatura vigente (indice unico parcial)."""


@dataclass
class PlanInfo:
    id: str
    name: str
    slug: str
    description: str | None
    price: Decimal
    discount_percent: int


@dataclass
class SubscriptionInfo:
    id: str
    status: str
    provider_sub_id: str | None
    started_at: datetime | None
    next_billing_at: datetime | None
    canceled_at: datetime | None
    plan: PlanInfo


def _plan_dto(m: SubscriptionPlan) -> PlanInfo:
    return PlanInfo(
        id=m.id,
        name=m.name,
        slug=m.slug,
        description=m.description,
        price=m.price,
        discount_percent=m.discount_percent or 0,
    )


def _to_dto(m: Subscription) -> SubscriptionInfo:
    return SubscriptionInfo(
        id=m.id,
        status=m.status,
        provider_sub_id=m.provider_sub_id,
        started_at=m.started_at,
        next_billing_at=m.next_billing_at,
        canceled_at=m.canceled_at,
        plan=_plan_dto(m.plan),
    )


# ---------------- Planos / enderecos ----------------


def find_plan_by_slug(slug: str) -> SubscriptionPlan | None:
    """Somente planos ativos."""
    if not slug:
        return None
    return SubscriptionPlan.query.filter_by(slug=slug, active=True).first()


def list_active_plans() -> list[PlanInfo]:
    query = SubscriptionPlan.query.filter_by(active=True).order_by(SubscriptionPlan.price.asc())
    return [_plan_dto(m) for m in query.all()]


def find_address_by_id(address_id: str, user_id: int) -> Address | None:
    """Endereco so e retornado se pertencer ao usuario."""
    if not address_id or not user_id:
        return None
    return Address.query.filter_by(id=address_id, user_id=user_id).first()


# ---------------- Assinaturas ----------------


def _live_query(user_id: int):
    return Subscription.query.filter(
        Subscription.user_id == user_id,
        Subscription.status.in_(SubscriptionStatus.LIVE),
    )


def user_has_any_active_subscription(user_id: int) -> bool:
    if not user_id:
        return False
    return db.session.query(_live_query(user_id).exists()).scalar()


def get_live_subscription(user_id: int) -> Subscription | None:
    if not user_id:
        return None
    return _live_query(user_id).order_by(Subscription.created_at.desc()).first()


def get_user_subscription_info(user_id: int) -> SubscriptionInfo | None:
    m = get_live_subscription(user_id)
    return _to_dto(m) if m else None


def find_by_provider_sub_id(provider_sub_id: str) -> Subscription | None:
    if not provider_sub_id:
        return None
    return Subscription.query.filter_by(provider_sub_id=str(provider_sub_id)).first()


def create_subscription(
    user_id: int,
    plan_id: str,
    provider_sub_id: str | None = None,
    next_billing_at: datetime | None = None,
    provider: str = "MERCADO_PAGO",
) -> Subscription:
    m = Subscription(
        user_id=user_id,
        plan_id=plan_id,
        provider=provider,
        provider_sub_id=provider_sub_id,
        status=SubscriptionStatus.ACTIVE,
        started_at=utcnow(),
        next_billing_at=next_billing_at,
    )
    db.session.add(m)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Assinatura duplicada para user_id=%s (plan_id=%s)", user_id, plan_id)
        raise DuplicateSubscriptionError(str(user_id)) from exc
    return m


def create_first_cycle(
    subscription_id: str,
    amount: Decimal,
    payment_id: str | None = None,
    cycle_end: datetime | None = None,
) -> SubscriptionCycle:
    """Primeiro ciclo: PAID quando ja existe pagamento vinculado.

    cycle_end vem da proxima cobranca informada pelo gateway; sem ela, +1 mes.
    """
    start = utcnow()
    m = SubscriptionCycle(
        subscription_id=subscription_id,
        status=CycleStatus.PAID if payment_id else CycleStatus.PENDING,
        cycle_start=start,
        cycle_end=cycle_end or add_months(start, 1),
        amount=to_money(amount),
        payment_id=payment_id,
    )
    db.session.add(m)
    db.session.commit()
    return m


def has_cycle_for_provider_payment(provider_payment_id: str) -> bool:
    if not provider_payment_id:
        return False
    return (
        SubscriptionCycle.query.filter_by(provider_payment_id=str(provider_payment_id)).first()
        is not None
    )


def create_renewal_cycle(
    subscription: Subscription,
    amount: Decimal,
    provider_payment_id: str | None = None,
    next_billing_at: datetime | None = None,
) -> SubscriptionCycle:
    """Ciclo de renovacao cobrado pela recorrencia do gateway.

    Comeca na proxima cobranca prevista e avanca next_billing_at em um mes
    (ou para a data informada pelo gateway).
    """
    start = subscription.next_billing_at or utcnow()
    end = add_months(start, 1)
    m = SubscriptionCycle(
        subscription_id=subscription.id,
        status=CycleStatus.PAID if provider_payment_id else CycleStatus.PENDING,
        cycle_start=start,
        cycle_end=end,
        amount=to_money(amount),
        provider_payment_id=provider_payment_id,
    )
    db.session.add(m)
    subscription.next_billing_at = next_billing_at or end
    db.session.commit()
    return m


def set_status(subscription: Subscription, status: str) -> Subscription:
    subscription.status = status
    if status == SubscriptionStatus.CANCELED:
        subscription.canceled_at = subscription.canceled_at or utcnow()
    elif status == SubscriptionStatus.ACTIVE:
        subscription.canceled_at = None
    db.session.commit()
    return subscription


def set_next_billing(subscription: Subscription, next_billing_at: datetime | None) -> None:
    if next_billing_at and subscription.next_billing_at != next_billing_at:
        subscription.next_billing_at = next_billing_at
        db.session.commit()


def cancel_live_subscription_for_plan(user_id: int, plan_id: str) -> Subscription | None:
    m = (
        Subscription.query.filter(
            Subscription.user_id == user_id,
            Subscription.plan_id == plan_id,
            Subscription.status.in_(SubscriptionStatus.LIVE),
        )
        .order_by(Subscription.created_at.desc())
        .first()
    )
    if not m:
        return None
    return set_status(m, SubscriptionStatus.CANCELED)
