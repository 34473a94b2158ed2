from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict

from models.address_model import Address
from models.extensions import db
from models.order_model import Order, OrderStatus
from models.plan_model import SubscriptionPlan
from models.user_model import User
from services.date_utils import utcnow
from services.pricing import order_total, to_money


def create_subscription_order(
    user: User,
    plan: SubscriptionPlan,
    address: Address,
    shipping_amount: Decimal | None = None,
    shipping_data: Dict[str, Any] | None = None,
) -> Order:
    """Cria o pedido PENDING da primeira mensalidade com snapshot do endereco."""
    subtotal = to_money(plan.price)
    discount = to_money(0)
    shipping = to_money(shipping_amount)

    m = Order(
        user_id=user.id,
        status=OrderStatus.PENDING,
        subtotal_amount=subtotal,
        discount_amount=discount,
        shipping_amount=shipping,
        total_amount=order_total(subtotal, discount, shipping),
        notes=f"Assinatura: {plan.name} (Plan ID: {plan.id})",
        shipping_data=shipping_data,
        snapshot_full_name=user.full_name or "",
        snapshot_whatsapp=user.whatsapp or "",
        snapshot_street=address.street,
        snapshot_number=address.number,
        snapshot_complement=address.complement or None,
        snapshot_neighborhood=address.neighborhood,
        snapshot_city=address.city,
        snapshot_state=address.state,
        snapshot_zip_code=address.zip_code,
        snapshot_country=address.country or "BR",
    )
    db.session.add(m)
    db.session.commit()
    return m


def get_order(order_id: str) -> Order | None:
    if not order_id:
        return None
    return db.session.get(Order, order_id)


def mark_order_paid(order_id: str) -> bool:
    """PENDING -> PAID. Pedido ja pago nao e alterado de novo."""
    m = db.session.get(Order, order_id) if order_id else None
    if not m:
        return False
    if m.status == OrderStatus.PAID:
        return True
    if m.status != OrderStatus.PENDING:
        return False
    m.status = OrderStatus.PAID
    m.paid_at = utcnow()
    db.session.commit()
    return True


def totals_are_consistent(m: Order) -> bool:
    return to_money(m.total_amount) == order_total(m.subtotal_amount, m.discount_amount, m.shipping_amount)
