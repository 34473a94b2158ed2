from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from models.extensions import db
from models.order_model import Order
from models.payment_model import Payment, PaymentStatus
from services.date_utils import utcnow
from services.pricing import to_money


def _merge_payload(m: Payment, extra: Dict[str, Any] | None) -> None:
    if not extra:
        return
    payload = dict(m.payload or {})
    payload.update(extra)
    # atribui um novo dict para o SQLAlchemy detectar a mudanca na coluna JSON
    m.payload = payload


def create_payment(order_id: str, amount: Decimal, provider: str = "MERCADO_PAGO") -> Payment:
    m = Payment(
        order_id=order_id,
        provider=provider,
        amount=to_money(amount),
        status=PaymentStatus.PENDING,
    )
    db.session.add(m)
    db.session.commit()
    return m


def get_payment(payment_id: str) -> Payment | None:
    if not payment_id:
        return None
    return db.session.get(Payment, payment_id)


def find_by_transaction_id(transaction_id: str) -> Payment | None:
    if not transaction_id:
        return None
    return Payment.query.filter_by(transaction_id=str(transaction_id)).first()


def latest_payment_for_order(order_id: str) -> Payment | None:
    if not order_id:
        return None
    return (
        Payment.query.filter_by(order_id=order_id)
        .order_by(Payment.created_at.desc())
        .first()
    )


def find_pending_pix(user_id: int, now: datetime | None = None) -> Payment | None:
    """PIX mais recente do usuario ainda PENDING e com QR valido."""
    if not user_id:
        return None
    now = now or utcnow()
    return (
        Payment.query.join(Order, Payment.order_id == Order.id)
        .filter(
            Order.user_id == user_id,
            Payment.status == PaymentStatus.PENDING,
            Payment.provider == "MERCADO_PAGO",
            Payment.pix_qr_code.isnot(None),
            Payment.pix_expires_at > now,
        )
        .order_by(Payment.created_at.desc())
        .first()
    )


def set_transaction(payment_id: str, transaction_id: str, payload: Dict[str, Any] | None = None) -> bool:
    """Guarda o id do gateway sem mudar o status (continua PENDING)."""
    m = get_payment(payment_id)
    if not m:
        return False
    if transaction_id:
        m.transaction_id = str(transaction_id)
    _merge_payload(m, payload)
    db.session.commit()
    return True


def add_payload(payment_id: str, extra: Dict[str, Any]) -> bool:
    m = get_payment(payment_id)
    if not m:
        return False
    _merge_payload(m, extra)
    db.session.commit()
    return True


def attach_pix_data(
    payment_id: str,
    transaction_id: str,
    qr_code: str | None,
    qr_code_base64: str | None,
    ticket_url: str | None,
    expires_at: datetime,
    plan: Dict[str, Any] | None = None,
) -> bool:
    m = get_payment(payment_id)
    if not m:
        return False
    m.transaction_id = str(transaction_id)
    m.pix_qr_code = qr_code or None
    m.pix_qr_code_base64 = qr_code_base64 or None
    m.pix_ticket_url = ticket_url or None
    m.pix_expires_at = expires_at
    _merge_payload(m, {"type": "subscription_pix", **(plan or {})})
    db.session.commit()
    return True


def mark_payment_paid(payment_id: str, transaction_id: str | None, payload: Dict[str, Any] | None = None) -> bool:
    """PENDING -> PAID. Qualquer outro estado de origem e recusado."""
    m = get_payment(payment_id)
    if not m or m.status != PaymentStatus.PENDING:
        return False
    m.status = PaymentStatus.PAID
    m.paid_at = utcnow()
    if transaction_id:
        m.transaction_id = str(transaction_id)
    _merge_payload(m, payload)
    db.session.commit()
    return True


def mark_payment_failed(payment_id: str, payload: Dict[str, Any] | None = None) -> bool:
    """PENDING -> FAILED, guardando o erro do gateway no payload."""
    m = get_payment(payment_id)
    if not m or m.status != PaymentStatus.PENDING:
        return False
    m.status = PaymentStatus.FAILED
    transaction_id = (payload or {}).get("mpPaymentId")
    if transaction_id and not m.transaction_id:
        m.transaction_id = str(transaction_id)
    _merge_payload(m, payload)
    db.session.commit()
    return True


def mark_payment_refunded(payment_id: str, payload: Dict[str, Any] | None = None) -> bool:
    m = get_payment(payment_id)
    if not m or m.status not in {PaymentStatus.PAID, PaymentStatus.PENDING}:
        return False
    m.status = PaymentStatus.REFUNDED
    _merge_payload(m, {**(payload or {}), "refundedAt": utcnow().isoformat()})
    db.session.commit()
    return True
