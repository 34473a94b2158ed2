# tests/test_stores.py
# -*- coding: utf-8 -*-
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from models.address_model import Address
from models.extensions import db
from models.order_model import Order, OrderStatus
from models.payment_model import PaymentStatus
from models.plan_model import SubscriptionPlan
from models.subscription_model import CycleStatus, SubscriptionStatus
from models.user_model import User
from services import order_store, payment_store, subscription_store
from services.date_utils import add_months
from services.subscription_store import DuplicateSubscriptionError


def _entities(seed, plan_id=None):
    user = db.session.get(User, seed.user_id)
    plan = db.session.get(SubscriptionPlan, plan_id or seed.prata_id)
    address = db.session.get(Address, seed.address_id)
    return user, plan, address


# =====================================================================================
# Pedidos
# =====================================================================================
def test_order_keeps_address_snapshot(app, seed):
    with app.app_context():
        user, plan, address = _entities(seed)
        order = order_store.create_subscription_order(
            user, plan, address, shipping_amount=Decimal("12.5"), shipping_data={"carrier": "Correios"}
        )
        order_id = order.id

        address.street = "Rua Nova"
        address.zip_code = "99999999"
        db.session.commit()

    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == OrderStatus.PENDING
        assert order.snapshot_street == "Rua das Flores"
        assert order.snapshot_zip_code == "01001000"
        assert order.snapshot_full_name == "Maria da Silva Souza"
        assert order.snapshot_complement == "Apto 4"
        assert order.subtotal_amount == Decimal("79.90")
        assert order.shipping_amount == Decimal("12.50")
        assert order.total_amount == Decimal("92.40")
        assert order_store.totals_are_consistent(order)


def test_get_order(app, seed):
    with app.app_context():
        order = order_store.create_subscription_order(*_entities(seed))
        assert order_store.get_order(order.id).id == order.id
        assert order_store.get_order("00000000-0000-0000-0000-000000000000") is None
        assert order_store.get_order("") is None


def test_mark_order_paid_only_from_pending(app, seed):
    with app.app_context():
        order = order_store.create_subscription_order(*_entities(seed))
        assert order_store.mark_order_paid(order.id) is True
        paid_at = order.paid_at
        assert order_store.mark_order_paid(order.id) is True
        assert order.paid_at == paid_at

        other = order_store.create_subscription_order(*_entities(seed))
        other.status = OrderStatus.CANCELED
        db.session.commit()
        assert order_store.mark_order_paid(other.id) is False
        assert db.session.get(Order, other.id).status == OrderStatus.CANCELED


# =====================================================================================
# Pagamentos
# =====================================================================================
def test_payment_leaves_pending_only_once(app, seed):
    with app.app_context():
        order = order_store.create_subscription_order(*_entities(seed))
        payment = payment_store.create_payment(order.id, Decimal("79.9"))
        assert payment.amount == Decimal("79.90")
        assert payment.status == PaymentStatus.PENDING

        assert payment_store.mark_payment_paid(payment.id, "mp-1", {"cardBrand": "visa"}) is True
        assert payment_store.mark_payment_paid(payment.id, "mp-2") is False
        assert payment_store.mark_payment_failed(payment.id, {"error": "x"}) is False

        payment = payment_store.get_payment(payment.id)
        assert payment.status == PaymentStatus.PAID
        assert payment.transaction_id == "mp-1"
        assert payment.payload == {"cardBrand": "visa"}

        assert payment_store.mark_payment_refunded(payment.id, {"statusDetail": "refunded"}) is True
        assert payment_store.get_payment(payment.id).status == PaymentStatus.REFUNDED


def test_failed_payment_keeps_gateway_id(app, seed):
    with app.app_context():
        order = order_store.create_subscription_order(*_entities(seed))
        payment = payment_store.create_payment(order.id, order.total_amount)

        assert payment_store.set_transaction(payment.id, "mp-9", {"status": "in_process"}) is True
        assert payment_store.get_payment(payment.id).status == PaymentStatus.PENDING

        assert payment_store.mark_payment_failed(payment.id, {"status": "rejected"}) is True
        payment = payment_store.find_by_transaction_id("mp-9")
        assert payment.status == PaymentStatus.FAILED
        assert payment.payload == {"status": "rejected"}
        assert payment_store.latest_payment_for_order(order.id).id == payment.id


def _pix_payment(seed, transaction_id, expires_at):
    order = order_store.create_subscription_order(*_entities(seed, seed.bronze_id))
    payment = payment_store.create_payment(order.id, order.total_amount)
    payment_store.attach_pix_data(
        payment.id,
        transaction_id,
        qr_code=f"qr-{transaction_id}",
        qr_code_base64="iVBOR",
        ticket_url="https://www.mercadopago.com.br/payments/ticket",
        expires_at=expires_at,
        plan={"planId": seed.bronze_id, "planSlug": "doende-bronze"},
    )
    return payment.id


def test_find_pending_pix_skips_expired_and_settled(app, seed):
    now = datetime(2030, 1, 1, 12, 0)
    with app.app_context():
        _pix_payment(seed, "pix-expired", now - timedelta(minutes=1))
        paid_id = _pix_payment(seed, "pix-paid", now + timedelta(minutes=20))
        payment_store.mark_payment_paid(paid_id, "pix-paid")
        valid_id = _pix_payment(seed, "pix-valid", now + timedelta(minutes=10))

        found = payment_store.find_pending_pix(seed.user_id, now)
        assert found.id == valid_id
        assert found.payload["planSlug"] == "doende-bronze"
        assert payment_store.find_pending_pix(seed.other_user_id, now) is None
        assert payment_store.find_pending_pix(seed.user_id, now + timedelta(minutes=11)) is None


def test_add_payload_merges_keys(app, seed):
    with app.app_context():
        order = order_store.create_subscription_order(*_entities(seed))
        payment = payment_store.create_payment(order.id, order.total_amount)
        payment_store.set_transaction(payment.id, "mp-3", {"status": "approved"})

        assert payment_store.add_payload(payment.id, {"recurrenceMissing": True}) is True
        assert payment_store.get_payment(payment.id).payload == {"status": "approved", "recurrenceMissing": True}
        assert payment_store.add_payload("nao-existe", {"x": 1}) is False


# =====================================================================================
# Assinaturas
# =====================================================================================
def test_only_one_live_subscription_per_user(app, seed):
    with app.app_context():
        first = subscription_store.create_subscription(seed.user_id, seed.bronze_id)
        assert subscription_store.user_has_any_active_subscription(seed.user_id)

        with pytest.raises(DuplicateSubscriptionError):
            subscription_store.create_subscription(seed.user_id, seed.prata_id)

        subscription_store.set_status(first, SubscriptionStatus.CANCELED)
        assert not subscription_store.user_has_any_active_subscription(seed.user_id)

        second = subscription_store.create_subscription(seed.user_id, seed.prata_id)
        info = subscription_store.get_user_subscription_info(seed.user_id)
        assert info.id == second.id
        assert info.plan.slug == "doende-prata"


def test_first_cycle_defaults_to_one_month(app, seed):
    with app.app_context():
        sub = subscription_store.create_subscription(seed.user_id, seed.bronze_id)
        cycle = subscription_store.create_first_cycle(sub.id, Decimal("49.9"))
        assert cycle.status == CycleStatus.PENDING
        assert cycle.amount == Decimal("49.90")
        assert cycle.cycle_end == add_months(cycle.cycle_start, 1)


def test_cancel_live_subscription_for_plan(app, seed):
    with app.app_context():
        sub = subscription_store.create_subscription(seed.user_id, seed.bronze_id)

        assert subscription_store.cancel_live_subscription_for_plan(seed.user_id, seed.prata_id) is None
        canceled = subscription_store.cancel_live_subscription_for_plan(seed.user_id, seed.bronze_id)
        assert canceled.id == sub.id
        assert canceled.status == SubscriptionStatus.CANCELED
        assert canceled.canceled_at is not None


def test_find_address_only_for_owner(app, seed):
    with app.app_context():
        assert subscription_store.find_address_by_id(seed.address_id, seed.user_id) is not None
        assert subscription_store.find_address_by_id(seed.address_id, seed.other_user_id) is None
        assert subscription_store.find_plan_by_slug("doende-antigo") is None
        assert subscription_store.find_plan_by_slug("doende-bronze").id == seed.bronze_id
