# tests/conftest.py
# -*- coding: utf-8 -*-
import os
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

# =====================================================================================
# Ambiente de testes: precisa existir antes de importar config/app
# =====================================================================================
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

_fd, DB_PATH = tempfile.mkstemp(prefix="doende_test_", suffix=".sqlite")
os.close(_fd)

os.environ["DATABASE_URL"] = f"sqlite:///{DB_PATH}"
os.environ["APP_ENV"] = "testing"
os.environ["TESTING"] = "1"
os.environ["SECRET_KEY"] = "testing-secret-key-with-more-than-32-chars"
os.environ["APP_BASE_URL"] = "https://loja.example.test"
os.environ["MERCADOPAGO_ACCESS_TOKEN"] = "TEST-access-token"
os.environ["MERCADOPAGO_WEBHOOK_SECRET"] = ""
os.environ["MERCADOPAGO_PRODUCTION"] = "0"

CSRF_TOKEN = "test-csrf-token"


@pytest.fixture(scope="session")
def app():
    import app as app_module

    flask_app = app_module.app
    flask_app.config.update(
        TESTING=True,
        MERCADOPAGO_WEBHOOK_SECRET="",
        MERCADOPAGO_PRODUCTION=False,
        MERCADOPAGO_ACCESS_TOKEN="TEST-access-token",
    )
    yield flask_app

    for suffix in ("", "-wal", "-shm"):
        try:
            os.remove(DB_PATH + suffix)
        except OSError:
            pass


@pytest.fixture(autouse=True)
def _clean_state(app):
    """Cada teste comeca com o banco vazio e o rate limiter zerado."""
    from models.extensions import db
    from services.rate_limiter import limiter

    limiter.reset()
    yield
    with app.app_context():
        db.session.rollback()
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
    limiter.reset()


@pytest.fixture(autouse=True)
def _block_network(monkeypatch):
    """Nenhum teste deve chegar na API real do Mercado Pago."""
    import requests

    def _blocked(*args, **kwargs):
        raise AssertionError(f"requisicao HTTP inesperada em teste: {args} {kwargs}")

    monkeypatch.setattr(requests, "request", _blocked, raising=True)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


# =====================================================================================
# Dados basicos: usuarios, enderecos e planos
# =====================================================================================
@dataclass
class Seed:
    user_id: int
    user_email: str
    other_user_id: int
    address_id: str
    other_address_id: str
    bronze_id: str
    prata_id: str
    inactive_plan_id: str


@pytest.fixture
def seed(app):
    from models.address_model import Address
    from models.extensions import db
    from models.plan_model import SubscriptionPlan
    from models.user_model import User

    with app.app_context():
        user = User(email="cliente@example.com", full_name="Maria da Silva Souza", whatsapp="11999998888")
        user.set_password("senha-forte-123")
        other = User(email="outro@example.com", full_name="Joao Outro")
        other.set_password("outra-senha-123")
        db.session.add_all([user, other])
        db.session.flush()

        address = Address(
            user_id=user.id,
            street="Rua das Flores",
            number="123",
            complement="Apto 4",
            neighborhood="Centro",
            city="São Paulo",
            state="SP",
            zip_code="01001000",
        )
        other_address = Address(
            user_id=other.id,
            street="Av. Brasil",
            number="900",
            neighborhood="Jardins",
            city="Rio de Janeiro",
            state="RJ",
            zip_code="20040002",
        )
        bronze = SubscriptionPlan(
            name="Doende Bronze", slug="doende-bronze", price=Decimal("49.90"), discount_percent=15
        )
        prata = SubscriptionPlan(
            name="Doende Prata", slug="doende-prata", price=Decimal("79.90"), discount_percent=20
        )
        inactive = SubscriptionPlan(
            name="Doende Antigo", slug="doende-antigo", price=Decimal("19.90"), active=False
        )
        db.session.add_all([address, other_address, bronze, prata, inactive])
        db.session.commit()

        return Seed(
            user_id=user.id,
            user_email=user.email,
            other_user_id=other.id,
            address_id=address.id,
            other_address_id=other_address.id,
            bronze_id=bronze.id,
            prata_id=prata.id,
            inactive_plan_id=inactive.id,
        )


def _login(client, user_id):
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)
        sess["_fresh"] = True
        sess["_csrf_token"] = CSRF_TOKEN
    client.environ_base["HTTP_X_CSRF_TOKEN"] = CSRF_TOKEN
    return client


@pytest.fixture
def logged_client(client, seed):
    return _login(client, seed.user_id)


@pytest.fixture
def login_as():
    return _login


@pytest.fixture
def make_subscription(app):
    """Cria uma assinatura diretamente no banco e devolve o id."""
    from models.extensions import db
    from models.subscription_model import Subscription, SubscriptionStatus

    def _make(user_id, plan_id, status=SubscriptionStatus.ACTIVE, provider_sub_id=None, next_billing_at=None):
        with app.app_context():
            sub = Subscription(
                user_id=user_id,
                plan_id=plan_id,
                status=status,
                provider_sub_id=provider_sub_id,
                next_billing_at=next_billing_at,
            )
            db.session.add(sub)
            db.session.commit()
            return sub.id

    return _make


# =====================================================================================
# Gateway falso (substitui as funcoes de services.mercadopago)
# =====================================================================================
class FakeGateway:
    def __init__(self):
        from services.mercadopago import CardCharge, PixCharge, Preapproval

        self.calls = []
        self.snapshots = []
        self.pix_result = PixCharge(
            payment_id="1320001",
            status="pending",
            status_detail="pending_waiting_transfer",
            qr_code="00020126580014br.gov.bcb.pix0136chave-pix-teste",
            qr_code_base64="iVBORw0KGgoAAAANSUhEUgAAAAEAAAAB",
            ticket_url="https://www.mercadopago.com.br/payments/1320001/ticket",
            expiration_date=datetime(2030, 1, 1, 12, 30),
        )
        self.card_result = CardCharge(
            payment_id="1320002",
            status="approved",
            status_detail="accredited",
            card_last_four="4242",
            card_brand="visa",
        )
        self.preapproval_result = Preapproval(
            preapproval_id="2c9380848f0a",
            status="authorized",
            next_payment_date=datetime(2030, 2, 15, 10, 0),
        )
        self.pix_error = None
        self.card_error = None
        self.preapproval_error = None
        self.status_error = None
        self.cancel_error = None
        self.payments = {}
        self.preapprovals = {}
        self.authorized_payments = {}

    def names(self):
        return [name for name, _ in self.calls]

    def kwargs_of(self, name):
        for call_name, kwargs in self.calls:
            if call_name == name:
                return kwargs
        raise AssertionError(f"{name} nao foi chamado")

    def _snapshot(self, name):
        from models.order_model import Order
        from models.payment_model import Payment
        from models.subscription_model import Subscription

        self.snapshots.append(
            {
                "call": name,
                "orders": Order.query.count(),
                "payments": Payment.query.count(),
                "subscriptions": Subscription.query.count(),
            }
        )

    def create_pix_payment(self, **kwargs):
        self.calls.append(("create_pix_payment", kwargs))
        self._snapshot("create_pix_payment")
        if self.pix_error:
            raise self.pix_error
        return self.pix_result

    def create_card_payment(self, **kwargs):
        self.calls.append(("create_card_payment", kwargs))
        self._snapshot("create_card_payment")
        if self.card_error:
            raise self.card_error
        return self.card_result

    def create_preapproval(self, **kwargs):
        self.calls.append(("create_preapproval", kwargs))
        if self.preapproval_error:
            raise self.preapproval_error
        return self.preapproval_result

    def get_payment(self, payment_id):
        self.calls.append(("get_payment", {"payment_id": payment_id}))
        if self.status_error:
            raise self.status_error
        return self.payments[str(payment_id)]

    def get_preapproval(self, preapproval_id):
        self.calls.append(("get_preapproval", {"preapproval_id": preapproval_id}))
        return self.preapprovals[preapproval_id]

    def get_authorized_payment(self, authorized_payment_id):
        self.calls.append(("get_authorized_payment", {"id": authorized_payment_id}))
        return self.authorized_payments[str(authorized_payment_id)]

    def _state_change(self, name, preapproval_id):
        from services.mercadopago import Preapproval

        self.calls.append((name, {"preapproval_id": preapproval_id}))
        if self.status_error:
            raise self.status_error
        return Preapproval(preapproval_id=preapproval_id, status=name, next_payment_date=None)

    def pause_preapproval(self, preapproval_id):
        return self._state_change("pause_preapproval", preapproval_id)

    def resume_preapproval(self, preapproval_id):
        return self._state_change("resume_preapproval", preapproval_id)

    def cancel_preapproval(self, preapproval_id):
        if self.cancel_error:
            self.calls.append(("cancel_preapproval", {"preapproval_id": preapproval_id}))
            raise self.cancel_error
        return self._state_change("cancel_preapproval", preapproval_id)


@pytest.fixture
def fake_mp(monkeypatch):
    from services import mercadopago

    fake = FakeGateway()
    for name in (
        "create_pix_payment",
        "create_card_payment",
        "create_preapproval",
        "get_payment",
        "get_preapproval",
        "get_authorized_payment",
        "pause_preapproval",
        "resume_preapproval",
        "cancel_preapproval",
    ):
        monkeypatch.setattr(mercadopago, name, getattr(fake, name), raising=True)
    return fake


@pytest.fixture
def in_a_month():
    return datetime.now() + timedelta(days=30)
