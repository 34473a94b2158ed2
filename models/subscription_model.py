import uuid

from sqlalchemy import text

from models.extensions import db
from services.date_utils import utcnow


class SubscriptionStatus:
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    PENDING_CANCELLATION = "PENDING_CANCELLATION"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"

    # Estados que contam como "assinatura vigente" (no maximo uma por usuario)
    LIVE = (ACTIVE, PAUSED, PENDING_CANCELLATION)


class CycleStatus:
    PENDING = "PENDING"
    PAID = "PAID"


_LIVE_SQL = "status IN ('ACTIVE', 'PAUSED', 'PENDING_CANCELLATION')"


class Subscription(db.Model):
    __tablename__ = "subscriptions"
    __table_args__ = (
        db.Index(
            "uq_subscriptions_user_live",
            "user_id",
            unique=True,
            sqlite_where=text(_LIVE_SQL),
            postgresql_where=text(_LIVE_SQL),
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    plan_id = db.Column(db.String(36), db.ForeignKey("subscription_plans.id"), nullable=False)

    provider = db.Column(db.String(32), nullable=False, default="MERCADO_PAGO")
    # id do preapproval; nulo quando a recorrencia nao foi configurada
    provider_sub_id = db.Column(db.String(64), nullable=True, index=True)

    status = db.Column(db.String(32), default=SubscriptionStatus.ACTIVE, nullable=False)
    started_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    next_billing_at = db.Column(db.DateTime, nullable=True)
    canceled_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    plan = db.relationship("SubscriptionPlan", lazy="joined")
    cycles = db.relationship(
        "SubscriptionCycle",
        backref="subscription",
        lazy=True,
        order_by="SubscriptionCycle.cycle_start",
        cascade="all, delete-orphan",
    )


class SubscriptionCycle(db.Model):
    __tablename__ = "subscription_cycles"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    subscription_id = db.Column(
        db.String(36), db.ForeignKey("subscriptions.id"), nullable=False, index=True
    )
    status = db.Column(db.String(20), default=CycleStatus.PENDING, nullable=False)
    cycle_start = db.Column(db.DateTime, nullable=False)
    cycle_end = db.Column(db.DateTime, nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    payment_id = db.Column(db.String(36), db.ForeignKey("payments.id"), nullable=True)
    # id da cobranca recorrente no gateway (renovacoes)
    provider_payment_id = db.Column(db.String(64), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
