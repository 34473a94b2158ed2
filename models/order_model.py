import uuid
from decimal import Decimal

from models.extensions import db
from services.date_utils import utcnow


class OrderStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELED = "CANCELED"


class Order(db.Model):
    """Pedido (uma intencao de compra).

    O endereco e copiado para as colunas snapshot_* no momento da criacao,
    assim edicoes posteriores no cadastro nao alteram pedidos antigos.
    """

    __tablename__ = "orders"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    status = db.Column(db.String(20), default=OrderStatus.PENDING, nullable=False)

    subtotal_amount = db.Column(db.Numeric(10, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    shipping_amount = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    total_amount = db.Column(db.Numeric(10, 2), nullable=False)

    notes = db.Column(db.Text, nullable=True)
    shipping_data = db.Column(db.JSON, nullable=True)

    snapshot_full_name = db.Column(db.String(255), nullable=False)
    snapshot_whatsapp = db.Column(db.String(32), nullable=False, default="")
    snapshot_street = db.Column(db.String(255), nullable=False)
    snapshot_number = db.Column(db.String(20), nullable=False)
    snapshot_complement = db.Column(db.String(255), nullable=True)
    snapshot_neighborhood = db.Column(db.String(120), nullable=False)
    snapshot_city = db.Column(db.String(120), nullable=False)
    snapshot_state = db.Column(db.String(2), nullable=False)
    snapshot_zip_code = db.Column(db.String(8), nullable=False)
    snapshot_country = db.Column(db.String(2), nullable=False, default="BR")

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)

    payments = db.relationship(
        "Payment",
        backref="order",
        lazy=True,
        order_by="Payment.created_at",
        cascade="all, delete-orphan",
    )
