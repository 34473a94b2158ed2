import uuid

from models.extensions import db
from services.date_utils import utcnow


class PaymentStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class Payment(db.Model):
    """Uma tentativa de cobranca de um pedido."""

    __tablename__ = "payments"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, index=True)

    provider = db.Column(db.String(32), nullable=False, default="MERCADO_PAGO")
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(db.String(20), default=PaymentStatus.PENDING, nullable=False)

    # id do pagamento no gateway
    transaction_id = db.Column(db.String(64), nullable=True, index=True)
    payload = db.Column(db.JSON, nullable=True)

    # Dados do PIX persistidos para o cliente recuperar o QR depois
    pix_qr_code = db.Column(db.Text, nullable=True)
    pix_qr_code_base64 = db.Column(db.Text, nullable=True)
    pix_ticket_url = db.Column(db.String(512), nullable=True)
    pix_expires_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)
