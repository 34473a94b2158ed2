import uuid

from models.extensions import db
from services.date_utils import utcnow


class Address(db.Model):
    __tablename__ = "addresses"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    street = db.Column(db.String(255), nullable=False)
    number = db.Column(db.String(20), nullable=False)
    complement = db.Column(db.String(255), nullable=True)
    neighborhood = db.Column(db.String(120), nullable=False)
    city = db.Column(db.String(120), nullable=False)
    state = db.Column(db.String(2), nullable=False)
    # CEP apenas com dígitos
    zip_code = db.Column(db.String(8), nullable=False)
    country = db.Column(db.String(2), nullable=False, default="BR")

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
