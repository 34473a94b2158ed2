from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from models.extensions import db
from services.date_utils import utcnow


class UserStatus:
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    # Dados pessoais usados no snapshot do pedido e no payer do gateway
    full_name = db.Column(db.String(255), nullable=False, default="")
    # Armazenamos apenas dígitos para facilitar normalização.
    whatsapp = db.Column(db.String(32), nullable=True)

    status = db.Column(db.String(20), default=UserStatus.ACTIVE, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    addresses = db.relationship(
        "Address",
        backref="user",
        lazy=True,
        cascade="all, delete-orphan",
    )

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def is_blocked(self) -> bool:
        return (self.status or "").upper() == UserStatus.BLOCKED

    def name_parts(self) -> tuple[str, str]:
        """Separa primeiro nome e sobrenome (payer do gateway)."""
        parts = (self.full_name or "").split()
        if not parts:
            return "", ""
        return parts[0], " ".join(parts[1:])
