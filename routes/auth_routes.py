from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from models.user_model import User
from services.permissions import get_csrf_token, json_error
from services.rate_limiter import enforce, rate_limit_key

auth_bp = Blueprint("auth", __name__)


def _normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


@auth_bp.post("/api/auth/login")
def login():
    payload = request.get_json(silent=True) or {}
    email = _normalize_email(payload.get("email"))
    password = payload.get("password") or ""

    rate_block = enforce(
        rate_limit_key("login", email or None),
        "RATE_LIMIT_LOGIN",
        default_limit=10,
        message="Muitas tentativas. Tente novamente em instantes.",
    )
    if rate_block is not None:
        return rate_block

    if not email or not password:
        return json_error("Preencha e-mail e senha.", 400, "VALIDATION_ERROR")

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        return json_error("E-mail ou senha inválidos.", 401, "INVALID_CREDENTIALS")
    if user.is_blocked:
        return json_error("Conta bloqueada. Entre em contato com o suporte.", 403, "USER_BLOCKED")

    login_user(user)
    return jsonify({"success": True, "data": {"id": user.id, "email": user.email, "csrfToken": get_csrf_token()}})


@auth_bp.post("/api/auth/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})


@auth_bp.get("/api/auth/me")
def me():
    if not current_user.is_authenticated:
        return jsonify({"isLoggedIn": False})
    return jsonify(
        {
            "isLoggedIn": True,
            "user": {
                "id": current_user.id,
                "email": current_user.email,
                "fullName": current_user.full_name,
                "status": current_user.status,
            },
            "csrfToken": get_csrf_token(),
        }
    )
