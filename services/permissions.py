from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
import secrets

from flask import jsonify, request, session
from flask_login import current_user


CSRF_SESSION_KEY = "_csrf_token"

# Endpoints externos ou sem sessao que nao devem validar CSRF.
CSRF_EXEMPT_ENDPOINTS = {
    "webhooks.mercadopago_webhook",
    "auth.login",
}


@dataclass(frozen=True)
class AccessDecision:
    ok: bool
    status: int = 200
    error: str | None = None
    error_code: str | None = None


def json_error(error: str, status: int, error_code: str | None = None, details=None):
    body = {"success": False, "error": error, "errorCode": error_code or "ERROR"}
    if details:
        body["details"] = details
    return jsonify(body), status


def is_json_request() -> bool:
    path = request.path or ""
    if path.startswith("/api/"):
        return True
    if request.is_json:
        return True
    accept = request.headers.get("Accept", "")
    if "application/json" in accept.lower():
        return True
    return False


def get_csrf_token() -> str:
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[CSRF_SESSION_KEY] = token
    return token


def validate_csrf() -> bool:
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        return False
    header = request.headers.get("X-CSRF-Token") or request.headers.get("X-CSRFToken")
    if header and secrets.compare_digest(header, token):
        return True
    return False


def evaluate_access(user) -> AccessDecision:
    if not user or not getattr(user, "is_authenticated", False):
        return AccessDecision(False, 401, "Não autorizado. Faça login para continuar.", "UNAUTHORIZED")

    if getattr(user, "is_blocked", False):
        return AccessDecision(False, 403, "Conta bloqueada. Entre em contato com o suporte.", "USER_BLOCKED")

    return AccessDecision(True)


def require_api_access(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        decision = evaluate_access(current_user)
        if not decision.ok:
            return json_error(decision.error or "forbidden", decision.status, decision.error_code)
        return fn(*args, **kwargs)

    return wrapper
