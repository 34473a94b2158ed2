import os
from datetime import timedelta

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Ambiente (opcional) - use para rotular logs
    APP_ENV = (
        os.getenv("APP_ENV")
        or os.getenv("FLASK_ENV")
        or os.getenv("ENV")
        or "development"
    ).lower()
    IS_PRODUCTION = APP_ENV in {"prod", "production"}

    STORE_NAME = (os.getenv("STORE_NAME", "Doende Verde") or "").strip() or "Doende Verde"

    def _is_weak_secret(value: str) -> bool:
        if not value:
            return True
        if value == "dev-secret-change-me":
            return True
        if len(value) < 32:
            return True
        return False

    # Essencial para sessão/login
    SECRET_KEY = os.getenv("SECRET_KEY", "")
    if not SECRET_KEY:
        SECRET_KEY = "dev-secret-change-me"
    if IS_PRODUCTION and _is_weak_secret(SECRET_KEY):
        raise RuntimeError("SECRET_KEY ausente ou fraco em produção.")

    # Banco:
    # - Local: sqlite
    # - Produção: DATABASE_URL (Postgres)
    DATABASE_URL = os.getenv("DATABASE_URL")

    if DATABASE_URL:
        # Alguns provedores usam "postgres://", SQLAlchemy prefere "postgresql://"
        if DATABASE_URL.startswith("postgres://"):
            DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

        # Força psycopg (v3)
        if DATABASE_URL.startswith("postgresql+psycopg2://"):
            DATABASE_URL = DATABASE_URL.replace(
                "postgresql+psycopg2://", "postgresql+psycopg://", 1
            )
        if DATABASE_URL.startswith("postgresql://"):
            DATABASE_URL = DATABASE_URL.replace(
                "postgresql://", "postgresql+psycopg://", 1
            )

        if DATABASE_URL.startswith("postgresql+psycopg://") and "sslmode=" not in DATABASE_URL:
            sep = "&" if "?" in DATABASE_URL else "?"
            DATABASE_URL = f"{DATABASE_URL}{sep}sslmode=require"

        SQLALCHEMY_DATABASE_URI = DATABASE_URL
    else:
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + os.path.join(BASE_DIR, "database.db")

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Evita conexoes reutilizadas mortas
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", "280")),
    }
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS["connect_args"] = {
            "check_same_thread": False,
            "timeout": int(os.getenv("SQLITE_TIMEOUT", "30")),
        }

    DEBUG = _env_bool("DEBUG", default=not IS_PRODUCTION)
    if IS_PRODUCTION:
        DEBUG = False
    TESTING = _env_bool("TESTING", default=False)

    # Sessão / cookies
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv("SESSION_COOKIE_SAMESITE", "Lax")
    SESSION_COOKIE_SECURE = IS_PRODUCTION
    REMEMBER_COOKIE_SECURE = IS_PRODUCTION
    REMEMBER_COOKIE_HTTPONLY = True
    PERMANENT_SESSION_LIFETIME = timedelta(days=int(os.getenv("SESSION_LIFETIME_DAYS", "7")))

    # URL pública do app. Usada em back_url e notification_url do gateway.
    _app_base_url = os.getenv("APP_BASE_URL")
    if not _app_base_url:
        if IS_PRODUCTION:
            raise RuntimeError("APP_BASE_URL deve estar configurado em produção.")
        _app_base_url = "http://127.0.0.1:5000"
    APP_BASE_URL = _app_base_url.rstrip("/")

    # Mercado Pago
    MERCADOPAGO_ACCESS_TOKEN = (
        os.getenv("MERCADOPAGO_ACCESS_TOKEN") or os.getenv("ACCESS_TOKEN_MP") or ""
    ).strip()
    MERCADOPAGO_BASE_URL = os.getenv("MERCADOPAGO_BASE_URL", "https://api.mercadopago.com")
    MERCADOPAGO_TIMEOUT = float(os.getenv("MERCADOPAGO_TIMEOUT", "10"))
    # Secret do painel de webhooks (assinatura x-signature)
    MERCADOPAGO_WEBHOOK_SECRET = (
        os.getenv("MERCADOPAGO_WEBHOOK_SECRET") or os.getenv("MP_WEBHOOK_SECRET") or ""
    ).strip()
    if IS_PRODUCTION and not MERCADOPAGO_WEBHOOK_SECRET:
        raise RuntimeError("MERCADOPAGO_WEBHOOK_SECRET deve estar configurado em produção.")
    # Fora de producao os preapprovals vao para o ambiente de testes (X-scope: stage)
    MERCADOPAGO_PRODUCTION = _env_bool("MERCADOPAGO_PRODUCTION", default=IS_PRODUCTION)
    MERCADOPAGO_STATEMENT_NAME = os.getenv("MERCADOPAGO_STATEMENT_NAME", "DOENDEVERDE")

    SUBSCRIPTION_CYCLE_DAYS = int(os.getenv("SUBSCRIPTION_CYCLE_DAYS", "30"))
    PIX_EXPIRATION_MINUTES = int(os.getenv("PIX_EXPIRATION_MINUTES", "30"))

    # Rate limiting (em memória - produção multi-instância exige Redis)
    RATE_LIMIT_LOGIN = int(os.getenv("RATE_LIMIT_LOGIN", "10"))
    RATE_LIMIT_LOGIN_WINDOW = int(os.getenv("RATE_LIMIT_LOGIN_WINDOW", "60"))
    RATE_LIMIT_CHECKOUT = int(os.getenv("RATE_LIMIT_CHECKOUT", "5"))
    RATE_LIMIT_CHECKOUT_WINDOW = int(os.getenv("RATE_LIMIT_CHECKOUT_WINDOW", "60"))
