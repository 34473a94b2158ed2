from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text

db = SQLAlchemy()


def init_db(app):
    db.init_app(app)
    with app.app_context():
        # Garante que todos os modelos entram no metadata antes do create_all
        from models import (  # noqa: F401
            address_model,
            order_model,
            payment_model,
            plan_model,
            subscription_model,
            user_model,
        )

        db.create_all()

        if db.engine.name == "sqlite":
            with db.engine.begin() as conn:
                conn.execute(text("PRAGMA journal_mode=WAL"))
                conn.execute(text("PRAGMA synchronous=NORMAL"))
                conn.execute(text("PRAGMA busy_timeout=5000"))
