"""Cadastra (ou atualiza pelo slug) os planos de assinatura padrao.

Uso: python scripts/seed_plans.py
"""

import os
import sys
from decimal import Decimal

PLANS = [
    {
        "name": "Doende X",
        "slug": "doende-x",
        "description": "Plano inicial com 5% de desconto permanente e 200 pontos mensais",
        "price": Decimal("29.90"),
        "discount_percent": 5,
    },
    {
        "name": "Doende Bronze",
        "slug": "doende-bronze",
        "description": "O plano mais popular! 15% de desconto e 350 pontos mensais",
        "price": Decimal("49.90"),
        "discount_percent": 15,
    },
    {
        "name": "Doende Prata",
        "slug": "doende-prata",
        "description": "Experiência premium com 20% de desconto e 500 pontos mensais",
        "price": Decimal("79.90"),
        "discount_percent": 20,
    },
]


def _setup_path():
    root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    if root not in sys.path:
        sys.path.insert(0, root)


def seed_plans() -> int:
    from models.extensions import db
    from models.plan_model import SubscriptionPlan

    changed = 0
    for data in PLANS:
        plan = SubscriptionPlan.query.filter_by(slug=data["slug"]).first()
        if plan is None:
            plan = SubscriptionPlan(slug=data["slug"], active=True)
            db.session.add(plan)
        for key, value in data.items():
            if getattr(plan, key) != value:
                setattr(plan, key, value)
                changed += 1
    db.session.commit()
    return changed


def main():
    _setup_path()

    import app as app_module

    with app_module.app.app_context():
        changed = seed_plans()
    print(f"Planos sincronizados ({changed} campos alterados).")


if __name__ == "__main__":
    main()
