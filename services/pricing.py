from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def _decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    # float passa por str() para nao herdar o erro binario (0.1 -> 0.1000000000000000055...)
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def to_money(value) -> Decimal:
    return _decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_total(plan_price, shipping_price=None) -> Decimal:
    """Valor cobrado: preco do plano + frete, arredondado no centavo (half-up).

    O servidor e a fonte da verdade; nenhum valor enviado pelo cliente entra aqui.
    """
    return to_money(_decimal(plan_price) + _decimal(shipping_price))


def order_total(subtotal, discount, shipping) -> Decimal:
    return to_money(_decimal(subtotal) - _decimal(discount) + _decimal(shipping))
