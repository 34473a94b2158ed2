from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Union

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
CARD_METHODS = {"credit_card", "debit_card"}
MAX_INSTALLMENTS = 12


class ValidationFailed(ValueError):
    """Corpo da requisicao fora do formato esperado. `details` lista os campos."""

    def __init__(self, message: str, details: list[dict[str, str]]) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class PaymentValidationFailed(ValidationFailed):
    pass


@dataclass(frozen=True)
class ShippingOption:
    id: str
    carrier: str
    service: str
    name: str
    price: Decimal
    delivery_days: int


@dataclass(frozen=True)
class PixPayment:
    method: str = "pix"


@dataclass(frozen=True)
class CardPayment:
    method: str
    token: str
    payment_method_id: str
    issuer_id: int | None
    installments: int
    payer_email: str
    identification_type: str | None = None
    identification_number: str | None = None

    @property
    def identification(self) -> dict[str, str] | None:
        if self.identification_type and self.identification_number:
            return {"type": self.identification_type, "number": self.identification_number}
        return None


PaymentData = Union[PixPayment, CardPayment]


@dataclass(frozen=True)
class CheckoutRequest:
    plan_slug: str
    address_id: str
    shipping_option: ShippingOption | None
    payment: PaymentData


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_shipping_option(raw: Any, details: list[dict[str, str]]) -> ShippingOption | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        details.append({"field": "shippingOption", "message": "Opção de frete inválida"})
        return None

    start = len(details)
    for key in ("id", "carrier", "service", "name"):
        if not _non_empty_str(raw.get(key)):
            details.append({"field": f"shippingOption.{key}", "message": "Campo obrigatório"})

    price = raw.get("price")
    if not _is_number(price) or price < 0:
        details.append({"field": "shippingOption.price", "message": "Preço do frete inválido"})

    delivery_days = raw.get("deliveryDays")
    if not _is_int(delivery_days) or delivery_days < 0:
        details.append({"field": "shippingOption.deliveryDays", "message": "Prazo de entrega inválido"})

    if len(details) > start:
        return None
    return ShippingOption(
        id=raw["id"].strip(),
        carrier=raw["carrier"].strip(),
        service=raw["service"].strip(),
        name=raw["name"].strip(),
        price=Decimal(str(price)),
        delivery_days=delivery_days,
    )


def parse_checkout_request(body: Any) -> tuple[str, str, ShippingOption | None]:
    """Valida planSlug, addressId e shippingOption (o paymentData e validado a parte)."""
    if not isinstance(body, dict):
        raise ValidationFailed("Dados inválidos", [{"field": "body", "message": "JSON deve ser um objeto"}])

    details: list[dict[str, str]] = []

    plan_slug = body.get("planSlug")
    if not _non_empty_str(plan_slug):
        details.append({"field": "planSlug", "message": "Plano é obrigatório"})

    address_id = body.get("addressId")
    try:
        uuid.UUID(str(address_id))
        if not isinstance(address_id, str):
            raise ValueError(address_id)
    except ValueError:
        details.append({"field": "addressId", "message": "Endereço inválido"})

    shipping_option = _parse_shipping_option(body.get("shippingOption"), details)

    if details:
        raise ValidationFailed("Dados inválidos", details)
    return plan_slug.strip(), address_id.strip().lower(), shipping_option


def parse_payment_data(raw: Any) -> PaymentData:
    """Valida o paymentData como uniao discriminada por `method`."""
    if not isinstance(raw, dict):
        raise PaymentValidationFailed(
            "Dados de pagamento inválidos",
            [{"field": "paymentData", "message": "Dados de pagamento são obrigatórios"}],
        )

    method = raw.get("method")
    if method == "pix":
        return PixPayment()
    if method not in CARD_METHODS:
        raise PaymentValidationFailed(
            "Método de pagamento inválido",
            [{"field": "paymentData.method", "message": "Use pix, credit_card ou debit_card"}],
        )

    details: list[dict[str, str]] = []

    # token vazio passa aqui; o checkout devolve MISSING_CARD_TOKEN
    token = raw.get("token", "")
    if token is None:
        token = ""
    if not isinstance(token, str):
        details.append({"field": "paymentData.token", "message": "Token inválido"})

    payment_method_id = raw.get("paymentMethodId")
    if not _non_empty_str(payment_method_id):
        details.append({"field": "paymentData.paymentMethodId", "message": "Bandeira é obrigatória"})

    issuer_id = raw.get("issuerId")
    if isinstance(issuer_id, str) and issuer_id.strip().isdigit():
        issuer_id = int(issuer_id.strip())
    if issuer_id is not None and not _is_int(issuer_id):
        details.append({"field": "paymentData.issuerId", "message": "Emissor inválido"})

    installments = raw.get("installments", 1)
    if not _is_int(installments) or not 1 <= installments <= MAX_INSTALLMENTS:
        details.append({"field": "paymentData.installments", "message": "Parcelas devem estar entre 1 e 12"})

    payer_email = raw.get("payerEmail")
    if not isinstance(payer_email, str) or not EMAIL_RE.match(payer_email.strip()):
        details.append({"field": "paymentData.payerEmail", "message": "Email inválido"})

    if details:
        raise PaymentValidationFailed("Dados do cartão inválidos", details)

    return CardPayment(
        method=method,
        token=token.strip(),
        payment_method_id=payment_method_id.strip(),
        issuer_id=issuer_id,
        installments=installments,
        payer_email=payer_email.strip().lower(),
        identification_type=_optional_str(raw.get("identificationType")),
        identification_number=_optional_str(raw.get("identificationNumber")),
    )


def parse_request(body: Any) -> CheckoutRequest:
    """Formato base primeiro (ValidationFailed), depois o pagamento (PaymentValidationFailed)."""
    plan_slug, address_id, shipping_option = parse_checkout_request(body)
    payment = parse_payment_data(body.get("paymentData"))
    return CheckoutRequest(
        plan_slug=plan_slug,
        address_id=address_id,
        shipping_option=shipping_option,
        payment=payment,
    )
