"""Checkout de assinatura (PIX ou cartao).

Ordem dos efeitos: Order -> Payment -> cobranca no gateway -> Subscription.
Nada e desfeito depois que Order/Payment existem: toda tentativa deixa rastro
auditavel, e o Payment sai de PENDING no maximo uma vez.

Cartao segue "cobra agora, agenda depois": a primeira mensalidade e cobrada
na hora (Payment API) e so entao o preapproval e criado com inicio em +30 dias.
Se o preapproval falhar, a assinatura local e ativada mesmo assim e a resposta
leva um aviso.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict

from flask import current_app

from models.extensions import db
from models.user_model import User
from services import mercadopago, order_store, payment_store, subscription_store, webhook_service
from services.checkout_validation import (
    CardPayment,
    CheckoutRequest,
    PaymentValidationFailed,
    PixPayment,
    ShippingOption,
    ValidationFailed,
    parse_request,
)
from services.date_utils import next_billing_date, utcnow
from services.mercadopago import GENERIC_ERROR_CODE, MercadoPagoError, map_error, map_payment_status
from services.pricing import compute_total
from services.subscription_store import DuplicateSubscriptionError

logger = logging.getLogger(__name__)

MSG_UNAUTHORIZED = "Não autorizado. Faça login para continuar."
MSG_BLOCKED = "Conta bloqueada. Entre em contato com o suporte."
MSG_INVALID_JSON = "JSON inválido"
MSG_USER_NOT_FOUND = "Usuário não encontrado"
MSG_PLAN_NOT_FOUND = "Plano não encontrado ou inativo"
MSG_ALREADY_SUBSCRIBED = (
    "Você já possui uma assinatura ativa. Cancele a atual antes de assinar outro plano."
)
MSG_ADDRESS_NOT_FOUND = "Endereço não encontrado"
MSG_MISSING_CARD_TOKEN = "Token do cartão é obrigatório"
MSG_PIX_ERROR = "Erro ao gerar PIX"
MSG_REJECTED = "Pagamento recusado. Verifique os dados do cartão."
MSG_PENDING = "Pagamento sendo processado. Você receberá confirmação em breve."
MSG_ACTIVATED = "Assinatura ativada com sucesso! Primeira mensalidade paga."
MSG_FIRST_PAID = "Primeira mensalidade paga com sucesso!"
MSG_RECURRENCE_WARNING = (
    "Pagamento aprovado, mas houve problema ao configurar recorrência. Entre em contato conosco."
)
MSG_DUPLICATE_WARNING = (
    "Pagamento aprovado, mas você já possui uma assinatura ativa. "
    "Entre em contato conosco para o estorno."
)
MSG_INTERNAL = "Erro interno ao processar assinatura. Tente novamente."


@dataclass(frozen=True)
class CheckoutContext:
    """Contexto da requisicao (usuario da sessao) passado explicitamente."""

    user_id: int | None
    is_blocked: bool = False

    @classmethod
    def from_user(cls, user) -> "CheckoutContext":
        if not user or not getattr(user, "is_authenticated", False):
            return cls(user_id=None)
        return cls(user_id=user.id, is_blocked=bool(getattr(user, "is_blocked", False)))


@dataclass
class CheckoutResult:
    kind: str  # success | pending | failure
    status_code: int = 200
    data: Dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_code: str | None = None
    details: list[dict[str, str]] | None = None

    def to_dict(self) -> Dict[str, Any]:
        if self.kind == "failure":
            body: Dict[str, Any] = {
                "success": False,
                "error": self.error,
                "errorCode": self.error_code,
            }
            if self.details:
                body["details"] = self.details
            return body
        return {"success": True, "data": self.data}


class CheckoutError(Exception):
    def __init__(
        self,
        error_code: str,
        message: str,
        status: int = 400,
        details: list[dict[str, str]] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.status = status
        self.details = details

    def to_result(self) -> CheckoutResult:
        return CheckoutResult(
            kind="failure",
            status_code=self.status,
            error=self.message,
            error_code=self.error_code,
            details=self.details,
        )


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _shipping_data(option: ShippingOption | None, zip_code: str) -> Dict[str, Any] | None:
    if option is None:
        return None
    now = utcnow()
    return {
        "optionId": option.id,
        "carrier": option.carrier,
        "service": option.service,
        "name": option.name,
        "price": float(option.price),
        "deliveryDays": option.delivery_days,
        "destinationZipCode": zip_code,
        "quotedAt": now.isoformat(),
        "estimatedDeliveryDate": (now + timedelta(days=option.delivery_days)).isoformat(),
    }


def _validate(ctx: CheckoutContext, body: Any) -> CheckoutRequest:
    if not ctx.user_id:
        raise CheckoutError("UNAUTHORIZED", MSG_UNAUTHORIZED, 401)
    if ctx.is_blocked:
        raise CheckoutError("USER_BLOCKED", MSG_BLOCKED, 403)
    if body is None:
        raise CheckoutError("INVALID_JSON", MSG_INVALID_JSON, 400)
    try:
        return parse_request(body)
    except PaymentValidationFailed as exc:
        raise CheckoutError("PAYMENT_VALIDATION_ERROR", exc.message, 400, exc.details) from exc
    except ValidationFailed as exc:
        raise CheckoutError("VALIDATION_ERROR", exc.message, 400, exc.details) from exc


def process_subscription_checkout(ctx: CheckoutContext, body: Any) -> CheckoutResult:
    """Executa o checkout e devolve sempre um CheckoutResult (nunca levanta)."""
    try:
        return _process(ctx, body)
    except CheckoutError as exc:
        return exc.to_result()
    except Exception:
        logger.exception("Checkout de assinatura: erro inesperado (user_id=%s)", ctx.user_id)
        db.session.rollback()
        return CheckoutError("INTERNAL_ERROR", MSG_INTERNAL, 500).to_result()


def _process(ctx: CheckoutContext, body: Any) -> CheckoutResult:
    req = _validate(ctx, body)

    user = db.session.get(User, ctx.user_id)
    if not user:
        raise CheckoutError("USER_NOT_FOUND", MSG_USER_NOT_FOUND, 404)

    plan = subscription_store.find_plan_by_slug(req.plan_slug)
    if not plan:
        raise CheckoutError("PLAN_NOT_FOUND", MSG_PLAN_NOT_FOUND, 404)

    if subscription_store.user_has_any_active_subscription(user.id):
        raise CheckoutError("ALREADY_SUBSCRIBED", MSG_ALREADY_SUBSCRIBED, 400)

    address = subscription_store.find_address_by_id(req.address_id, user.id)
    if not address:
        raise CheckoutError("ADDRESS_NOT_FOUND", MSG_ADDRESS_NOT_FOUND, 404)

    # Antes de qualquer escrita: sem token nao ha tentativa de cobranca
    if isinstance(req.payment, CardPayment) and not req.payment.token:
        raise CheckoutError("MISSING_CARD_TOKEN", MSG_MISSING_CARD_TOKEN, 400)

    shipping_price = req.shipping_option.price if req.shipping_option else None
    total = compute_total(plan.price, shipping_price)

    order = order_store.create_subscription_order(
        user,
        plan,
        address,
        shipping_amount=shipping_price,
        shipping_data=_shipping_data(req.shipping_option, address.zip_code),
    )
    payment = payment_store.create_payment(order.id, total)
    logger.info(
        "Checkout: pedido %s criado (plano=%s, total=%s, metodo=%s)",
        order.id,
        plan.slug,
        total,
        req.payment.method,
    )

    first_name, last_name = user.name_parts()
    payer: Dict[str, Any] = {"email": user.email, "first_name": first_name, "last_name": last_name}
    metadata = {
        "type": "subscription",
        "plan_id": plan.id,
        "plan_slug": plan.slug,
        "user_id": user.id,
        "order_id": order.id,
        "payment_id": payment.id,
    }
    description = f"Assinatura {plan.name}"

    if isinstance(req.payment, PixPayment):
        return _checkout_pix(order.id, payment.id, total, description, payer, metadata)
    return _checkout_card(req.payment, user, plan, order.id, payment.id, total, description, payer, metadata)


def _keep_pending(payment_id: str, exc: MercadoPagoError) -> CheckoutError:
    """Resultado desconhecido (timeout): Payment continua PENDING ate webhook/consulta."""
    payment_store.set_transaction(payment_id, "", {**exc.as_payload(), "outcomeUnknown": True})
    logger.warning("Checkout: resultado desconhecido no gateway (payment=%s)", payment_id)
    return CheckoutError(exc.error_code, exc.message, 502)


def _checkout_pix(
    order_id: str,
    payment_id: str,
    total: Decimal,
    description: str,
    payer: Dict[str, Any],
    metadata: Dict[str, Any],
) -> CheckoutResult:
    try:
        charge = mercadopago.create_pix_payment(
            amount=total,
            description=description,
            external_reference=order_id,
            payer=payer,
            metadata=metadata,
        )
    except MercadoPagoError as exc:
        if exc.outcome_unknown:
            raise _keep_pending(payment_id, exc) from exc
        payment_store.mark_payment_failed(payment_id, exc.as_payload())
        code = exc.error_code if exc.error_code != GENERIC_ERROR_CODE else "PIX_ERROR"
        # Order continua PENDING para conciliacao manual
        raise CheckoutError(code, exc.message or MSG_PIX_ERROR, 400) from exc

    if map_payment_status(charge.status) in {"FAILED", "CANCELED"}:
        payment_store.mark_payment_failed(
            payment_id,
            {"status": charge.status, "statusDetail": charge.status_detail, "mpPaymentId": charge.payment_id},
        )
        raise CheckoutError("PIX_ERROR", MSG_PIX_ERROR, 400)

    payment_store.attach_pix_data(
        payment_id,
        charge.payment_id,
        qr_code=charge.qr_code,
        qr_code_base64=charge.qr_code_base64,
        ticket_url=charge.ticket_url,
        expires_at=charge.expiration_date,
        plan={"planId": metadata.get("plan_id"), "planSlug": metadata.get("plan_slug")},
    )
    logger.info("Checkout PIX: pagamento %s aguardando (pedido %s)", charge.payment_id, order_id)

    return CheckoutResult(
        kind="success",
        data={
            "orderId": order_id,
            "paymentId": payment_id,
            "status": "pending",
            "paymentPreference": {
                "id": charge.payment_id,
                "qrCode": charge.qr_code,
                "qrCodeBase64": charge.qr_code_base64,
                "pixCopyPaste": charge.qr_code,
                "initPoint": charge.ticket_url,
                "expirationDate": _iso(charge.expiration_date),
            },
        },
    )


def _checkout_card(
    card: CardPayment,
    user: User,
    plan,
    order_id: str,
    payment_id: str,
    total: Decimal,
    description: str,
    payer: Dict[str, Any],
    metadata: Dict[str, Any],
) -> CheckoutResult:
    if card.identification:
        payer = {**payer, "identification": card.identification}

    # Passo 1: primeira mensalidade cobrada agora, sempre em 1x
    try:
        charge = mercadopago.create_card_payment(
            amount=total,
            token=card.token,
            payment_method_id=card.payment_method_id,
            issuer_id=card.issuer_id,
            description=description,
            external_reference=order_id,
            payer=payer,
            installments=1,
            metadata={**metadata, "type": "subscription_initial"},
        )
    except MercadoPagoError as exc:
        if exc.outcome_unknown:
            raise _keep_pending(payment_id, exc) from exc
        payment_store.mark_payment_failed(payment_id, exc.as_payload())
        code = exc.error_code if exc.error_code != GENERIC_ERROR_CODE else "INITIAL_PAYMENT_ERROR"
        raise CheckoutError(code, exc.message, 400) from exc

    internal_status = map_payment_status(charge.status)

    if internal_status in {"FAILED", "CANCELED"}:
        payment_store.mark_payment_failed(
            payment_id,
            {
                "status": charge.status,
                "statusDetail": charge.status_detail,
                "mpPaymentId": charge.payment_id,
            },
        )
        _, message = map_error(charge.status_detail)
        if message == mercadopago.GENERIC_ERROR_MESSAGE:
            message = MSG_REJECTED
        logger.info("Checkout cartao: pagamento %s recusado (%s)", charge.payment_id, charge.status_detail)
        raise CheckoutError("PAYMENT_REJECTED", message, 400)

    if internal_status != "PAID":
        payment_store.set_transaction(
            payment_id,
            charge.payment_id,
            {
                "type": "subscription_initial",
                "status": charge.status,
                "statusDetail": charge.status_detail,
            },
        )
        return CheckoutResult(
            kind="pending",
            data={
                "orderId": order_id,
                "paymentId": payment_id,
                "mpPaymentId": charge.payment_id,
                "status": "pending",
                "message": MSG_PENDING,
            },
        )

    payment_store.mark_payment_paid(
        payment_id,
        charge.payment_id,
        {
            "type": "subscription_initial",
            "cardLastFour": charge.card_last_four,
            "cardBrand": charge.card_brand,
            "installmentsRequested": card.installments,
            "payerEmail": card.payer_email,
        },
    )
    order_store.mark_order_paid(order_id)

    # Passo 2: recorrencia com inicio em +30 dias, reaproveitando o token
    cycle_days = int(current_app.config.get("SUBSCRIPTION_CYCLE_DAYS") or 30)
    next_billing = next_billing_date(cycle_days)
    store_name = current_app.config.get("STORE_NAME") or "Doende Verde"
    preapproval = None
    try:
        preapproval = mercadopago.create_preapproval(
            reason=f"Assinatura {plan.name} - {store_name}",
            payer_email=user.email,
            card_token=card.token,
            amount=total,
            start_date=next_billing,
            external_reference=order_id,
        )
    except MercadoPagoError as exc:
        logger.warning(
            "Checkout cartao: pagamento %s aprovado mas preapproval falhou (%s)",
            charge.payment_id,
            exc.error_code,
            exc_info=True,
        )

    next_payment_date = (preapproval.next_payment_date if preapproval else None) or next_billing

    try:
        subscription = subscription_store.create_subscription(
            user_id=user.id,
            plan_id=plan.id,
            provider_sub_id=preapproval.preapproval_id if preapproval else None,
            next_billing_at=next_payment_date,
        )
    except DuplicateSubscriptionError:
        return _duplicate_after_payment(user.id, order_id, payment_id, charge, preapproval)

    subscription_store.create_first_cycle(
        subscription.id,
        total,
        payment_id=payment_id,
        cycle_end=preapproval.next_payment_date if preapproval else None,
    )

    data: Dict[str, Any] = {
        "subscriptionId": subscription.id,
        "mpPaymentId": charge.payment_id,
        "orderId": order_id,
        "paymentId": payment_id,
        "status": "approved",
        "nextPaymentDate": _iso(next_payment_date),
        "cardLastFour": charge.card_last_four,
        "cardBrand": charge.card_brand,
    }
    if preapproval:
        data["mpSubscriptionId"] = preapproval.preapproval_id
        data["message"] = MSG_ACTIVATED
        logger.info("Checkout cartao: assinatura %s ativa (preapproval %s)", subscription.id, preapproval.preapproval_id)
    else:
        data["warning"] = MSG_RECURRENCE_WARNING
        data["message"] = MSG_FIRST_PAID
        logger.warning("Checkout cartao: assinatura %s ativa SEM recorrencia", subscription.id)
    return CheckoutResult(kind="success", data=data)


def _duplicate_after_payment(user_id, order_id, payment_id, charge, preapproval) -> CheckoutResult:
    """Outra requisicao ativou uma assinatura entre a checagem e a criacao.

    O pagamento ja foi capturado: mantemos Order/Payment pagos e avisamos.
    """
    logger.error(
        "Checkout cartao: pagamento %s capturado mas usuario %s ja tem assinatura vigente; estorno manual",
        charge.payment_id,
        user_id,
    )
    if preapproval:
        try:
            mercadopago.cancel_preapproval(preapproval.preapproval_id)
        except MercadoPagoError:
            logger.warning(
                "Checkout cartao: falha ao cancelar preapproval duplicado %s",
                preapproval.preapproval_id,
                exc_info=True,
            )
    existing = subscription_store.get_live_subscription(user_id)
    return CheckoutResult(
        kind="success",
        data={
            "subscriptionId": existing.id if existing else None,
            "mpPaymentId": charge.payment_id,
            "orderId": order_id,
            "paymentId": payment_id,
            "status": "approved",
            "warning": MSG_DUPLICATE_WARNING,
            "message": MSG_FIRST_PAID,
        },
    )


def get_payment_status(ctx: CheckoutContext, payment_id: str) -> Dict[str, Any]:
    """Status de um pagamento do usuario (polling do PIX).

    Aceita o id interno ou o id do gateway. Se ainda estiver PENDING, consulta o
    gateway e aplica a mudanca pelo mesmo caminho do webhook.
    """
    if not ctx.user_id:
        raise CheckoutError("UNAUTHORIZED", MSG_UNAUTHORIZED, 401)

    payment = payment_store.get_payment(payment_id) or payment_store.find_by_transaction_id(payment_id)
    if not payment or payment.order.user_id != ctx.user_id:
        raise CheckoutError("PAYMENT_NOT_FOUND", "Pagamento não encontrado", 404)

    status_detail = (payment.payload or {}).get("statusDetail")
    if payment.status == "PENDING" and payment.transaction_id:
        try:
            webhook_service.process_payment_notification(payment.transaction_id)
        except MercadoPagoError:
            logger.warning("Status do pagamento %s: gateway indisponivel", payment.id, exc_info=True)
        db.session.refresh(payment)
        status_detail = (payment.payload or {}).get("statusDetail") or status_detail

    return {
        "paymentId": payment.id,
        "orderId": payment.order_id,
        "mpPaymentId": payment.transaction_id,
        "status": payment.status,
        "statusDetail": status_detail,
    }


def get_pending_pix(ctx: CheckoutContext) -> Dict[str, Any] | None:
    """PIX ainda pagavel do usuario, para reexibir o QR depois de fechar a pagina."""
    if not ctx.user_id:
        raise CheckoutError("UNAUTHORIZED", MSG_UNAUTHORIZED, 401)

    now = utcnow()
    payment = payment_store.find_pending_pix(ctx.user_id, now)
    if not payment:
        return None

    remaining = int((payment.pix_expires_at - now).total_seconds())
    if remaining <= 0:
        return None

    payload = payment.payload or {}
    plan_info = None
    if payload.get("planId"):
        plan_info = {"planId": payload.get("planId"), "planSlug": payload.get("planSlug")}

    return {
        "paymentId": payment.transaction_id or payment.id,
        "orderId": payment.order_id,
        "amount": float(payment.amount),
        "qrCode": payment.pix_qr_code,
        "qrCodeBase64": payment.pix_qr_code_base64,
        "ticketUrl": payment.pix_ticket_url,
        "expiresAt": _iso(payment.pix_expires_at),
        "remainingSeconds": remaining,
        "planInfo": plan_info,
    }
