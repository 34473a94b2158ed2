from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

import requests
from flask import current_app

from services.date_utils import parse_gateway_datetime, to_gateway_datetime, utcnow

logger = logging.getLogger(__name__)

GENERIC_ERROR_CODE = "PAYMENT_PROCESSING_ERROR"
GENERIC_ERROR_MESSAGE = "Erro ao processar pagamento. Tente novamente."
TIMEOUT_MESSAGE = (
    "O Mercado Pago nao respondeu a tempo. Verifique seu extrato antes de tentar novamente."
)

# codigo do gateway (cause.code ou status_detail) -> (codigo interno, mensagem)
ERROR_TABLE: Dict[str, tuple[str, str]] = {
    "1": ("INVALID_PARAMETERS", "Erro nos parâmetros enviados."),
    "2006": ("INVALID_CARD_TOKEN", "Token do cartão não encontrado. Tente novamente."),
    "2062": ("INVALID_CARD_TOKEN", "Token de cartão inválido. Verifique os dados."),
    "3003": ("INVALID_CARD_TOKEN", "Token já utilizado. Insira os dados novamente."),
    "3034": ("CARD_DATA_INVALID", "Dados do cartão não conferem com a bandeira escolhida."),
    "2067": ("INVALID_IDENTIFICATION", "CPF/CNPJ inválido."),
    "4033": ("INVALID_INSTALLMENTS", "Parcelas inválidas."),
    "4050": ("INVALID_PAYER_EMAIL", "Email inválido."),
    "cc_rejected_bad_filled_card_number": ("CARD_NUMBER_INVALID", "Número do cartão incorreto."),
    "cc_rejected_bad_filled_date": ("CARD_EXPIRATION_INVALID", "Data de validade incorreta."),
    "cc_rejected_bad_filled_other": ("CARD_DATA_INVALID", "Dados do cartão incorretos."),
    "cc_rejected_bad_filled_security_code": ("SECURITY_CODE_INVALID", "CVV incorreto."),
    "cc_rejected_blacklist": ("CARD_NOT_ALLOWED", "Cartão não permitido."),
    "cc_rejected_call_for_authorize": ("CALL_FOR_AUTHORIZE", "Autorize o pagamento junto ao banco."),
    "cc_rejected_card_disabled": ("CARD_DISABLED", "Cartão desabilitado. Contate o banco."),
    "cc_rejected_card_error": ("CARD_ERROR", "Erro no cartão. Tente outro."),
    "cc_rejected_card_type_not_allowed": (
        "CARD_TYPE_NOT_ALLOWED",
        "Tipo de cartão não aceito para assinaturas.",
    ),
    "cc_rejected_duplicated_payment": ("DUPLICATED_PAYMENT", "Pagamento duplicado. Aguarde."),
    "cc_rejected_high_risk": ("HIGH_RISK", "Pagamento recusado por segurança."),
    "cc_rejected_insufficient_amount": ("INSUFFICIENT_FUNDS", "Saldo insuficiente."),
    "cc_rejected_invalid_installments": ("INVALID_INSTALLMENTS", "Parcelas não permitidas."),
    "cc_rejected_max_attempts": ("MAX_ATTEMPTS", "Limite de tentativas. Tente outro cartão."),
    "cc_rejected_other_reason": ("CARD_REJECTED", "Pagamento recusado pelo banco."),
}

# status do pagamento no gateway -> status interno
PAYMENT_STATUS_MAP = {
    "approved": "PAID",
    "pending": "PENDING",
    "authorized": "PENDING",
    "in_process": "PENDING",
    "in_mediation": "PENDING",
    "rejected": "FAILED",
    "cancelled": "CANCELED",
    "refunded": "REFUNDED",
    "charged_back": "REFUNDED",
}


class MercadoPagoError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        error_code: str = GENERIC_ERROR_CODE,
        provider_code: str | None = None,
        http_status: int | None = None,
        payload: Any = None,
        outcome_unknown: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.provider_code = provider_code
        self.http_status = http_status
        self.payload = payload
        # True quando nao sabemos se o gateway processou a requisicao (timeout etc.)
        self.outcome_unknown = outcome_unknown

    def as_payload(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "errorCode": self.error_code,
            "providerCode": self.provider_code,
            "httpStatus": self.http_status,
            "outcomeUnknown": self.outcome_unknown,
        }


@dataclass
class PixCharge:
    payment_id: str
    status: str
    status_detail: str | None
    qr_code: str
    qr_code_base64: str
    ticket_url: str
    expiration_date: datetime


@dataclass
class CardCharge:
    payment_id: str
    status: str
    status_detail: str | None
    card_last_four: str | None
    card_brand: str | None


@dataclass
class PaymentInfo:
    payment_id: str
    status: str
    status_detail: str | None
    external_reference: str | None
    transaction_amount: Decimal | None
    date_approved: datetime | None
    card_last_four: str | None
    card_brand: str | None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Preapproval:
    preapproval_id: str
    status: str
    next_payment_date: datetime | None
    external_reference: str | None = None


@dataclass
class AuthorizedPayment:
    authorized_payment_id: str
    preapproval_id: str | None
    status: str | None
    transaction_amount: Decimal | None
    payment_id: str | None
    payment_status: str | None


def _access_token() -> str:
    token = (current_app.config.get("MERCADOPAGO_ACCESS_TOKEN") or "").strip()
    if not token:
        raise MercadoPagoError("MERCADOPAGO_ACCESS_TOKEN não configurado.", error_code="GATEWAY_NOT_CONFIGURED")
    return token


def _api_base() -> str:
    base = (current_app.config.get("MERCADOPAGO_BASE_URL") or "").strip()
    if base:
        return base.rstrip("/")
    return "https://api.mercadopago.com"


def _timeout() -> float:
    return float(current_app.config.get("MERCADOPAGO_TIMEOUT") or 10)


def _app_url(path: str) -> str:
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/")
    return f"{base}{path}"


def _notification_url() -> str | None:
    # O gateway recusa notification_url que nao seja https publico
    url = _app_url("/api/webhooks/mercadopago")
    if not url.startswith("https://"):
        return None
    return url


def idempotency_key(prefix: str, reference: str, sep: str = "_") -> str:
    """Chave por tentativa: referencia interna + timestamp em ms."""
    return f"{prefix}{sep}{reference}{sep}{int(time.time() * 1000)}"


def map_error(code: Any) -> tuple[str, str]:
    """Traduz um codigo do gateway para (codigo interno, mensagem para o usuario)."""
    key = str(code).strip() if code is not None else ""
    if key in ERROR_TABLE:
        return ERROR_TABLE[key]
    if key.startswith("cc_rejected"):
        return ERROR_TABLE["cc_rejected_other_reason"]
    return GENERIC_ERROR_CODE, GENERIC_ERROR_MESSAGE


def map_payment_status(status: str | None) -> str:
    return PAYMENT_STATUS_MAP.get((status or "").strip().lower(), "PENDING")


def _error_from_response(status_code: int, body: Any) -> MercadoPagoError:
    body = body if isinstance(body, dict) else {}
    causes = body.get("cause") or []
    if isinstance(causes, dict):
        causes = [causes]

    provider_code = None
    for cause in causes:
        if isinstance(cause, dict) and cause.get("code") not in (None, ""):
            provider_code = str(cause.get("code"))
            break
    if provider_code is None:
        raw = body.get("code") or body.get("status_detail") or body.get("error")
        provider_code = str(raw) if raw else None

    message_raw = str(body.get("message") or "")
    if "card token service not found" in message_raw.lower() or "invalid_token" in message_raw.lower():
        error_code, message = "INVALID_CARD_TOKEN", "Token de cartão inválido ou expirado. Insira os dados novamente."
    else:
        error_code, message = map_error(provider_code)

    if status_code == 401 and not (provider_code or "").startswith("cc_"):
        logger.error("MercadoPago: access token recusado (HTTP 401)")
        error_code = "GATEWAY_AUTH_ERROR"

    return MercadoPagoError(
        message,
        error_code=error_code,
        provider_code=provider_code,
        http_status=status_code,
        payload=body,
    )


def _request(
    method: str,
    path: str,
    *,
    payload: Dict[str, Any] | None = None,
    idempotency: str | None = None,
    extra_headers: Dict[str, str] | None = None,
) -> Dict[str, Any]:
    url = f"{_api_base()}{path}"
    headers = {
        "Authorization": f"Bearer {_access_token()}",
        "Content-Type": "application/json",
    }
    if idempotency:
        headers["X-Idempotency-Key"] = idempotency
    if extra_headers:
        headers.update(extra_headers)

    is_write = method.upper() != "GET"
    try:
        resp = requests.request(method, url, json=payload, headers=headers, timeout=_timeout())
    except requests.Timeout as exc:
        logger.warning("MercadoPago: timeout em %s %s", method, path, exc_info=True)
        raise MercadoPagoError(
            TIMEOUT_MESSAGE,
            error_code="GATEWAY_TIMEOUT",
            outcome_unknown=is_write,
        ) from exc
    except requests.RequestException as exc:
        logger.warning("MercadoPago: falha na requisicao %s %s", method, path, exc_info=True)
        raise MercadoPagoError(
            GENERIC_ERROR_MESSAGE,
            error_code="GATEWAY_UNAVAILABLE",
            outcome_unknown=is_write,
        ) from exc

    try:
        body = resp.json()
    except ValueError as exc:
        snippet = (resp.text or "").strip()
        logger.warning(
            "MercadoPago: JSON invalido em %s %s (HTTP %s). Trecho: %s",
            method,
            path,
            resp.status_code,
            snippet[:300],
            exc_info=True,
        )
        raise MercadoPagoError(
            GENERIC_ERROR_MESSAGE,
            error_code="INVALID_GATEWAY_RESPONSE",
            http_status=resp.status_code,
            outcome_unknown=is_write and resp.ok,
        ) from exc

    if not resp.ok:
        err = _error_from_response(resp.status_code, body)
        logger.warning(
            "MercadoPago: erro em %s %s (HTTP %s, codigo %s)",
            method,
            path,
            resp.status_code,
            err.provider_code,
        )
        raise err

    if not isinstance(body, dict):
        raise MercadoPagoError(
            GENERIC_ERROR_MESSAGE,
            error_code="INVALID_GATEWAY_RESPONSE",
            http_status=resp.status_code,
            outcome_unknown=is_write,
        )
    return body


def _payer(payer: Dict[str, Any]) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "email": (payer.get("email") or "").strip(),
        "first_name": (payer.get("first_name") or "").strip(),
        "last_name": (payer.get("last_name") or "").strip(),
    }
    identification = payer.get("identification")
    if identification and identification.get("type") and identification.get("number"):
        data["identification"] = {
            "type": str(identification["type"]),
            "number": str(identification["number"]),
        }
    return data


def _decimal_or_none(value) -> Decimal | None:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def create_pix_payment(
    amount: Decimal,
    description: str,
    external_reference: str,
    payer: Dict[str, Any],
    metadata: Dict[str, Any] | None = None,
) -> PixCharge:
    """Cria uma cobranca PIX avulsa. Docs: POST /v1/payments (payment_method_id=pix)."""
    minutes = int(current_app.config.get("PIX_EXPIRATION_MINUTES") or 30)
    expires_at = utcnow() + timedelta(minutes=minutes)

    payload: Dict[str, Any] = {
        "transaction_amount": float(amount),
        "description": description,
        "payment_method_id": "pix",
        "payer": _payer(payer),
        "external_reference": external_reference,
        "date_of_expiration": to_gateway_datetime(expires_at),
        "metadata": metadata or {},
    }
    notification_url = _notification_url()
    if notification_url:
        payload["notification_url"] = notification_url

    body = _request(
        "POST",
        "/v1/payments",
        payload=payload,
        idempotency=idempotency_key("pix", external_reference),
    )
    if not body.get("id"):
        raise MercadoPagoError("Mercado Pago não retornou o id do pagamento PIX.", error_code="PIX_ERROR")

    tx = (body.get("point_of_interaction") or {}).get("transaction_data") or {}
    return PixCharge(
        payment_id=str(body["id"]),
        status=str(body.get("status") or "pending"),
        status_detail=body.get("status_detail"),
        qr_code=tx.get("qr_code") or "",
        qr_code_base64=tx.get("qr_code_base64") or "",
        ticket_url=tx.get("ticket_url") or "",
        expiration_date=parse_gateway_datetime(body.get("date_of_expiration")) or expires_at,
    )


def create_card_payment(
    amount: Decimal,
    token: str,
    payment_method_id: str,
    issuer_id: int | None,
    description: str,
    external_reference: str,
    payer: Dict[str, Any],
    installments: int = 1,
    metadata: Dict[str, Any] | None = None,
) -> CardCharge:
    """Cobra o cartao tokenizado uma unica vez (POST /v1/payments)."""
    payload: Dict[str, Any] = {
        "transaction_amount": float(amount),
        "token": token,
        "description": description,
        "installments": int(installments),
        "payment_method_id": payment_method_id,
        "payer": _payer(payer),
        "external_reference": external_reference,
        "statement_descriptor": current_app.config.get("MERCADOPAGO_STATEMENT_NAME") or "",
        "metadata": metadata or {},
    }
    if issuer_id:
        payload["issuer_id"] = issuer_id
    notification_url = _notification_url()
    if notification_url:
        payload["notification_url"] = notification_url

    body = _request(
        "POST",
        "/v1/payments",
        payload=payload,
        idempotency=idempotency_key("card", external_reference),
    )
    if not body.get("id"):
        raise MercadoPagoError(GENERIC_ERROR_MESSAGE, error_code="INVALID_GATEWAY_RESPONSE")

    card = body.get("card") or {}
    return CardCharge(
        payment_id=str(body["id"]),
        status=str(body.get("status") or "pending"),
        status_detail=body.get("status_detail"),
        card_last_four=card.get("last_four_digits"),
        card_brand=body.get("payment_method_id"),
    )


def get_payment(payment_id: str) -> PaymentInfo:
    body = _request("GET", f"/v1/payments/{payment_id}")
    card = body.get("card") or {}
    return PaymentInfo(
        payment_id=str(body.get("id") or payment_id),
        status=str(body.get("status") or "pending"),
        status_detail=body.get("status_detail"),
        external_reference=body.get("external_reference"),
        transaction_amount=_decimal_or_none(body.get("transaction_amount")),
        date_approved=parse_gateway_datetime(body.get("date_approved")),
        card_last_four=card.get("last_four_digits"),
        card_brand=body.get("payment_method_id"),
        metadata=body.get("metadata") or {},
    )


def _preapproval_headers() -> Dict[str, str] | None:
    # Credenciais de teste exigem o escopo "stage" nos endpoints de assinatura
    if current_app.config.get("MERCADOPAGO_PRODUCTION"):
        return None
    return {"X-scope": "stage"}


def _to_preapproval(body: Dict[str, Any]) -> Preapproval:
    return Preapproval(
        preapproval_id=str(body.get("id")),
        status=str(body.get("status") or ""),
        next_payment_date=parse_gateway_datetime(body.get("next_payment_date")),
        external_reference=body.get("external_reference"),
    )


def create_preapproval(
    reason: str,
    payer_email: str,
    card_token: str,
    amount: Decimal,
    start_date: datetime,
    external_reference: str,
) -> Preapproval:
    """Cria a cobranca recorrente mensal (POST /preapproval) ja autorizada.

    start_date fica no futuro: a primeira mensalidade e cobrada a parte.
    """
    payload: Dict[str, Any] = {
        "reason": reason,
        "external_reference": external_reference,
        "payer_email": payer_email,
        "card_token_id": card_token,
        "auto_recurring": {
            "frequency": 1,
            "frequency_type": "months",
            "start_date": to_gateway_datetime(start_date),
            "transaction_amount": float(amount),
            "currency_id": "BRL",
        },
        "back_url": _app_url("/assinatura/sucesso"),
        "status": "authorized",
    }
    notification_url = _notification_url()
    if notification_url:
        payload["notification_url"] = notification_url

    body = _request(
        "POST",
        "/preapproval",
        payload=payload,
        idempotency=idempotency_key("preapproval", external_reference, sep="-"),
        extra_headers=_preapproval_headers(),
    )
    if not body.get("id"):
        raise MercadoPagoError(
            "Resposta inválida do Mercado Pago: ID da assinatura não retornado.",
            error_code="SUBSCRIPTION_ERROR",
        )
    return _to_preapproval(body)


def get_preapproval(preapproval_id: str) -> Preapproval:
    body = _request("GET", f"/preapproval/{preapproval_id}", extra_headers=_preapproval_headers())
    return _to_preapproval(body)


def _update_preapproval_status(preapproval_id: str, status: str) -> Preapproval:
    body = _request(
        "PUT",
        f"/preapproval/{preapproval_id}",
        payload={"status": status},
        idempotency=idempotency_key(f"preapproval-{status}", preapproval_id, sep="-"),
        extra_headers=_preapproval_headers(),
    )
    return _to_preapproval(body)


def pause_preapproval(preapproval_id: str) -> Preapproval:
    return _update_preapproval_status(preapproval_id, "paused")


def resume_preapproval(preapproval_id: str) -> Preapproval:
    return _update_preapproval_status(preapproval_id, "authorized")


def cancel_preapproval(preapproval_id: str) -> Preapproval:
    return _update_preapproval_status(preapproval_id, "cancelled")


def get_authorized_payment(authorized_payment_id: str) -> AuthorizedPayment:
    """Parcela de uma assinatura (GET /authorized_payments/{id})."""
    body = _request(
        "GET",
        f"/authorized_payments/{authorized_payment_id}",
        extra_headers=_preapproval_headers(),
    )
    payment = body.get("payment") or {}
    return AuthorizedPayment(
        authorized_payment_id=str(body.get("id") or authorized_payment_id),
        preapproval_id=body.get("preapproval_id"),
        status=body.get("status"),
        transaction_amount=_decimal_or_none(body.get("transaction_amount")),
        payment_id=str(payment["id"]) if payment.get("id") else None,
        payment_status=payment.get("status"),
    )


def validate_webhook_signature(
    signature: Optional[str],
    request_id: Optional[str],
    data_id: str,
) -> bool:
    """Valida o header x-signature ("ts=...,v1=...") com HMAC-SHA256.

    Manifesto: id:{data.id};request-id:{x-request-id};ts:{ts};
    Sem secret configurado (dev) a validacao e ignorada.
    """
    secret = (current_app.config.get("MERCADOPAGO_WEBHOOK_SECRET") or "").strip()
    if not secret:
        return True
    if not signature or not request_id:
        return False

    parts: Dict[str, str] = {}
    for item in signature.split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip() and value.strip():
            parts[key.strip()] = value.strip()

    ts = parts.get("ts")
    v1 = parts.get("v1")
    if not ts or not v1:
        return False

    manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
    expected = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, v1)
