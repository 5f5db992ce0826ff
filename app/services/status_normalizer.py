"""
Приведение статусов шлюзов к единой шкале success / failed / pending.

Таблицы ниже - контракт с UI. Любой статус вне таблиц считается pending
(с флагом ambiguous и предупреждением в логе): заказ нельзя пометить
оплаченным или окончательно неуспешным по неясному сигналу.
"""
import logging
from typing import Any

from app.models.payment import (
    NormalizedPaymentStatus,
    PaymentState,
    ProviderName,
    VerificationResult,
)

logger = logging.getLogger(__name__)

MSG_COMPLETED = "Payment completed successfully"
MSG_AUTHORIZED = "Payment authorized successfully"
MSG_PROCESSING = "Payment is being processed"
MSG_PENDING = "Payment status is pending"
MSG_EXPIRED = "Payment session expired. Please try again."
MSG_FAILED = "Payment failed. Please try again."

MYFATOORAH_ERROR_MESSAGES = {
    "MF001": "3DS authentication failed. Please try again or use a different card.",
    "MF002": "Transaction declined by your bank. Please check your card details or try a different card.",
    "MF003": "Transaction blocked. Please try a different payment method.",
    "MF004": "Insufficient funds. Please use a different card.",
    "MF005": "Session timeout. Please try again.",
    "MF006": "Transaction canceled.",
    "MF007": "Card expired. Please use a valid card.",
    "MF008": "Card issuer not responding. Please try again later.",
    "MF009": "Transaction denied by risk assessment.",
    "MF010": "Wrong security code. Please check your CVV.",
    "MF020": MSG_FAILED,
}

# Succss - написание из старого API MyFatoorah
MYFATOORAH_SUCCESS = {"SUCCESS", "SUCCSS"}
MYFATOORAH_FAILED = {"FAILED", "CANCELED", "CANCELLED"}
MYFATOORAH_IN_PROGRESS = {"INPROGRESS", "AUTHORIZE"}
MYFATOORAH_OPEN_INVOICE = {"PENDING", "UNPAID"}

TABBY_STATUSES = {
    "AUTHORIZED": ("success", MSG_AUTHORIZED),
    "CLOSED": ("success", MSG_COMPLETED),
    "REJECTED": ("failed", "Payment was rejected. Please try a different payment method."),
    "EXPIRED": ("failed", MSG_EXPIRED),
    "CREATED": ("pending", MSG_PROCESSING),
}

TAMARA_STATUSES = {
    "approved": ("success", MSG_AUTHORIZED),
    "authorised": ("success", MSG_AUTHORIZED),
    "captured": ("success", MSG_COMPLETED),
    "fully_captured": ("success", MSG_COMPLETED),
    "partially_captured": ("success", "Payment partially captured"),
    "refunded": ("success", "Payment has been refunded"),
    "partially_refunded": ("success", "Payment has been partially refunded"),
    "declined": ("failed", "Payment was declined. Please try a different payment method."),
    "canceled": ("failed", "Payment was canceled."),
    "expired": ("failed", MSG_EXPIRED),
    "new": ("pending", MSG_PROCESSING),
}

STATES = {
    "success": PaymentState.SUCCESS,
    "failed": PaymentState.FAILED,
    "pending": PaymentState.PENDING,
}


def myfatoorah_error_message(error_code: str | None, provider_message: str | None = None) -> str:
    """Сообщение для покупателя по коду ошибки MyFatoorah."""
    if error_code and error_code.upper() in MYFATOORAH_ERROR_MESSAGES:
        return MYFATOORAH_ERROR_MESSAGES[error_code.upper()]
    return provider_message or MSG_FAILED


def _ambiguous(provider: ProviderName, raw_status: str | None, **extra) -> NormalizedPaymentStatus:
    logger.warning(f"⚠️ Unknown {provider.value} payment status {raw_status!r}, treating as pending")
    return NormalizedPaymentStatus(status="pending", message=MSG_PENDING, ambiguous=True, **extra)


def _normalize_myfatoorah(
    transaction_status: str | None,
    error_code: str | None,
    invoice_status: str | None,
    provider_message: str | None,
    transaction_id: str | None,
) -> NormalizedPaymentStatus:
    tx_status = (transaction_status or "").strip().upper()
    inv_status = (invoice_status or "").strip().upper()

    if tx_status in MYFATOORAH_SUCCESS:
        if inv_status == "PAID":
            return NormalizedPaymentStatus(
                status="success",
                message=MSG_COMPLETED,
                provider_transaction_id=transaction_id,
            )
        # Транзакция прошла, но счет еще не закрыт
        return NormalizedPaymentStatus(
            status="pending",
            message=MSG_PROCESSING,
            provider_transaction_id=transaction_id,
        )

    if tx_status in MYFATOORAH_FAILED:
        return NormalizedPaymentStatus(
            status="failed",
            message=myfatoorah_error_message(error_code, provider_message),
            provider_error_code=error_code or None,
            provider_transaction_id=transaction_id,
        )

    if tx_status in MYFATOORAH_IN_PROGRESS:
        return NormalizedPaymentStatus(
            status="pending",
            message=MSG_PROCESSING,
            provider_transaction_id=transaction_id,
        )

    if not tx_status and inv_status in MYFATOORAH_OPEN_INVOICE:
        return NormalizedPaymentStatus(status="pending", message=MSG_PROCESSING)

    return _ambiguous(
        ProviderName.MYFATOORAH,
        transaction_status or invoice_status,
        provider_transaction_id=transaction_id,
    )


def _normalize_table(
    provider: ProviderName,
    table: dict[str, tuple[str, str]],
    raw_status: str | None,
    transaction_id: str | None,
) -> NormalizedPaymentStatus:
    key = (raw_status or "").strip()
    key = key.upper() if provider == ProviderName.TABBY else key.lower()
    if key in table:
        status, message = table[key]
        return NormalizedPaymentStatus(
            status=status,
            message=message,
            provider_error_code=key if status == "failed" else None,
            provider_transaction_id=transaction_id,
        )
    return _ambiguous(provider, raw_status, provider_transaction_id=transaction_id)


def normalize(
    provider: ProviderName | str,
    raw_status: str | None,
    raw_error_code: str | None = None,
    invoice_status: str | None = None,
    provider_message: str | None = None,
    transaction_id: str | None = None,
) -> NormalizedPaymentStatus:
    """
    Привести статус шлюза к единой шкале.

    Args:
        provider: Шлюз
        raw_status: Статус шлюза (для MyFatoorah - статус транзакции)
        raw_error_code: Код ошибки шлюза (MF001...)
        invoice_status: Статус счета MyFatoorah (PAID / PENDING / EXPIRED)
        provider_message: Текст ошибки от шлюза, если код неизвестен
        transaction_id: ID транзакции у шлюза
    """
    provider = ProviderName(provider)
    if provider == ProviderName.MYFATOORAH:
        return _normalize_myfatoorah(raw_status, raw_error_code, invoice_status, provider_message, transaction_id)
    if provider == ProviderName.TABBY:
        return _normalize_table(provider, TABBY_STATUSES, raw_status, transaction_id)
    return _normalize_table(provider, TAMARA_STATUSES, raw_status, transaction_id)


def order_id_from_reference(reference: str | None) -> str | None:
    """WC-123 -> 123."""
    if not reference or not str(reference).startswith("WC-"):
        return None
    return str(reference)[3:] or None


def _str_or_none(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _myfatoorah_fields(raw: dict[str, Any]) -> dict[str, Any]:
    """Поля из ответа v3 /payments или v2 GetPaymentStatus."""
    if "Invoice" in raw or "Transaction" in raw:
        invoice = raw.get("Invoice") or {}
        transaction = raw.get("Transaction") or {}
        error = transaction.get("Error") or {}
        amount = raw.get("Amount") or {}
        return {
            "raw_status": transaction.get("Status"),
            "raw_error_code": error.get("Code"),
            "provider_message": error.get("Message"),
            "invoice_status": invoice.get("Status"),
            "transaction_id": _str_or_none(transaction.get("Id") or transaction.get("PaymentId")),
            "provider_reference": _str_or_none(transaction.get("ReferenceId") or invoice.get("Reference")),
            "amount_settled": _str_or_none(amount.get("ValueInBaseCurrency")),
            "settlement_currency": _str_or_none(amount.get("BaseCurrency")),
            "order_reference": (
                (raw.get("Order") or {}).get("ExternalIdentifier")
                or invoice.get("UserDefinedField")
                or (raw.get("Customer") or {}).get("Reference")
            ),
        }

    transactions = raw.get("InvoiceTransactions") or []
    successful = next(
        (t for t in transactions if str(t.get("TransactionStatus", "")).upper() in MYFATOORAH_SUCCESS),
        None,
    )
    failed = None
    if successful is None:
        failed = next(
            (t for t in transactions if str(t.get("TransactionStatus", "")).upper() in MYFATOORAH_FAILED),
            None,
        )
    latest = transactions[-1] if transactions else {}
    active = successful or failed or latest
    return {
        "raw_status": active.get("TransactionStatus"),
        "raw_error_code": active.get("ErrorCode") or None,
        "provider_message": active.get("Error"),
        "invoice_status": raw.get("InvoiceStatus"),
        "transaction_id": _str_or_none(active.get("TransactionId")),
        "provider_reference": _str_or_none(active.get("ReferenceId") or raw.get("InvoiceReference")),
        "amount_settled": _str_or_none(active.get("PaidCurrencyValue") or raw.get("InvoiceValue")),
        "settlement_currency": _str_or_none(active.get("PaidCurrency") or active.get("Currency")),
        "order_reference": raw.get("CustomerReference"),
    }


def _tabby_fields(raw: dict[str, Any]) -> dict[str, Any]:
    return {
        "raw_status": raw.get("status"),
        "transaction_id": _str_or_none(raw.get("id")),
        "provider_reference": _str_or_none((raw.get("order") or {}).get("reference_id")),
        "amount_settled": _str_or_none(raw.get("amount")),
        "settlement_currency": _str_or_none(raw.get("currency")),
        "order_reference": (raw.get("order") or {}).get("reference_id"),
    }


def _tamara_fields(raw: dict[str, Any]) -> dict[str, Any]:
    settled = raw.get("captured_amount") or raw.get("paid_amount") or raw.get("total_amount") or {}
    return {
        "raw_status": raw.get("status"),
        "transaction_id": _str_or_none(raw.get("order_id")),
        "provider_reference": _str_or_none(raw.get("order_reference_id")),
        "amount_settled": _str_or_none(settled.get("amount")),
        "settlement_currency": _str_or_none(settled.get("currency")),
        "order_reference": raw.get("order_reference_id"),
    }


def normalize_response(
    provider: ProviderName | str,
    reference: str,
    raw: dict[str, Any],
) -> VerificationResult:
    """Разобрать ответ шлюза и вернуть нормализованный результат проверки."""
    provider = ProviderName(provider)
    if provider == ProviderName.MYFATOORAH:
        fields = _myfatoorah_fields(raw)
    elif provider == ProviderName.TABBY:
        fields = _tabby_fields(raw)
    else:
        fields = _tamara_fields(raw)

    status = normalize(
        provider,
        fields["raw_status"],
        raw_error_code=fields.get("raw_error_code"),
        invoice_status=fields.get("invoice_status"),
        provider_message=fields.get("provider_message"),
        transaction_id=fields["transaction_id"],
    )

    return VerificationResult(
        provider=provider,
        reference=reference,
        status=status,
        state=STATES[status.status],
        transaction_id=fields["transaction_id"],
        provider_reference=fields["provider_reference"],
        amount_settled=fields["amount_settled"],
        settlement_currency=fields["settlement_currency"],
        raw_status=_str_or_none(fields["raw_status"] or fields.get("invoice_status")),
        order_id=order_id_from_reference(fields["order_reference"]),
        raw=raw,
    )
