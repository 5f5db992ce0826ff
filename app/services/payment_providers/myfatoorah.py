"""Адаптер MyFatoorah: оплата картой через встроенную форму (сессии v3)."""
import logging
from typing import Any

import httpx

from app.config import settings
from app.core.exceptions import ConfigurationError, ProviderRejected, ValidationError
from app.core.phone import normalize_phone
from app.models.payment import (
    CallbackUrls,
    EmbedHandle,
    Money,
    PaymentHandle,
    PaymentOrder,
    ProviderName,
    RefundResult,
)
from app.services.currency_service import quantize
from app.services.payment_providers.base import GatewayHttp, path_segment, rejection_status

logger = logging.getLogger(__name__)

TEST_API_URL = "https://apitest.myfatoorah.com"
MAIN_API_URL = "https://api.myfatoorah.com"
TEST_SCRIPT_URL = "https://demo.myfatoorah.com/sessions/v1/session.js"
MAIN_SCRIPT_URL = "https://portal.myfatoorah.com/sessions/v1/session.js"

# Региональные хосты; остальные страны (KW, BH, JO, OM) работают через основной портал
REGIONS = {
    "AE": "ae",
    "UAE": "ae",
    "SA": "sa",
    "SAU": "sa",
    "QA": "qa",
    "QAT": "qa",
    "EG": "eg",
    "EGY": "eg",
}

COUNTRY_CURRENCIES = {
    "AE": "AED",
    "UAE": "AED",
    "SA": "SAR",
    "SAU": "SAR",
    "QA": "QAR",
    "QAT": "QAR",
    "EG": "EGP",
    "EGY": "EGP",
    "BH": "BHD",
    "BHR": "BHD",
    "JO": "JOD",
    "JOR": "JOD",
    "OM": "OMR",
    "OMN": "OMR",
}

TEST_CURRENCY = "KWD"
DEFAULT_CURRENCY = "KWD"

REFUND_KEY_TYPES = ("PaymentId", "InvoiceId")
REFUND_STATUS_KEY_TYPES = ("RefundId", "RefundReference", "InvoiceId")


def api_base_url(test_mode: bool, country: str) -> str:
    """Хост API по стране мерчанта; тестовый режим важнее страны."""
    if test_mode:
        return TEST_API_URL
    region = REGIONS.get((country or "").upper())
    if region:
        return f"https://api-{region}.myfatoorah.com"
    return MAIN_API_URL


def session_script_url(test_mode: bool, country: str) -> str:
    """URL скрипта встроенной формы для UI."""
    if test_mode:
        return TEST_SCRIPT_URL
    region = REGIONS.get((country or "").upper())
    if region:
        return f"https://{region}.myfatoorah.com/sessions/v1/session.js"
    return MAIN_SCRIPT_URL


def settlement_currency_for(test_mode: bool, country: str) -> str:
    """Валюта расчетов мерчанта (определяется страной, а не покупателем)."""
    if test_mode:
        return TEST_CURRENCY
    return COUNTRY_CURRENCIES.get((country or "").upper(), DEFAULT_CURRENCY)


def parse_error(status_code: int, body: dict[str, Any]) -> ProviderRejected:
    """Ошибка из ответа MyFatoorah: ValidationErrors[0] или Message."""
    validation_errors = body.get("ValidationErrors") or []
    first = validation_errors[0] if validation_errors and isinstance(validation_errors[0], dict) else {}
    return ProviderRejected(
        first.get("Name") or "myfatoorah_error",
        first.get("Error") or body.get("Message") or "MyFatoorah rejected the request",
        provider_details=validation_errors or body.get("Message"),
        http_status=rejection_status(status_code),
    )


def _data(body: dict[str, Any]) -> dict[str, Any]:
    """Поле Data успешного ответа; IsSuccess=false считается отказом."""
    if not body.get("IsSuccess"):
        raise parse_error(400, body)
    return body.get("Data") or {}


class MyFatoorahProvider:
    """Платежи картой через MyFatoorah."""

    name = ProviderName.MYFATOORAH

    def __init__(
        self,
        api_key: str | None = None,
        test_mode: bool | None = None,
        country: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.myfatoorah_api_key
        self.test_mode = test_mode if test_mode is not None else settings.myfatoorah_test_mode
        self.country = (country or settings.myfatoorah_country).upper()
        self.http = GatewayHttp(
            provider="myfatoorah",
            base_url=api_base_url(self.test_mode, self.country),
            token=self.api_key,
            timeout=timeout or settings.payment_http_timeout,
            client=client,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def script_url(self) -> str:
        return session_script_url(self.test_mode, self.country)

    def ensure_configured(self) -> None:
        if not self.api_key:
            logger.error("MyFatoorah API key is not configured")
            raise ConfigurationError("missing_api_key", "MyFatoorah API key is not configured")

    def settlement_currency(self, display_currency: str) -> str:
        return settlement_currency_for(self.test_mode, self.country)

    def missing_fields(self, order: PaymentOrder) -> list[str]:
        # Данные покупателя для карты необязательны
        return []

    async def create_session(
        self,
        order: PaymentOrder,
        amount: Money,
        callbacks: CallbackUrls,
        locale: str,
    ) -> PaymentHandle:
        """
        Создать платежную сессию.

        embedded - сессия v3 для встроенной формы (ключ шифрования и скрипт для UI),
        redirect - счет через SendPayment со ссылкой на страницу оплаты.
        """
        self.ensure_configured()
        if order.card_flow == "redirect":
            return await self._send_payment(order, amount, callbacks, locale)

        session_data: dict[str, Any] = {
            "PaymentMode": "COMPLETE_PAYMENT",
            "Order": {
                "Amount": float(quantize(amount.amount, amount.currency)),
                "Currency": amount.currency,
                "ExternalIdentifier": order.reference,
            },
            "IntegrationUrls": {
                "Redirection": callbacks.success,
                "Error": callbacks.failure,
            },
            "Language": "AR" if locale.lower().startswith("ar") else "EN",
        }

        customer = order.customer
        mobile = normalize_phone(customer.phone)
        if customer.full_name or customer.email or mobile:
            customer_data: dict[str, Any] = {"Reference": order.reference}
            if customer.full_name:
                customer_data["Name"] = customer.full_name
            if customer.email:
                customer_data["Email"] = customer.email
            if mobile:
                customer_data["Mobile"] = mobile
            session_data["Customer"] = customer_data

        logger.info(
            f"Creating MyFatoorah session for order {order.order_id}: "
            f"{session_data['Order']['Amount']} {amount.currency}"
        )
        body = await self.http.post("/v3/sessions", session_data, error_parser=parse_error)
        data = _data(body)

        session_id = data.get("SessionId")
        if not session_id:
            logger.error(f"MyFatoorah session created without SessionId: {body.get('Message')}")
            raise ProviderRejected("no_session_id", "No session returned from MyFatoorah")

        logger.info(f"✅ MyFatoorah session created: {session_id}")
        return PaymentHandle(
            provider=self.name,
            session_id=str(session_id),
            order_id=order.order_id,
            order_key=order.order_key,
            embed=EmbedHandle(
                session_id=str(session_id),
                encryption_key=data.get("EncryptionKey"),
                script_url=self.script_url,
                session_expiry=data.get("SessionExpiry"),
            ),
            amount=amount,
            original_amount=order.amount,
            raw_status=data.get("OperationType"),
            expires_at=data.get("SessionExpiry"),
        )

    async def _send_payment(
        self,
        order: PaymentOrder,
        amount: Money,
        callbacks: CallbackUrls,
        locale: str,
    ) -> PaymentHandle:
        """Счет с переходом на страницу оплаты MyFatoorah."""
        customer = order.customer
        if not customer.full_name:
            raise ValidationError("missing_params", "Customer name is required for MyFatoorah invoices")

        payment_data = {
            "NotificationOption": "LNK",
            "InvoiceValue": float(quantize(amount.amount, amount.currency)),
            "CustomerName": customer.full_name,
            "CustomerEmail": customer.email,
            "CustomerMobile": normalize_phone(customer.phone),
            "DisplayCurrencyIso": amount.currency,
            "CallBackUrl": callbacks.success,
            "ErrorUrl": callbacks.failure,
            "Language": "ar" if locale.lower().startswith("ar") else "en",
            "CustomerReference": order.reference,
            "UserDefinedField": order.order_key,
        }

        logger.info(f"Creating MyFatoorah invoice for order {order.order_id}: {payment_data['InvoiceValue']} {amount.currency}")
        body = await self.http.post("/v2/SendPayment", payment_data, error_parser=parse_error)
        data = _data(body)

        invoice_url = data.get("InvoiceURL")
        if not invoice_url:
            raise ProviderRejected("no_payment_url", "No payment URL returned from MyFatoorah")

        return PaymentHandle(
            provider=self.name,
            session_id=str(data.get("InvoiceId") or ""),
            order_id=order.order_id,
            order_key=order.order_key,
            redirect_url=invoice_url,
            amount=amount,
            original_amount=order.amount,
        )

    async def fetch_session(self, reference: str) -> dict[str, Any]:
        """Детали сессии (GET /v3/sessions/{id})."""
        self.ensure_configured()
        body = await self.http.get(f"/v3/sessions/{path_segment(reference)}", error_parser=parse_error)
        return _data(body)

    async def fetch_payment(self, payment_id: str) -> dict[str, Any]:
        """Детали платежа: счет, транзакция, суммы (GET /v3/payments/{id})."""
        self.ensure_configured()
        body = await self.http.get(f"/v3/payments/{path_segment(payment_id)}", error_parser=parse_error)
        return _data(body)

    async def fetch_status(self, reference: str) -> dict[str, Any]:
        return await self.fetch_payment(reference)

    async def fetch_customer(self, reference: str) -> dict[str, Any]:
        """Покупатель и его сохраненные карты (GET /v3/customers/{reference})."""
        self.ensure_configured()
        body = await self.http.get(f"/v3/customers/{path_segment(reference)}", error_parser=parse_error)
        data = _data(body)
        logger.info(f"MyFatoorah customer {data.get('Reference')}: {len(data.get('Cards') or [])} saved cards")
        return data

    async def find_by_customer_reference(self, reference: str) -> dict[str, Any]:
        """Статус счета по CustomerReference (WC-<order_id>), для синхронизации заказов."""
        self.ensure_configured()
        body = await self.http.post(
            "/v2/GetPaymentStatus",
            {"Key": reference, "KeyType": "CustomerReference"},
            error_parser=parse_error,
        )
        return _data(body)

    async def refund(
        self,
        key: str,
        amount,
        comment: str | None = None,
        key_type: str = "PaymentId",
        service_charge_on_customer: bool = False,
    ) -> RefundResult:
        """Запрос на возврат (POST /v2/MakeRefund)."""
        self.ensure_configured()
        if key_type not in REFUND_KEY_TYPES:
            raise ValidationError("invalid_key_type", f"Unsupported refund key type: {key_type}")

        logger.info(f"MyFatoorah refund request: {key_type}={key}, amount={amount}")
        body = await self.http.post(
            "/v2/MakeRefund",
            {
                "KeyType": key_type,
                "Key": key,
                "Amount": float(amount),
                "Comment": comment or "Refund requested via API",
                "ServiceChargeOnCustomer": service_charge_on_customer,
            },
            error_parser=parse_error,
        )
        data = _data(body)
        return RefundResult(
            refund_id=str(data["RefundId"]) if data.get("RefundId") is not None else None,
            refund_reference=data.get("RefundReference") or "",
            amount=data.get("Amount") if data.get("Amount") is not None else amount,
            comment=data.get("Comment"),
            status="Pending",
        )

    async def refund_status(self, key: str, key_type: str = "RefundId") -> list[RefundResult]:
        """Статусы возвратов (POST /v2/GetRefundStatus)."""
        self.ensure_configured()
        if key_type not in REFUND_STATUS_KEY_TYPES:
            raise ValidationError("invalid_key_type", f"Unsupported refund key type: {key_type}")

        body = await self.http.post(
            "/v2/GetRefundStatus",
            {"KeyType": key_type, "Key": key},
            error_parser=parse_error,
        )
        data = _data(body)
        return [
            RefundResult(
                refund_id=str(item.get("RefundId")) if item.get("RefundId") is not None else None,
                refund_reference=item.get("RefundReference"),
                amount=item.get("RefundAmount", item.get("Amount")),
                status=item.get("RefundStatus"),
            )
            for item in data.get("RefundStatusResult") or []
        ]
