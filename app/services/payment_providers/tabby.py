"""Адаптер Tabby: оплата частями через страницу Tabby."""
import logging
from datetime import date
from typing import Any

import httpx

from app.config import settings
from app.core.exceptions import ConfigurationError, ProviderRejected
from app.core.phone import normalize_phone
from app.models.payment import (
    CallbackUrls,
    Money,
    PaymentHandle,
    PaymentOrder,
    ProviderName,
)
from app.services.currency_service import format_amount
from app.services.payment_providers.base import GatewayHttp, item_price_ratio, path_segment, rejection_status

logger = logging.getLogger(__name__)

API_URL = "https://api.tabby.ai/api/v2"

SUPPORTED_CURRENCIES = ("AED", "SAR", "KWD")
DEFAULT_CURRENCY = "AED"

REJECTION_MESSAGES = {
    "not_available": "Tabby is not available for this order. Please try a different payment method.",
    "order_amount_too_high": "Order amount is too high for Tabby. Please try a different payment method.",
    "order_amount_too_low": "Order amount is too low for Tabby. Please try a different payment method.",
}
DEFAULT_REJECTION_MESSAGE = "Tabby could not approve this purchase. Please try a different payment method."


def rejection_message(reason: str | None) -> str:
    """Сообщение для покупателя по rejection_reason."""
    if not reason:
        return DEFAULT_REJECTION_MESSAGE
    return REJECTION_MESSAGES.get(reason, DEFAULT_REJECTION_MESSAGE)


def parse_error(status_code: int, body: dict[str, Any]) -> ProviderRejected:
    error = body.get("error") if isinstance(body.get("error"), dict) else {}
    reason = body.get("rejection_reason")
    return ProviderRejected(
        error.get("code") or body.get("status") or "tabby_error",
        error.get("message") or body.get("message") or (rejection_message(reason) if reason else "Failed to create Tabby session"),
        provider_details={"rejection_reason": reason} if reason else body,
        http_status=rejection_status(status_code),
    )


class TabbyProvider:
    """Рассрочка Tabby."""

    name = ProviderName.TABBY

    def __init__(
        self,
        secret_key: str | None = None,
        merchant_code: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.tabby_secret_key
        self.merchant_code = merchant_code if merchant_code is not None else settings.tabby_merchant_code
        self.http = GatewayHttp(
            provider="tabby",
            base_url=API_URL,
            token=self.secret_key,
            timeout=timeout or settings.payment_http_timeout,
            client=client,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key and self.merchant_code)

    def ensure_configured(self) -> None:
        if not self.secret_key:
            logger.error("Tabby secret key is not configured")
            raise ConfigurationError("missing_api_key", "Tabby Secret Key is not configured")
        if not self.merchant_code:
            raise ConfigurationError("missing_merchant_code", "Tabby merchant code is not configured")

    def settlement_currency(self, display_currency: str) -> str:
        currency = (display_currency or "").upper()
        return currency if currency in SUPPORTED_CURRENCIES else DEFAULT_CURRENCY

    def missing_fields(self, order: PaymentOrder) -> list[str]:
        missing = []
        if not order.customer.full_name:
            missing.append("customer.name")
        if not order.customer.email:
            missing.append("customer.email")
        if not normalize_phone(order.customer.phone):
            missing.append("customer.phone")
        if not order.items:
            missing.append("items")
        return missing

    def build_payload(
        self,
        order: PaymentOrder,
        amount: Money,
        callbacks: CallbackUrls,
        locale: str,
    ) -> dict[str, Any]:
        """Тело запроса POST /checkout."""
        shipping = order.shipping_address or order.billing_address
        ratio = item_price_ratio(order, amount)
        return {
            "payment": {
                "amount": format_amount(amount.amount),
                "currency": amount.currency,
                "description": order.description or f"Order #{order.order_id}",
                "buyer": {
                    "phone": normalize_phone(order.customer.phone),
                    "email": order.customer.email,
                    "name": order.customer.full_name,
                },
                "shipping_address": {
                    "city": shipping.city if shipping else "",
                    "address": shipping.line1 if shipping else "",
                    "zip": shipping.zip if shipping else "",
                },
                "order": {
                    "tax_amount": "0.00",
                    "shipping_amount": "0.00",
                    "discount_amount": "0.00",
                    "reference_id": order.reference,
                    "items": [
                        {
                            "title": item.title,
                            "quantity": item.quantity,
                            "unit_price": format_amount(item.unit_price * ratio),
                            "category": item.category or "General",
                        }
                        for item in order.items
                    ],
                },
                "buyer_history": {
                    "registered_since": date.today().isoformat(),
                    "loyalty_level": 0,
                },
            },
            "lang": "ar" if locale.lower().startswith("ar") else "en",
            "merchant_code": self.merchant_code,
            "merchant_urls": {
                "success": callbacks.success,
                "cancel": callbacks.cancel,
                "failure": callbacks.failure,
            },
        }

    async def create_session(
        self,
        order: PaymentOrder,
        amount: Money,
        callbacks: CallbackUrls,
        locale: str,
    ) -> PaymentHandle:
        """
        Создать checkout сессию.

        Ссылка на оплату берется из продукта installments. Если Tabby его не
        предложил, это отказ с rejection_reason, а не ошибка сети.
        """
        self.ensure_configured()
        payload = self.build_payload(order, amount, callbacks, locale)
        logger.info(f"Creating Tabby session for order {order.order_id}: {payload['payment']['amount']} {amount.currency}")

        data = await self.http.post("/checkout", payload, error_parser=parse_error)

        configuration = data.get("configuration") or {}
        installments = (configuration.get("available_products") or {}).get("installments") or []
        web_url = installments[0].get("web_url") if installments and isinstance(installments[0], dict) else None

        if not web_url:
            reason = ((configuration.get("products") or {}).get("installments") or {}).get("rejection_reason")
            logger.warning(f"⚠️ Tabby rejected order {order.order_id}: {reason or 'no installments product'}")
            raise ProviderRejected(
                "rejected",
                rejection_message(reason),
                provider_details={"rejection_reason": reason, "status": data.get("status")},
            )

        payment = data.get("payment") or {}
        session_id = payment.get("id") or data.get("id")
        logger.info(f"✅ Tabby session created: {session_id}")
        return PaymentHandle(
            provider=self.name,
            session_id=str(session_id or ""),
            order_id=order.order_id,
            order_key=order.order_key,
            redirect_url=web_url,
            amount=amount,
            original_amount=order.amount,
            raw_status=data.get("status"),
            expires_at=data.get("expires_at"),
        )

    async def fetch_session(self, reference: str) -> dict[str, Any]:
        """Платеж Tabby (GET /payments/{id}); статус хранится прямо в нем."""
        self.ensure_configured()
        return await self.http.get(f"/payments/{path_segment(reference)}", error_parser=parse_error)

    async def fetch_status(self, reference: str) -> dict[str, Any]:
        return await self.fetch_session(reference)
