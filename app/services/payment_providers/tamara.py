"""Адаптер Tamara: buy now, pay later."""
import logging
from decimal import Decimal
from typing import Any

import httpx

from app.config import settings
from app.core.exceptions import ConfigurationError, ProviderRejected
from app.core.phone import detect_country, dial_code_for, international_phone, normalize_phone
from app.models.payment import (
    Address,
    CallbackUrls,
    Money,
    PaymentHandle,
    PaymentOrder,
    ProviderName,
)
from app.services.currency_service import format_amount
from app.services.payment_providers.base import GatewayHttp, item_price_ratio, path_segment, rejection_status

logger = logging.getLogger(__name__)

SANDBOX_API_URL = "https://api-sandbox.tamara.co"
PRODUCTION_API_URL = "https://api.tamara.co"

COUNTRY_CURRENCIES = {
    "AE": "AED",
    "SA": "SAR",
    "KW": "KWD",
    "BH": "BHD",
    "OM": "OMR",
    "QA": "QAR",
}

DEFAULT_PAYMENT_TYPE = "PAY_BY_INSTALMENTS"


def api_base_url(test_mode: bool) -> str:
    return SANDBOX_API_URL if test_mode else PRODUCTION_API_URL


def tamara_locale(locale: str) -> str:
    return "ar_SA" if (locale or "").lower().startswith("ar") else "en_US"


def parse_error(status_code: int, body: dict[str, Any]) -> ProviderRejected:
    """Ошибка Tamara: errors[0].error_code или message."""
    errors = body.get("errors") or []
    first = errors[0] if errors and isinstance(errors[0], dict) else {}
    return ProviderRejected(
        first.get("error_code") or "tamara_error",
        body.get("message") or first.get("message") or first.get("error_code") or "Failed to create Tamara checkout",
        provider_details=errors or None,
        http_status=rejection_status(status_code),
    )


class TamaraProvider:
    """BNPL Tamara."""

    name = ProviderName.TAMARA

    def __init__(
        self,
        api_token: str | None = None,
        test_mode: bool | None = None,
        country_code: str | None = None,
        payment_type: str = DEFAULT_PAYMENT_TYPE,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_token = api_token if api_token is not None else settings.tamara_api_token
        self.test_mode = test_mode if test_mode is not None else settings.tamara_test_mode
        self.country_code = (country_code or settings.tamara_country_code).upper()
        self.payment_type = payment_type
        self.http = GatewayHttp(
            provider="tamara",
            base_url=api_base_url(self.test_mode),
            token=self.api_token,
            timeout=timeout or settings.payment_http_timeout,
            client=client,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_token)

    def ensure_configured(self) -> None:
        if not self.api_token:
            logger.error("Tamara API token is not configured")
            raise ConfigurationError("missing_api_token", "Tamara API Token is not configured")

    def settlement_currency(self, display_currency: str) -> str:
        currency = (display_currency or "").upper()
        if currency in COUNTRY_CURRENCIES.values():
            return currency
        return COUNTRY_CURRENCIES.get(self.country_code, "AED")

    def missing_fields(self, order: PaymentOrder) -> list[str]:
        missing = []
        customer = order.customer
        if not customer.first_name:
            missing.append("customer.first_name")
        if not customer.last_name:
            missing.append("customer.last_name")
        if not customer.email:
            missing.append("customer.email")
        if not normalize_phone(customer.phone):
            missing.append("customer.phone")
        shipping = order.shipping_address or order.billing_address
        if shipping is None or not shipping.line1:
            missing.append("shipping_address.line1")
        if shipping is None or not shipping.city:
            missing.append("shipping_address.city")
        if not order.items:
            missing.append("items")
        return missing

    def _phone(self, raw_phone: str) -> str:
        return international_phone(raw_phone, dial_code_for(self.country_code) or "971")

    def _address(self, address: Address, order: PaymentOrder, consumer_phone: str) -> dict[str, Any]:
        customer = order.customer
        return {
            "first_name": address.first_name or customer.first_name,
            "last_name": address.last_name or customer.last_name,
            "line1": address.line1,
            "city": address.city,
            "country_code": (address.country_code or detect_country(address.phone or customer.phone) or self.country_code).upper(),
            "phone_number": self._phone(address.phone) if address.phone else consumer_phone,
        }

    def build_payload(
        self,
        order: PaymentOrder,
        amount: Money,
        callbacks: CallbackUrls,
        locale: str,
    ) -> dict[str, Any]:
        """
        Тело запроса POST /checkout.

        Все суммы - строки с двумя знаками, посчитанные через Decimal.
        """
        currency = amount.currency
        consumer_phone = self._phone(order.customer.phone)
        shipping = order.shipping_address or order.billing_address
        billing = order.billing_address or shipping

        def money(value: Decimal | int) -> dict[str, str]:
            return {"amount": format_amount(value), "currency": currency}

        ratio = item_price_ratio(order, amount)

        items = []
        for index, item in enumerate(order.items, start=1):
            unit_price = item.unit_price * ratio
            items.append(
                {
                    "reference_id": item.sku or f"{order.order_id}-{index}",
                    "type": item.type or "physical",
                    "name": item.title,
                    "sku": item.sku,
                    "quantity": item.quantity,
                    "unit_price": money(unit_price),
                    "total_amount": money(unit_price * item.quantity),
                }
            )

        return {
            "order_reference_id": order.reference,
            "order_number": order.order_id,
            "total_amount": money(amount.amount),
            "description": order.description or f"Order #{order.order_id}",
            "country_code": self.country_code,
            "payment_type": self.payment_type,
            "locale": tamara_locale(locale),
            "items": items,
            "consumer": {
                "first_name": order.customer.first_name,
                "last_name": order.customer.last_name,
                "phone_number": consumer_phone,
                "email": order.customer.email,
            },
            "billing_address": self._address(billing, order, consumer_phone),
            "shipping_address": self._address(shipping, order, consumer_phone),
            "merchant_url": {
                "success": callbacks.success,
                "failure": callbacks.failure,
                "cancel": callbacks.cancel,
                "notification": callbacks.notification or callbacks.success,
            },
            "shipping_amount": money(0),
            "tax_amount": money(0),
            "discount": {"name": "", "amount": money(0)},
        }

    async def create_session(
        self,
        order: PaymentOrder,
        amount: Money,
        callbacks: CallbackUrls,
        locale: str,
    ) -> PaymentHandle:
        """Создать checkout Tamara. Ответ обязан содержать checkout_url."""
        self.ensure_configured()
        payload = self.build_payload(order, amount, callbacks, locale)
        logger.info(
            f"Creating Tamara checkout for order {order.order_id}: "
            f"{payload['total_amount']['amount']} {amount.currency}"
        )

        data = await self.http.post("/checkout", payload, error_parser=parse_error)

        if data.get("errors"):
            raise parse_error(400, data)

        checkout_url = data.get("checkout_url")
        if not checkout_url:
            logger.error(f"Tamara checkout created without checkout_url for order {order.order_id}")
            raise ProviderRejected(
                "no_checkout_url",
                "No checkout URL returned from Tamara",
                provider_details={"order_id": data.get("order_id")},
            )

        logger.info(f"✅ Tamara checkout created: {data.get('order_id')}")
        return PaymentHandle(
            provider=self.name,
            session_id=str(data.get("order_id") or data.get("checkout_id") or ""),
            order_id=order.order_id,
            order_key=order.order_key,
            redirect_url=checkout_url,
            amount=amount,
            original_amount=order.amount,
            raw_status=data.get("status"),
        )

    async def fetch_session(self, reference: str) -> dict[str, Any]:
        """Заказ Tamara (GET /orders/{id}); статус оплаты хранится в нем."""
        self.ensure_configured()
        return await self.http.get(f"/orders/{path_segment(reference)}", error_parser=parse_error)

    async def fetch_status(self, reference: str) -> dict[str, Any]:
        return await self.fetch_session(reference)
