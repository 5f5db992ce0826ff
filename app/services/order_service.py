"""Клиент заказов внешнего магазина (WooCommerce REST API)."""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

import httpx

from app.config import settings
from app.core.exceptions import TransportError
from app.models.order import CommerceOrder
from app.models.payment import RefundResult, SettlementReport

logger = logging.getLogger(__name__)

# Статус заказа в магазине по нормализованному статусу оплаты
ORDER_STATUSES = {
    "success": "processing",
    "failed": "failed",
}


def settlement_meta(report: SettlementReport) -> list[dict[str, str]]:
    """Мета-поля заказа с итогом оплаты."""
    prefix = f"_{report.provider.value}"
    values = {
        f"{prefix}_payment_status": report.normalized_status,
        f"{prefix}_transaction_id": report.provider_transaction_id,
        f"{prefix}_reference_id": report.provider_reference,
        f"{prefix}_amount_settled": report.amount_settled,
        f"{prefix}_settlement_currency": report.settlement_currency,
    }
    return [{"key": key, "value": value} for key, value in values.items() if value]


class CommerceOrderService:
    """Чтение заказов и запись результата оплаты во внешний магазин."""

    def __init__(
        self,
        base_url: str | None = None,
        consumer_key: str | None = None,
        consumer_secret: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = f"{(base_url or settings.commerce_api_url).rstrip('/')}/wp-json/wc/v3"
        self.consumer_key = consumer_key if consumer_key is not None else settings.commerce_consumer_key
        self.consumer_secret = consumer_secret if consumer_secret is not None else settings.commerce_consumer_secret
        self.timeout = timeout or settings.payment_http_timeout
        self._client = client
        if not self.consumer_key or not self.consumer_secret:
            logger.warning("Commerce API credentials not configured")

    def _auth_params(self) -> dict[str, str]:
        return {
            "consumer_key": self.consumer_key,
            "consumer_secret": self.consumer_secret,
        }

    async def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                return await self._client.request(
                    method, url, params=self._auth_params(), json=json, timeout=self.timeout
                )
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.request(method, url, params=self._auth_params(), json=json)
        except httpx.TimeoutException as e:
            logger.error(f"Commerce API timeout: {method} {path}")
            raise TransportError("commerce_timeout", "Commerce backend did not respond in time", str(e))
        except httpx.RequestError as e:
            logger.error(f"Commerce API request error: {e}")
            raise TransportError("commerce_unreachable", "Could not reach commerce backend", str(e))

    async def get_order(self, order_id: str) -> CommerceOrder | None:
        """Получить заказ. None - если заказа нет."""
        response = await self._request("GET", f"/orders/{order_id}")
        if response.status_code == 404:
            logger.warning(f"⚠️ Order {order_id} not found in commerce backend")
            return None
        if response.status_code != 200:
            logger.error(f"Commerce API error {response.status_code} for order {order_id}: {response.text[:300]}")
            raise TransportError(
                "commerce_error",
                f"Commerce backend returned HTTP {response.status_code}",
                provider_details=response.text[:300],
            )
        return CommerceOrder.model_validate(response.json())

    async def update_order(self, order_id: str, data: dict[str, Any]) -> bool:
        """PUT /orders/{id}. False - если магазин отказал."""
        response = await self._request("PUT", f"/orders/{order_id}", json=data)
        if response.status_code not in (200, 201):
            logger.error(f"❌ Failed to update order {order_id}: {response.status_code} {response.text[:300]}")
            return False
        return True

    async def add_note(self, order_id: str, note: str) -> bool:
        """Заметка к заказу (видна только магазину)."""
        response = await self._request("POST", f"/orders/{order_id}/notes", json={"note": note})
        return response.status_code in (200, 201)

    async def record_settlement(
        self,
        order_id: str,
        report: SettlementReport,
        extra_meta: list[dict[str, Any]] | None = None,
    ) -> bool:
        """
        Записать итог оплаты в заказ.

        success -> processing + set_paid, failed -> failed. pending ничего не меняет.

        Returns:
            True, если заказ обновлен
        """
        new_status = ORDER_STATUSES.get(report.normalized_status)
        if new_status is None:
            logger.info(f"Payment for order {order_id} is still pending, order not updated")
            return False

        data: dict[str, Any] = {
            "status": new_status,
            "meta_data": settlement_meta(report) + (extra_meta or []),
        }
        if report.normalized_status == "success":
            data["set_paid"] = True
            if report.provider_transaction_id:
                data["transaction_id"] = report.provider_transaction_id

        updated = await self.update_order(order_id, data)
        if updated:
            logger.info(f"✅ Order {order_id} updated to '{new_status}' ({report.provider.value})")
            await self.add_note(order_id, f"{report.provider.value}: {report.message}")
        return updated

    async def create_refund(
        self,
        order_id: str,
        amount: Decimal,
        reason: str,
        restock_items: bool = True,
    ) -> str | None:
        """Запись о возврате в магазине (по желанию с возвратом товара на склад)."""
        response = await self._request(
            "POST",
            f"/orders/{order_id}/refunds",
            json={
                "amount": str(amount),
                "reason": reason,
                "restock_items": restock_items,
            },
        )
        if response.status_code not in (200, 201):
            logger.error(f"Commerce refund error for order {order_id}: {response.text[:300]}")
            return None
        return str(response.json().get("id"))

    async def record_refund(self, order_id: str, refund: RefundResult) -> bool:
        """Мета-поля возврата MyFatoorah в заказе."""
        return await self.update_order(
            order_id,
            {
                "meta_data": [
                    {"key": "_myfatoorah_refund_id", "value": refund.refund_id or ""},
                    {"key": "_myfatoorah_refund_reference", "value": refund.refund_reference or ""},
                    {"key": "_myfatoorah_refund_amount", "value": str(refund.amount or "")},
                    {"key": "_myfatoorah_refund_date", "value": datetime.utcnow().isoformat()},
                ]
            },
        )
