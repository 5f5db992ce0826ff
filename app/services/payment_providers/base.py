"""Общие части адаптеров платежных шлюзов."""
import logging
from decimal import Decimal
from typing import Any, Protocol
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import httpx

from app.core.exceptions import ProviderRejected, TransportError
from app.models.payment import (
    CallbackUrls,
    Money,
    PaymentHandle,
    PaymentOrder,
    ProviderName,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 8.0


class PaymentProvider(Protocol):
    """Возможности, которые оркестратор ожидает от каждого шлюза."""

    name: ProviderName

    @property
    def is_configured(self) -> bool: ...

    def ensure_configured(self) -> None: ...

    def settlement_currency(self, display_currency: str) -> str: ...

    def missing_fields(self, order: PaymentOrder) -> list[str]: ...

    async def create_session(
        self,
        order: PaymentOrder,
        amount: Money,
        callbacks: CallbackUrls,
        locale: str,
    ) -> PaymentHandle: ...

    async def fetch_session(self, reference: str) -> dict[str, Any]: ...

    async def fetch_status(self, reference: str) -> dict[str, Any]: ...


def bind_order_url(url: str, order_id: str, order_key: str) -> str:
    """
    Добавить order_id и order_key в query строку URL возврата.

    Уже существующие параметры сохраняются, одноименные перезаписываются.
    """
    if not url:
        return url
    parts = urlsplit(url)
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in ("order_id", "order_key")
    ]
    query.append(("order_id", order_id))
    query.append(("order_key", order_key))
    return urlunsplit(parts._replace(query=urlencode(query)))


def bind_callbacks(callbacks: CallbackUrls, order_id: str, order_key: str) -> CallbackUrls:
    """Привязать к заказу все URL возврата (кроме адреса уведомлений)."""
    return CallbackUrls(
        success=bind_order_url(callbacks.success, order_id, order_key),
        failure=bind_order_url(callbacks.failure, order_id, order_key),
        cancel=bind_order_url(callbacks.cancel, order_id, order_key),
        notification=bind_order_url(callbacks.notification, order_id, order_key),
    )


def path_segment(value: str) -> str:
    """Идентификатор от клиента как один сегмент пути (без / ? # и ..)."""
    return quote(str(value), safe="")


def item_price_ratio(order: PaymentOrder, amount: Money) -> Decimal:
    """
    Множитель цен позиций: цены в валюте витрины, а сумма к оплате
    уже пересчитана в валюту шлюза.
    """
    if order.amount.currency != amount.currency and order.amount.amount > 0:
        return amount.amount / order.amount.amount
    return Decimal(1)


def rejection_status(status_code: int) -> int | None:
    """HTTP статус отказа шлюза для ответа клиенту: только 4xx, иначе по умолчанию."""
    if 400 <= status_code < 500:
        return status_code
    return None


class GatewayHttp:
    """
    HTTP клиент платежного шлюза.

    Bearer авторизация, JSON в обе стороны, ограниченный таймаут, без повторов.
    Сетевые ошибки превращаются в TransportError, отказы шлюза с JSON телом
    разбирает адаптер через error_parser.
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        token: str,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout or DEFAULT_TIMEOUT
        self._client = client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        error_parser=None,
    ) -> dict[str, Any]:
        """
        Выполнить запрос к шлюзу.

        Args:
            error_parser: функция (status_code, body) -> ProviderRejected для
                ответов не-2xx с JSON телом

        Returns:
            Тело ответа (dict)

        Raises:
            TransportError: сеть, таймаут, не-2xx без разбираемого тела
            ProviderRejected: не-2xx с JSON телом
        """
        url = f"{self.base_url}{path}"
        logger.info(f"{self.provider} request: {method} {path}")

        try:
            if self._client is not None:
                response = await self._client.request(
                    method, url, json=json, headers=self._headers(), timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, json=json, headers=self._headers())
        except httpx.TimeoutException as e:
            logger.error(f"{self.provider} request timeout: {method} {path}")
            raise TransportError(
                "network_error",
                f"{self.provider} did not respond in time",
                provider_details=str(e),
            )
        except httpx.RequestError as e:
            logger.error(f"{self.provider} request error: {e}")
            raise TransportError(
                "network_error",
                f"Could not reach {self.provider}",
                provider_details=str(e),
            )

        try:
            body = response.json()
        except ValueError:
            body = None

        logger.info(f"{self.provider} response: {response.status_code} {method} {path}")

        if response.is_success:
            if not isinstance(body, dict):
                raise TransportError(
                    "invalid_response",
                    f"Unexpected response from {self.provider}",
                    provider_details=response.text[:500],
                )
            return body

        if isinstance(body, dict):
            if error_parser is not None:
                raise error_parser(response.status_code, body)
            raise ProviderRejected(
                f"{self.provider}_error",
                body.get("message") or f"{self.provider} rejected the request",
                provider_details=body,
                http_status=rejection_status(response.status_code),
            )

        logger.error(f"{self.provider} HTTP {response.status_code}: {response.text[:500]}")
        raise TransportError(
            "http_error",
            f"{self.provider} returned HTTP {response.status_code}",
            provider_details=response.text[:500],
        )

    async def get(self, path: str, error_parser=None) -> dict[str, Any]:
        return await self.request("GET", path, error_parser=error_parser)

    async def post(self, path: str, json: dict[str, Any], error_parser=None) -> dict[str, Any]:
        return await self.request("POST", path, json=json, error_parser=error_parser)
