"""Общие фикстуры тестов."""
from typing import Any, Callable

import httpx
import pytest

from app.core.cache import MemoryCache
from app.models.order import CommerceOrder
from app.models.payment import (
    Address,
    CallbackUrls,
    Customer,
    Money,
    OrderItem,
    PaymentOrder,
    SettlementReport,
)
from app.services.currency_service import CurrencyService


def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "/tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "/tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)


class GatewayStub:
    """
    Заглушка API шлюза поверх httpx.MockTransport.

    routes: {(method, path): response | callable(request) -> response}
    """

    def __init__(self, routes: dict[tuple[str, str], Any] | None = None):
        self.routes = routes or {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, response: Any) -> None:
        self.routes[(method, path)] = response

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": f"No stub for {request.method} {request.url.path}"})
        if callable(route):
            return route(request)
        if isinstance(route, httpx.Response):
            return route
        return httpx.Response(200, json=route)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]


class FakeOrderService:
    """Заказы магазина в памяти."""

    def __init__(self, orders: list[CommerceOrder] | None = None):
        self.orders = {order.id: order for order in orders or []}
        self.settlements: list[tuple[str, SettlementReport, list]] = []
        self.refunds: list[tuple[str, Any]] = []

    async def get_order(self, order_id: str) -> CommerceOrder | None:
        return self.orders.get(str(order_id))

    async def record_settlement(self, order_id, report, extra_meta=None) -> bool:
        self.settlements.append((order_id, report, extra_meta or []))
        if report.normalized_status == "pending":
            return False
        order = self.orders[order_id]
        order.status = "processing" if report.normalized_status == "success" else "failed"
        return True

    async def create_refund(self, order_id, amount, reason, restock_items=True) -> str:
        self.refunds.append((order_id, amount))
        return "901"

    async def record_refund(self, order_id, refund) -> bool:
        return True


@pytest.fixture
def gateway() -> GatewayStub:
    return GatewayStub()


@pytest.fixture
def memory_cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def currency_service(memory_cache) -> CurrencyService:
    """Сервис валют без источника курсов: работает по встроенной таблице."""
    return CurrencyService(cache=memory_cache, rates_url="")


@pytest.fixture
def make_order() -> Callable[..., PaymentOrder]:
    def _make(
        order_id: str = "1234",
        amount: str = "100.00",
        currency: str = "AED",
        **overrides,
    ) -> PaymentOrder:
        data = dict(
            order_id=order_id,
            order_key="wc_order_abc123",
            amount=Money(amount=amount, currency=currency),
            customer=Customer(
                first_name="Sara",
                last_name="Ahmed",
                email="sara@example.com",
                phone="+971 50 607 1405",
            ),
            shipping_address=Address(
                first_name="Sara",
                last_name="Ahmed",
                line1="Al Wasl Road 12",
                city="Dubai",
                country_code="AE",
            ),
            items=[OrderItem(title="Rose Face Cream", quantity=2, unit_price="50.00", sku="RFC-50")],
            callbacks=CallbackUrls(
                success="https://shop.example.com/checkout/success",
                failure="https://shop.example.com/checkout/failure",
                cancel="https://shop.example.com/checkout",
            ),
        )
        data.update(overrides)
        return PaymentOrder(**data)

    return _make


@pytest.fixture
def order_store() -> FakeOrderService:
    """Магазин с одним неоплаченным заказом 1234."""
    return FakeOrderService(
        [
            CommerceOrder(
                id="1234",
                order_key="wc_order_abc123",
                status="pending",
                total="100.00",
                currency="AED",
                payment_method="myfatoorah",
            )
        ]
    )
