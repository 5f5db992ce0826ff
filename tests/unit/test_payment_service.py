"""Тесты оркестратора оплат."""
import json
from decimal import Decimal

import httpx
import pytest

from app.config import settings
from app.core.exceptions import ConfigurationError, ValidationError
from app.models.order import CommerceOrder
from app.models.payment import Money, PaymentState, ProviderName
from app.services.payment_providers import MyFatoorahProvider, TabbyProvider, TamaraProvider
from app.services.payment_service import PaymentService

SESSION_RESPONSE = {
    "IsSuccess": True,
    "Data": {"SessionId": "KWT-session-1", "EncryptionKey": "enc-1", "SessionExpiry": "2026-10-19T12:30:00Z"},
}

TABBY_CREATED = {
    "id": "sess-1",
    "status": "created",
    "payment": {"id": "pay-1"},
    "configuration": {"available_products": {"installments": [{"web_url": "https://checkout.tabby.ai/sess-1"}]}},
}


def card_payment(transaction_status="SUCCESS", invoice_status="PAID", error_code=None, reference="WC-1234"):
    transaction = {
        "Id": "7001",
        "Status": transaction_status,
        "PaymentId": "07076001",
        "PaymentMethod": "VISA/MASTER",
        "ReferenceId": "REF-9",
    }
    if error_code:
        transaction["Error"] = {"Code": error_code, "Message": "Declined"}
    return {
        "IsSuccess": True,
        "Data": {
            "Invoice": {"Id": "5001", "Status": invoice_status},
            "Transaction": transaction,
            "Order": {"ExternalIdentifier": reference},
            "Amount": {"BaseCurrency": "KWD", "ValueInBaseCurrency": "8.3"},
        },
    }


def make_providers(gateway, overrides=None):
    client = gateway.client()
    providers = {
        ProviderName.MYFATOORAH: MyFatoorahProvider(api_key="mf-key", test_mode=True, country="AE", client=client),
        ProviderName.TABBY: TabbyProvider(secret_key="sk_tabby", merchant_code="shopae", client=client),
        ProviderName.TAMARA: TamaraProvider(api_token="tamara-token", test_mode=True, country_code="AE", client=client),
    }
    providers.update(overrides or {})
    return providers


@pytest.fixture
def service(gateway, currency_service, order_store) -> PaymentService:
    return PaymentService(make_providers(gateway), currency_service, order_store)


# --- initiate ---


@pytest.mark.asyncio
async def test_card_payment_converts_to_settlement_currency(service, gateway, make_order):
    gateway.add("POST", "/v3/sessions", SESSION_RESPONSE)

    result = await service.initiate(make_order(), ProviderName.MYFATOORAH)

    assert result.success is True
    handle = result.handle
    assert handle.session_id == "KWT-session-1"
    assert handle.embed.script_url.endswith("/sessions/v1/session.js")
    assert handle.amount == Money(amount=Decimal("8.300"), currency="KWD")
    assert handle.original_amount == Money(amount=Decimal("100.00"), currency="AED")

    body = json.loads(gateway.calls("POST", "/v3/sessions")[0].content)
    assert body["Order"]["Amount"] == 8.3
    assert body["Order"]["Currency"] == "KWD"
    assert "order_id=1234" in body["IntegrationUrls"]["Redirection"]
    assert "order_key=wc_order_abc123" in body["IntegrationUrls"]["Error"]


@pytest.mark.asyncio
async def test_tabby_converts_unsupported_display_currency(service, gateway, make_order):
    gateway.add("POST", "/api/v2/checkout", TABBY_CREATED)

    result = await service.initiate(make_order(amount="27.00", currency="USD"), "tabby")

    assert result.success is True
    assert result.handle.redirect_url == "https://checkout.tabby.ai/sess-1"
    assert result.handle.amount == Money(amount=Decimal("100.00"), currency="AED")
    body = json.loads(gateway.calls("POST", "/api/v2/checkout")[0].content)
    assert body["payment"]["amount"] == "100.00"
    assert body["payment"]["currency"] == "AED"


@pytest.mark.asyncio
async def test_same_currency_is_not_converted(service, gateway, make_order):
    gateway.add("POST", "/api/v2/checkout", TABBY_CREATED)

    result = await service.initiate(make_order(amount="99.99", currency="SAR"), "tabby")

    assert result.handle.amount == Money(amount=Decimal("99.99"), currency="SAR")


@pytest.mark.asyncio
async def test_bnpl_without_checkout_url_returns_error(service, gateway, make_order):
    gateway.add("POST", "/checkout", {"order_id": "tam-1", "status": "new"})

    result = await service.initiate(make_order(), "tamara")

    assert result.success is False
    assert result.handle is None
    assert result.error.kind == "provider_rejected"
    assert result.error.code == "no_checkout_url"


@pytest.mark.asyncio
async def test_notification_url_defaults_to_webhook(service, gateway, make_order, monkeypatch):
    monkeypatch.setattr(settings, "payment_notification_url", "https://pay.example.com")
    gateway.add(
        "POST",
        "/checkout",
        {"order_id": "tam-1", "checkout_url": "https://checkout-sandbox.tamara.co/1"},
    )

    result = await service.initiate(make_order(), "tamara")

    assert result.success is True
    body = json.loads(gateway.calls("POST", "/checkout")[0].content)
    assert body["merchant_url"]["notification"] == (
        "https://pay.example.com/api/v1/payments/webhook/tamara?order_id=1234&order_key=wc_order_abc123"
    )


@pytest.mark.asyncio
async def test_cancel_url_falls_back_to_failure(service, gateway, make_order, monkeypatch):
    monkeypatch.setattr(settings, "payment_cancel_url", "")
    gateway.add("POST", "/api/v2/checkout", TABBY_CREATED)
    order = make_order()
    order.callbacks.cancel = ""

    await service.initiate(order, "tabby")

    body = json.loads(gateway.calls("POST", "/api/v2/checkout")[0].content)
    assert body["merchant_urls"]["cancel"].startswith("https://shop.example.com/checkout/failure?")


@pytest.mark.asyncio
async def test_missing_fields_rejected_before_network(service, gateway, make_order):
    order = make_order(order_key="", customer={"first_name": "Sara"})

    result = await service.initiate(order, "tabby")

    assert result.success is False
    assert result.error.kind == "validation"
    assert result.error.code == "missing_params"
    assert result.error.provider_details["missing"] == [
        "order_key",
        "customer.email",
        "customer.phone",
    ]
    assert gateway.requests == []


@pytest.mark.asyncio
async def test_zero_amount_rejected(service, gateway, make_order):
    result = await service.initiate(make_order(amount="0"), "myfatoorah")

    assert result.error.code == "missing_params"
    assert "amount" in result.error.provider_details["missing"]
    assert gateway.requests == []


@pytest.mark.asyncio
async def test_unconfigured_provider_fails_before_network(gateway, currency_service, make_order):
    providers = make_providers(gateway, {ProviderName.TABBY: TabbyProvider(secret_key="", client=gateway.client())})
    service = PaymentService(providers, currency_service)

    result = await service.initiate(make_order(), "tabby")

    assert result.success is False
    assert result.error.kind == "configuration"
    assert result.error.code == "missing_api_key"
    assert gateway.requests == []


@pytest.mark.asyncio
async def test_unsupported_provider(service, make_order):
    result = await service.initiate(make_order(), "paypal")

    assert result.error.kind == "validation"
    assert result.error.code == "unsupported_provider"


@pytest.mark.asyncio
async def test_transport_failure_is_returned_not_raised(service, gateway, make_order):
    gateway.add("POST", "/v3/sessions", httpx.Response(502, text="Bad Gateway"))

    result = await service.initiate(make_order(), "myfatoorah")

    assert result.success is False
    assert result.error.kind == "transport"


# --- verify ---


@pytest.mark.asyncio
async def test_card_verify_paid_and_success(service, gateway):
    gateway.add("GET", "/v3/payments/07076001", card_payment())

    outcome = await service.verify("myfatoorah", "07076001")

    assert outcome.success is True
    assert outcome.result.status.status == "success"
    assert outcome.result.state == PaymentState.SUCCESS
    assert outcome.result.transaction_id == "7001"


@pytest.mark.asyncio
async def test_card_verify_failed_with_error_code(service, gateway):
    gateway.add("GET", "/v3/payments/07076002", card_payment("FAILED", "PENDING", error_code="MF004"))

    outcome = await service.verify("myfatoorah", "07076002")

    assert outcome.result.status.status == "failed"
    assert outcome.result.status.message.startswith("Insufficient funds")
    assert outcome.result.status.provider_error_code == "MF004"


@pytest.mark.asyncio
async def test_verify_is_repeatable_and_read_only(service, gateway, order_store):
    gateway.add("GET", "/api/v2/payments/pay-1", {"id": "pay-1", "status": "AUTHORIZED"})

    first = await service.verify("tabby", "pay-1")
    second = await service.verify("tabby", "pay-1")

    assert first.result.status == second.result.status
    assert len(gateway.calls("GET", "/api/v2/payments/pay-1")) == 2
    assert order_store.settlements == []


@pytest.mark.asyncio
async def test_verify_unknown_status_is_ambiguous(service, gateway):
    gateway.add("GET", "/orders/tam-1", {"order_id": "tam-1", "status": "on_hold"})

    outcome = await service.verify("tamara", "tam-1")

    assert outcome.success is True
    assert outcome.result.status.status == "pending"
    assert outcome.result.status.ambiguous is True


@pytest.mark.asyncio
async def test_verify_requires_reference(service, gateway):
    outcome = await service.verify("tabby", "")

    assert outcome.error.code == "missing_reference"
    assert gateway.requests == []


# --- confirm ---


@pytest.mark.asyncio
async def test_confirm_success_marks_order_paid(service, gateway, order_store):
    gateway.add("GET", "/v3/payments/07076001", card_payment())

    outcome = await service.confirm("myfatoorah", "07076001", "1234", "wc_order_abc123")

    assert outcome.success is True
    assert outcome.order_updated is True
    assert order_store.orders["1234"].status == "processing"
    order_id, report, extra_meta = order_store.settlements[0]
    assert order_id == "1234"
    assert report.normalized_status == "success"
    assert report.provider_transaction_id == "7001"
    assert report.settlement_currency == "KWD"
    assert {"key": "_myfatoorah_payment_id", "value": "07076001"} in extra_meta


@pytest.mark.asyncio
async def test_confirm_failed_payment_marks_order_failed(service, gateway, order_store):
    gateway.add("GET", "/v3/payments/07076002", card_payment("FAILED", "PENDING", error_code="MF002"))

    outcome = await service.confirm("myfatoorah", "07076002", "1234", "wc_order_abc123")

    assert outcome.result.status.status == "failed"
    assert outcome.order_updated is True
    assert order_store.orders["1234"].status == "failed"


@pytest.mark.asyncio
async def test_confirm_pending_does_not_touch_order(service, gateway, order_store):
    gateway.add("GET", "/v3/payments/07076003", card_payment("INPROGRESS", "PENDING"))

    outcome = await service.confirm("myfatoorah", "07076003", "1234", "wc_order_abc123")

    assert outcome.success is True
    assert outcome.order_updated is False
    assert order_store.settlements == []
    assert order_store.orders["1234"].status == "pending"


@pytest.mark.asyncio
async def test_confirm_already_paid_order_is_skipped(service, gateway, order_store):
    order_store.orders["1234"].status = "completed"
    gateway.add("GET", "/v3/payments/07076001", card_payment())

    outcome = await service.confirm("myfatoorah", "07076001", "1234", "wc_order_abc123")

    assert outcome.success is True
    assert outcome.order_updated is False
    assert order_store.settlements == []


@pytest.mark.asyncio
async def test_confirm_declined_attempt_keeps_paid_order(service, gateway, order_store):
    # Повторный возврат со старой отклоненной попытки
    order_store.orders["1234"].status = "processing"
    gateway.add(
        "GET",
        "/v3/payments/07076001",
        card_payment("FAILED", "PENDING", error_code="MF004"),
    )

    outcome = await service.confirm("myfatoorah", "07076001", "1234", "wc_order_abc123")

    assert outcome.success is True
    assert outcome.result.state == PaymentState.FAILED
    assert outcome.order_updated is False
    assert order_store.orders["1234"].status == "processing"
    assert order_store.settlements == []


@pytest.mark.asyncio
async def test_confirm_failed_payment_does_not_touch_cancelled_order(service, gateway, order_store):
    order_store.orders["1234"].status = "cancelled"
    gateway.add("GET", "/v3/payments/07076001", card_payment("FAILED", "PENDING", error_code="MF002"))

    outcome = await service.confirm("myfatoorah", "07076001", "1234", "wc_order_abc123")

    assert outcome.order_updated is False
    assert order_store.orders["1234"].status == "cancelled"


@pytest.mark.asyncio
async def test_confirm_rejects_wrong_order_key(service, gateway, order_store):
    outcome = await service.confirm("myfatoorah", "07076001", "1234", "wc_order_other")

    assert outcome.success is False
    assert outcome.error.code == "order_mismatch"
    assert gateway.requests == []


@pytest.mark.asyncio
async def test_confirm_rejects_payment_of_other_order(service, gateway, order_store):
    gateway.add("GET", "/v3/payments/07076001", card_payment(reference="WC-999"))

    outcome = await service.confirm("myfatoorah", "07076001", "1234", "wc_order_abc123")

    assert outcome.error.code == "order_mismatch"
    assert order_store.settlements == []


@pytest.mark.asyncio
async def test_confirm_unknown_order(service):
    outcome = await service.confirm("myfatoorah", "07076001", "404404", "wc_order_abc123")

    assert outcome.error.code == "order_not_found"
    assert outcome.error.http_status == 404


@pytest.mark.asyncio
async def test_confirm_requires_order_key_unless_disabled(service, gateway):
    gateway.add("GET", "/api/v2/payments/pay-1", {"id": "pay-1", "status": "CLOSED"})

    missing = await service.confirm("tabby", "pay-1", "1234", None)
    webhook = await service.confirm("tabby", "pay-1", "1234", None, require_order_key=False)

    assert missing.error.code == "missing_params"
    assert webhook.success is True
    assert webhook.order_updated is True


@pytest.mark.asyncio
async def test_confirm_without_order_backend(gateway, currency_service):
    service = PaymentService(make_providers(gateway), currency_service)

    outcome = await service.confirm("myfatoorah", "07076001", "1234", "wc_order_abc123")

    assert outcome.error.kind == "configuration"
    assert outcome.error.code == "order_store_unavailable"


# --- refunds and sync ---


@pytest.mark.asyncio
async def test_refund_synced_to_order(service, gateway, order_store):
    gateway.add(
        "POST",
        "/v2/MakeRefund",
        {"IsSuccess": True, "Data": {"RefundId": 311, "RefundReference": "RF-311", "Amount": 5.0}},
    )

    refund = await service.refund(Decimal("5"), payment_id="07076001", order_id="1234")

    assert refund.refund_id == "311"
    assert refund.commerce_refund_id == "901"
    assert refund.order_updated is True
    assert order_store.refunds == [("1234", Decimal("5.0"))]


@pytest.mark.asyncio
async def test_refund_by_invoice_without_order(service, gateway, order_store):
    gateway.add("POST", "/v2/MakeRefund", {"IsSuccess": True, "Data": {"RefundId": 312}})

    refund = await service.refund(Decimal("2.5"), invoice_id="5001")

    assert refund.commerce_refund_id is None
    assert json.loads(gateway.calls("POST", "/v2/MakeRefund")[0].content)["KeyType"] == "InvoiceId"
    assert order_store.refunds == []


@pytest.mark.asyncio
async def test_refund_validation(service, gateway):
    with pytest.raises(ValidationError) as exc_info:
        await service.refund(Decimal("5"))
    assert exc_info.value.code == "missing_key"

    with pytest.raises(ValidationError) as exc_info:
        await service.refund(Decimal("0"), payment_id="07076001")
    assert exc_info.value.code == "invalid_amount"
    assert gateway.requests == []


@pytest.mark.asyncio
async def test_refund_requires_card_gateway_configuration(gateway, currency_service):
    providers = make_providers(gateway, {ProviderName.MYFATOORAH: MyFatoorahProvider(api_key="", test_mode=True)})
    service = PaymentService(providers, currency_service)

    with pytest.raises(ConfigurationError):
        await service.refund(Decimal("5"), payment_id="07076001")


@pytest.mark.asyncio
async def test_refund_status_requires_key(service):
    with pytest.raises(ValidationError):
        await service.refund_status()


@pytest.mark.asyncio
async def test_sync_orders_by_order_id(service, gateway, order_store):
    order_store.orders["555"] = CommerceOrder(id="555", order_key="k", status="completed")
    gateway.add(
        "POST",
        "/v2/GetPaymentStatus",
        {
            "IsSuccess": True,
            "Data": {
                "InvoiceId": 5001,
                "InvoiceStatus": "Paid",
                "CustomerReference": "WC-1234",
                "InvoiceTransactions": [
                    {"TransactionId": "7001", "TransactionStatus": "Succss", "PaymentId": "07076001"}
                ],
            },
        },
    )

    results = await service.sync_card_orders(order_ids=["1234", "555", "777"])

    synced, paid, missing = results
    assert synced.synced is True
    assert synced.previous_status == "pending"
    assert synced.new_status == "processing"
    assert synced.transaction_id == "7001"
    assert paid.synced is False
    assert paid.previous_status == "completed"
    assert missing.message == "Order not found in commerce backend"
    assert order_store.orders["1234"].status == "processing"


@pytest.mark.asyncio
async def test_sync_does_not_update_unpaid_order(service, gateway, order_store):
    gateway.add(
        "POST",
        "/v2/GetPaymentStatus",
        {
            "IsSuccess": True,
            "Data": {
                "InvoiceStatus": "Pending",
                "InvoiceTransactions": [{"TransactionId": "7002", "TransactionStatus": "Failed", "ErrorCode": "MF002"}],
            },
        },
    )

    [result] = await service.sync_card_orders(order_ids=["1234"])

    assert result.synced is False
    assert result.payment_status == "failed"
    assert order_store.orders["1234"].status == "pending"
    assert order_store.settlements == []


@pytest.mark.asyncio
async def test_sync_by_payment_id(service, gateway, order_store):
    gateway.add("GET", "/v3/payments/07076001", card_payment())

    [result] = await service.sync_card_orders(payment_ids=["07076001"])

    assert result.order_id == "1234"
    assert result.synced is True


@pytest.mark.asyncio
async def test_sync_unknown_payment(service, gateway):
    [result] = await service.sync_card_orders(payment_ids=["missing"])

    assert result.payment_status == "not_found"
    assert result.synced is False


@pytest.mark.asyncio
async def test_sync_requires_ids(service):
    with pytest.raises(ValidationError):
        await service.sync_card_orders()


def test_gateways(gateway, currency_service):
    providers = make_providers(gateway, {ProviderName.TAMARA: TamaraProvider(api_token="", test_mode=False)})
    service = PaymentService(providers, currency_service)

    gateways = {g["id"]: g for g in service.gateways()}

    assert set(gateways) == {"myfatoorah", "tabby", "tamara"}
    assert gateways["myfatoorah"]["enabled"] is True
    assert gateways["myfatoorah"]["test_mode"] is True
    assert gateways["tamara"]["enabled"] is False
    assert gateways["tabby"]["title"] == "Tabby - Pay in Installments"
