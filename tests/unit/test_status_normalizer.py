"""Тесты приведения статусов шлюзов к единой шкале."""
import logging

import pytest

from app.models.payment import PaymentState, ProviderName
from app.services.status_normalizer import (
    MYFATOORAH_ERROR_MESSAGES,
    TABBY_STATUSES,
    TAMARA_STATUSES,
    normalize,
    normalize_response,
    order_id_from_reference,
)


@pytest.mark.parametrize(
    "raw_status, expected",
    [
        ("AUTHORIZED", "success"),
        ("CLOSED", "success"),
        ("REJECTED", "failed"),
        ("EXPIRED", "failed"),
        ("CREATED", "pending"),
        ("authorized", "success"),
    ],
)
def test_tabby_table(raw_status, expected):
    assert normalize(ProviderName.TABBY, raw_status).status == expected


def test_tabby_failure_messages():
    assert "different payment method" in normalize("tabby", "REJECTED").message
    assert normalize("tabby", "EXPIRED").message == "Payment session expired. Please try again."


@pytest.mark.parametrize(
    "raw_status, expected, message",
    [
        ("approved", "success", "Payment authorized successfully"),
        ("authorised", "success", "Payment authorized successfully"),
        ("captured", "success", "Payment completed successfully"),
        ("fully_captured", "success", "Payment completed successfully"),
        ("partially_captured", "success", "Payment partially captured"),
        ("refunded", "success", "Payment has been refunded"),
        ("partially_refunded", "success", "Payment has been partially refunded"),
        ("declined", "failed", "Payment was declined. Please try a different payment method."),
        ("canceled", "failed", "Payment was canceled."),
        ("expired", "failed", "Payment session expired. Please try again."),
        ("new", "pending", "Payment is being processed"),
    ],
)
def test_tamara_table(raw_status, expected, message):
    result = normalize(ProviderName.TAMARA, raw_status)
    assert result.status == expected
    assert result.message == message
    assert result.ambiguous is False


def test_myfatoorah_paid_and_success_is_success():
    result = normalize("myfatoorah", "SUCCESS", invoice_status="PAID", transaction_id="7001")
    assert result.status == "success"
    assert result.provider_transaction_id == "7001"


def test_myfatoorah_legacy_spelling_and_case():
    assert normalize("myfatoorah", "Succss", invoice_status="Paid").status == "success"


def test_myfatoorah_success_without_paid_invoice_is_pending():
    result = normalize("myfatoorah", "SUCCESS", invoice_status="PENDING")
    assert result.status == "pending"


@pytest.mark.parametrize("code", sorted(MYFATOORAH_ERROR_MESSAGES))
def test_myfatoorah_known_error_codes(code):
    result = normalize("myfatoorah", "FAILED", raw_error_code=code, invoice_status="PENDING")
    assert result.status == "failed"
    assert result.message == MYFATOORAH_ERROR_MESSAGES[code]
    assert result.provider_error_code == code


def test_myfatoorah_insufficient_funds():
    result = normalize("myfatoorah", "FAILED", raw_error_code="MF004")
    assert result.status == "failed"
    assert result.message.startswith("Insufficient funds")


def test_myfatoorah_unknown_code_uses_provider_message_then_generic():
    result = normalize("myfatoorah", "FAILED", raw_error_code="MF999", provider_message="Do not honour")
    assert result.message == "Do not honour"
    assert normalize("myfatoorah", "CANCELED", raw_error_code="MF999").message == "Payment failed. Please try again."


@pytest.mark.parametrize("raw_status", ["INPROGRESS", "AUTHORIZE"])
def test_myfatoorah_in_progress_is_pending(raw_status):
    result = normalize("myfatoorah", raw_status, invoice_status="PENDING")
    assert result.status == "pending"
    assert result.ambiguous is False


@pytest.mark.parametrize(
    "provider, raw_status",
    [
        ("myfatoorah", "REVERSED"),
        ("tabby", "ON_HOLD"),
        ("tamara", "on_hold"),
        ("tamara", None),
        ("tabby", ""),
    ],
)
def test_unknown_status_is_ambiguous_pending(provider, raw_status, caplog):
    with caplog.at_level(logging.WARNING, logger="app.services.status_normalizer"):
        result = normalize(provider, raw_status)
    assert result.status == "pending"
    assert result.ambiguous is True
    assert "treating as pending" in caplog.text


@pytest.mark.parametrize(
    "provider, table",
    [(ProviderName.TABBY, TABBY_STATUSES), (ProviderName.TAMARA, TAMARA_STATUSES)],
)
def test_every_documented_status_maps_to_one_bucket(provider, table):
    for raw_status in table:
        assert normalize(provider, raw_status).status in {"success", "failed", "pending"}


def test_normalize_response_myfatoorah_v3():
    raw = {
        "Invoice": {"Id": "5001", "Status": "PAID", "Reference": "2024000123", "UserDefinedField": "WC-1234"},
        "Transaction": {
            "Id": "7001",
            "Status": "SUCCESS",
            "PaymentMethod": "VISA/MASTER",
            "PaymentId": "07076001",
            "ReferenceId": "REF-9",
        },
        "Amount": {"BaseCurrency": "KWD", "ValueInBaseCurrency": "8.3", "DisplayCurrency": "AED", "ValueInDisplayCurrency": "100"},
    }
    result = normalize_response("myfatoorah", "07076001", raw)
    assert result.state == PaymentState.SUCCESS
    assert result.transaction_id == "7001"
    assert result.provider_reference == "REF-9"
    assert result.amount_settled == "8.3"
    assert result.settlement_currency == "KWD"
    assert result.order_id == "1234"

    report = result.to_report()
    assert report.normalized_status == "success"
    assert report.provider_transaction_id == "7001"


def test_normalize_response_myfatoorah_v3_failed():
    raw = {
        "Invoice": {"Id": "5001", "Status": "PENDING"},
        "Transaction": {"Id": "7002", "Status": "FAILED", "Error": {"Code": "MF004", "Message": "Insufficient"}},
    }
    result = normalize_response("myfatoorah", "07076002", raw)
    assert result.state == PaymentState.FAILED
    assert result.status.message == MYFATOORAH_ERROR_MESSAGES["MF004"]
    assert result.status.provider_error_code == "MF004"


def test_normalize_response_myfatoorah_v2_prefers_successful_transaction():
    raw = {
        "InvoiceId": 5001,
        "InvoiceStatus": "Paid",
        "CustomerReference": "WC-77",
        "InvoiceValue": 8.3,
        "InvoiceTransactions": [
            {"TransactionId": "1", "TransactionStatus": "Failed", "ErrorCode": "MF002"},
            {"TransactionId": "2", "TransactionStatus": "Succss", "PaidCurrency": "KWD", "PaidCurrencyValue": "8.300"},
        ],
    }
    result = normalize_response("myfatoorah", "WC-77", raw)
    assert result.state == PaymentState.SUCCESS
    assert result.transaction_id == "2"
    assert result.amount_settled == "8.300"
    assert result.order_id == "77"


def test_normalize_response_tabby():
    raw = {"id": "pay-1", "status": "CLOSED", "amount": "100.00", "currency": "AED", "order": {"reference_id": "WC-55"}}
    result = normalize_response("tabby", "pay-1", raw)
    assert result.state == PaymentState.SUCCESS
    assert result.status.message == "Payment completed successfully"
    assert result.order_id == "55"
    assert result.amount_settled == "100.00"


def test_normalize_response_tamara_uses_captured_amount():
    raw = {
        "order_id": "tam-1",
        "order_reference_id": "WC-56",
        "status": "partially_captured",
        "total_amount": {"amount": "200.00", "currency": "SAR"},
        "captured_amount": {"amount": "50.00", "currency": "SAR"},
    }
    result = normalize_response("tamara", "tam-1", raw)
    assert result.state == PaymentState.SUCCESS
    assert result.status.message == "Payment partially captured"
    assert result.amount_settled == "50.00"
    assert result.order_id == "56"


def test_order_id_from_reference():
    assert order_id_from_reference("WC-1234") == "1234"
    assert order_id_from_reference("1234") is None
    assert order_id_from_reference(None) is None
