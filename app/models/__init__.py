"""Модели платежного слоя."""
from app.models.order import CommerceOrder, OrderSyncResult
from app.models.payment import (
    Address,
    CallbackUrls,
    CurrencyRate,
    Customer,
    EmbedHandle,
    InitiateResult,
    Money,
    NormalizedPaymentStatus,
    OrderItem,
    PaymentErrorDetail,
    PaymentHandle,
    PaymentOrder,
    PaymentState,
    ProviderName,
    RefundResult,
    SettlementReport,
    VerificationResult,
    VerifyOutcome,
)

__all__ = [
    "Address",
    "CallbackUrls",
    "CommerceOrder",
    "CurrencyRate",
    "Customer",
    "EmbedHandle",
    "InitiateResult",
    "Money",
    "NormalizedPaymentStatus",
    "OrderItem",
    "OrderSyncResult",
    "PaymentErrorDetail",
    "PaymentHandle",
    "PaymentOrder",
    "PaymentState",
    "ProviderName",
    "RefundResult",
    "SettlementReport",
    "VerificationResult",
    "VerifyOutcome",
]
