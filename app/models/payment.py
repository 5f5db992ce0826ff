"""Модели платежного слоя."""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class ProviderName(str, Enum):
    """Поддерживаемые платежные шлюзы."""

    MYFATOORAH = "myfatoorah"  # Карты, встроенная форма (сессии)
    TABBY = "tabby"  # Рассрочка
    TAMARA = "tamara"  # Buy now, pay later


class PaymentState(str, Enum):
    """Состояние попытки оплаты."""

    CREATED = "created"
    VERIFYING = "verifying"
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


class Money(BaseModel):
    """Сумма в конкретной валюте."""

    amount: Decimal = Field(..., ge=0)
    currency: str

    @field_validator("currency", mode="after")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.strip().upper()


class CurrencyRate(BaseModel):
    """Курс валюты относительно базовой (AED)."""

    code: str
    rate_from_base: Decimal
    decimals: int = 2
    symbol: str = ""
    label: str = ""


class Customer(BaseModel):
    """Снимок данных покупателя на момент создания сессии."""

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part).strip()


class Address(BaseModel):
    """Адрес доставки или оплаты."""

    first_name: str = ""
    last_name: str = ""
    line1: str = ""
    city: str = ""
    zip: str = ""
    country_code: str = ""
    phone: str = ""


class OrderItem(BaseModel):
    """Позиция заказа для шлюзов, которым нужен состав корзины."""

    title: str
    quantity: int = Field(1, gt=0)
    unit_price: Decimal = Field(..., ge=0)
    sku: str = ""
    category: str = ""
    type: str = "physical"


class CallbackUrls(BaseModel):
    """Куда шлюз возвращает покупателя (и куда шлет уведомления)."""

    success: str = ""
    failure: str = ""
    cancel: str = ""
    notification: str = ""


class PaymentOrder(BaseModel):
    """Заказ, который нужно оплатить."""

    order_id: str
    order_key: str = ""
    amount: Money
    customer: Customer = Field(default_factory=Customer)
    billing_address: Address | None = None
    shipping_address: Address | None = None
    items: list[OrderItem] = Field(default_factory=list)
    callbacks: CallbackUrls = Field(default_factory=CallbackUrls)
    locale: str = "en"
    description: str = ""
    card_flow: Literal["embedded", "redirect"] = "embedded"

    @field_validator("order_id", mode="before")
    @classmethod
    def order_id_to_str(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @property
    def reference(self) -> str:
        """Идентификатор заказа для шлюза."""
        return f"WC-{self.order_id}"


class EmbedHandle(BaseModel):
    """Данные для встроенной карточной формы (передаются UI как есть)."""

    session_id: str
    encryption_key: str | None = None
    script_url: str
    session_expiry: str | None = None


class PaymentHandle(BaseModel):
    """Результат создания сессии: куда отправить покупателя."""

    provider: ProviderName
    session_id: str
    order_id: str
    order_key: str = ""
    redirect_url: str | None = None
    embed: EmbedHandle | None = None
    amount: Money  # В валюте расчетов шлюза
    original_amount: Money  # В валюте витрины
    state: PaymentState = PaymentState.CREATED
    raw_status: str | None = None
    expires_at: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class NormalizedPaymentStatus(BaseModel):
    """Единый статус оплаты для UI."""

    status: Literal["success", "failed", "pending"]
    message: str
    provider_error_code: str | None = None
    provider_transaction_id: str | None = None
    ambiguous: bool = False


class SettlementReport(BaseModel):
    """То, что записывается в заказ во внешнем магазине."""

    provider: ProviderName
    normalized_status: Literal["success", "failed", "pending"]
    message: str
    provider_transaction_id: str | None = None
    provider_reference: str | None = None
    amount_settled: str | None = None
    settlement_currency: str | None = None


class VerificationResult(BaseModel):
    """Результат проверки оплаты у шлюза."""

    provider: ProviderName
    reference: str
    status: NormalizedPaymentStatus
    state: PaymentState
    transaction_id: str | None = None
    provider_reference: str | None = None
    amount_settled: str | None = None
    settlement_currency: str | None = None
    raw_status: str | None = None
    order_id: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    def to_report(self) -> SettlementReport:
        return SettlementReport(
            provider=self.provider,
            normalized_status=self.status.status,
            message=self.status.message,
            provider_transaction_id=self.transaction_id,
            provider_reference=self.provider_reference,
            amount_settled=self.amount_settled,
            settlement_currency=self.settlement_currency,
        )


class PaymentErrorDetail(BaseModel):
    """Структурированная ошибка, которую UI может показать напрямую."""

    kind: str
    code: str
    message: str
    provider_details: Any | None = None
    http_status: int | None = Field(default=None, exclude=True)


class InitiateResult(BaseModel):
    """Ответ оркестратора на создание оплаты."""

    success: bool
    handle: PaymentHandle | None = None
    error: PaymentErrorDetail | None = None


class VerifyOutcome(BaseModel):
    """Ответ оркестратора на проверку оплаты."""

    success: bool
    result: VerificationResult | None = None
    error: PaymentErrorDetail | None = None
    order_updated: bool = False


class RefundResult(BaseModel):
    """Результат запроса на возврат."""

    refund_id: str | None = None
    refund_reference: str | None = None
    amount: Decimal | None = None
    comment: str | None = None
    status: str | None = None
    # Синхронизация с заказом в магазине (если передан order_id)
    commerce_refund_id: str | None = None
    order_updated: bool | None = None
