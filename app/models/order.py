"""Модели заказов внешнего магазина."""
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator


class CommerceOrder(BaseModel):
    """Заказ в WooCommerce (только нужные платежному слою поля)."""

    id: str
    order_key: str = ""
    status: str = "pending"  # pending / processing / on-hold / completed / cancelled / failed / refunded
    total: Decimal = Decimal("0")
    currency: str = ""
    payment_method: str = ""
    transaction_id: str = ""
    meta_data: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def id_to_str(cls, v: Any) -> str:
        return str(v)

    @field_validator("total", mode="before")
    @classmethod
    def empty_total(cls, v: Any) -> Any:
        # WooCommerce отдает суммы строками, пустая строка - ноль
        return v or "0"

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    @property
    def is_paid(self) -> bool:
        return self.status in ("processing", "completed")

    @property
    def accepts_failure(self) -> bool:
        """Неуспешную оплату можно записать только в неоплаченный заказ."""
        return self.status in ("pending", "on-hold", "failed")


class OrderSyncResult(BaseModel):
    """Итог синхронизации одного заказа со статусом оплаты в шлюзе."""

    order_id: str
    previous_status: str = "unknown"
    new_status: str = "unknown"
    payment_status: str = "unknown"
    transaction_id: str | None = None
    synced: bool = False
    message: str = ""
