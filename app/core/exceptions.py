"""Ошибки платежного слоя.

Все адаптеры и оркестратор сообщают о неудачах через эти классы, чтобы
вызывающему коду не приходилось различать сетевые и бизнес-ошибки.
"""
from typing import Any


class PaymentError(Exception):
    """Базовая ошибка платежа со структурой {code, message, provider_details}."""

    kind = "payment_error"
    http_status = 400

    def __init__(
        self,
        code: str,
        message: str,
        provider_details: Any | None = None,
        http_status: int | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.provider_details = provider_details
        if http_status is not None:
            self.http_status = http_status

    def to_detail(self):
        """Преобразовать в модель ответа для UI."""
        from app.models.payment import PaymentErrorDetail

        return PaymentErrorDetail(
            kind=self.kind,
            code=self.code,
            message=self.message,
            provider_details=self.provider_details,
            http_status=self.http_status,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(PaymentError):
    """Не хватает обязательных данных. Обнаруживается до любого сетевого вызова."""

    kind = "validation"
    http_status = 400


class ConfigurationError(PaymentError):
    """Не настроен ключ API или код мерчанта. Отключает провайдера целиком."""

    kind = "configuration"
    http_status = 500


class ProviderRejected(PaymentError):
    """Шлюз понял запрос, но отказал (3DS, нет продукта рассрочки и т.п.)."""

    kind = "provider_rejected"
    http_status = 400


class TransportError(PaymentError):
    """Сеть, таймаут или ответ не-2xx без разбираемого тела."""

    kind = "transport"
    http_status = 502
