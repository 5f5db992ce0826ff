"""Dependencies для FastAPI."""
from app.core.cache import get_rates_cache
from app.config import settings
from app.services.currency_service import CurrencyService
from app.services.order_service import CommerceOrderService
from app.services.payment_providers import build_providers
from app.services.payment_service import PaymentService


def get_currency_service() -> CurrencyService:
    """Сервис валют с кэшем курсов из настроек."""
    return CurrencyService(
        cache=get_rates_cache(),
        rates_url=settings.rates_url,
        ttl=settings.currency_rates_ttl,
    )


def get_order_service() -> CommerceOrderService:
    return CommerceOrderService()


def get_payment_service() -> PaymentService:
    """
    Оркестратор оплат.

    Создается на каждый запрос: общего изменяемого состояния между запросами нет,
    кроме кэша курсов.
    """
    return PaymentService(
        providers=build_providers(),
        currency_service=get_currency_service(),
        order_service=get_order_service(),
    )
