"""Адаптеры платежных шлюзов."""
import httpx

from app.models.payment import ProviderName
from app.services.payment_providers.base import (
    GatewayHttp,
    PaymentProvider,
    bind_callbacks,
    bind_order_url,
)
from app.services.payment_providers.myfatoorah import MyFatoorahProvider
from app.services.payment_providers.tabby import TabbyProvider
from app.services.payment_providers.tamara import TamaraProvider

PROVIDER_TITLES = {
    ProviderName.MYFATOORAH: ("Credit/Debit Card", "Pay securely with your credit or debit card via MyFatoorah"),
    ProviderName.TABBY: ("Tabby - Pay in Installments", "Split your purchase into 4 interest-free payments"),
    ProviderName.TAMARA: ("Tamara - Buy Now Pay Later", "Pay in easy installments with Tamara"),
}


def build_providers(client: httpx.AsyncClient | None = None) -> dict[ProviderName, PaymentProvider]:
    """Все адаптеры с настройками из окружения."""
    return {
        ProviderName.MYFATOORAH: MyFatoorahProvider(client=client),
        ProviderName.TABBY: TabbyProvider(client=client),
        ProviderName.TAMARA: TamaraProvider(client=client),
    }


__all__ = [
    "GatewayHttp",
    "MyFatoorahProvider",
    "PROVIDER_TITLES",
    "PaymentProvider",
    "TabbyProvider",
    "TamaraProvider",
    "bind_callbacks",
    "bind_order_url",
    "build_providers",
]
