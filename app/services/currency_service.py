"""Сервис конвертации валют для платежных шлюзов."""
import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

import httpx

from app.config import settings
from app.core.cache import AsyncCache, get_cache_key_currency_rates
from app.models.payment import CurrencyRate

logger = logging.getLogger(__name__)

# Валюты с тремя знаками после запятой (динары и оманский риал)
THREE_DECIMAL_CURRENCIES = frozenset({"KWD", "BHD", "OMR", "JOD"})

# Используются, когда источник курсов недоступен
DEFAULT_CURRENCIES: list[dict[str, Any]] = [
    {"code": "AED", "label": "UAE (AED)", "symbol": "د.إ", "decimals": 2, "rateFromAED": 1},
    {"code": "BHD", "label": "Bahrain (BHD)", "symbol": "BD", "decimals": 3, "rateFromAED": 0.103},
    {"code": "KWD", "label": "Kuwait (KWD)", "symbol": "KD", "decimals": 3, "rateFromAED": 0.083},
    {"code": "OMR", "label": "Oman (OMR)", "symbol": "OMR", "decimals": 3, "rateFromAED": 0.105},
    {"code": "QAR", "label": "Qatar (QAR)", "symbol": "QR", "decimals": 2, "rateFromAED": 0.99},
    {"code": "SAR", "label": "Saudi Arabia (SAR)", "symbol": "SAR", "decimals": 2, "rateFromAED": 1.02},
    {"code": "USD", "label": "United States (USD)", "symbol": "$", "decimals": 2, "rateFromAED": 0.27},
]


def currency_decimals(code: str) -> int:
    """Количество знаков после запятой для валюты."""
    return 3 if code.upper() in THREE_DECIMAL_CURRENCIES else 2


def quantize(amount: Decimal, currency: str) -> Decimal:
    """Округлить сумму до точности валюты (half-up)."""
    exponent = Decimal(1).scaleb(-currency_decimals(currency))
    return Decimal(amount).quantize(exponent, rounding=ROUND_HALF_UP)


def format_amount(amount: Decimal | int | float | str, places: int = 2) -> str:
    """Строка с фиксированным числом знаков для передачи в API шлюза.

    float приводится через str(), чтобы не тащить двоичные артефакты.
    """
    value = Decimal(str(amount)) if isinstance(amount, float) else Decimal(amount)
    return str(value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))


def convert_amount(
    amount: Decimal,
    from_rate: Decimal,
    to_rate: Decimal,
    decimals: int,
) -> Decimal:
    """Конвертация через базовую валюту: amount / from_rate * to_rate."""
    in_base = Decimal(amount) / Decimal(from_rate)
    result = in_base * Decimal(to_rate)
    return result.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)


def parse_rates(payload: Any) -> dict[str, CurrencyRate]:
    """Разобрать ответ источника курсов. Некорректные записи пропускаются."""
    rates: dict[str, CurrencyRate] = {}
    if not isinstance(payload, list):
        return rates

    for entry in payload:
        if not isinstance(entry, dict):
            continue
        code = str(entry.get("code") or "").strip().upper()
        raw_rate = entry.get("rateFromAED", entry.get("rate_from_base"))
        if not code or raw_rate is None:
            continue
        try:
            rate = Decimal(str(raw_rate))
        except (InvalidOperation, ValueError):
            logger.warning(f"Skipping currency {code}: invalid rate {raw_rate!r}")
            continue
        if not rate.is_finite() or rate <= 0:
            logger.warning(f"Skipping currency {code}: non-positive rate {raw_rate!r}")
            continue
        rates[code] = CurrencyRate(
            code=code,
            rate_from_base=rate,
            decimals=currency_decimals(code),
            symbol=str(entry.get("symbol") or ""),
            label=str(entry.get("label") or code),
        )
    return rates


DEFAULT_RATES = parse_rates(DEFAULT_CURRENCIES)


class CurrencyService:
    """Сервис курсов валют с коротким кэшем и резервной таблицей."""

    CACHE_TTL = 60

    def __init__(
        self,
        cache: AsyncCache,
        rates_url: str | None = None,
        ttl: int | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.cache = cache
        self.rates_url = rates_url if rates_url is not None else settings.rates_url
        self.ttl = ttl or self.CACHE_TTL
        self.timeout = timeout or settings.payment_http_timeout
        self._client = client
        self._cache_key = get_cache_key_currency_rates(settings.currency_base)

    async def get_rates(self) -> dict[str, CurrencyRate]:
        """
        Получить таблицу курсов.

        Порядок: кэш -> источник курсов -> встроенная таблица.
        Резервная таблица не кэшируется, чтобы следующий вызов снова попробовал источник.
        """
        cached = await self.cache.get(self._cache_key)
        if cached:
            rates = parse_rates(cached)
            if rates:
                return rates

        payload = await self._fetch_rates()
        rates = parse_rates(payload)
        if rates:
            # Кэшируем исходный список: его умеет сериализовать любой бэкенд
            await self.cache.set(self._cache_key, payload, ttl=self.ttl)
            return rates

        logger.info("Currency rates source not available, using defaults")
        return dict(DEFAULT_RATES)

    async def _fetch_rates(self) -> Any:
        if not self.rates_url:
            return None
        try:
            if self._client is not None:
                response = await self._client.get(self.rates_url, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(self.rates_url)
            if response.status_code != 200:
                logger.warning(f"Currency rates source returned {response.status_code}")
                return None
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Failed to fetch currency rates: {e}")
            return None

    async def get_rate(self, code: str) -> CurrencyRate | None:
        """Курс валюты; если его нет в полученной таблице - из встроенной."""
        code = code.upper()
        rates = await self.get_rates()
        return rates.get(code) or DEFAULT_RATES.get(code)

    async def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        """
        Перевести сумму из валюты витрины в валюту расчетов шлюза.

        Никогда не бросает исключений: при неизвестном курсе возвращает сумму
        без изменений, чтобы оформление заказа не блокировалось.
        """
        from_code = (from_currency or "").upper()
        to_code = (to_currency or "").upper()
        if from_code == to_code:
            return amount

        try:
            from_rate = await self.get_rate(from_code)
            to_rate = await self.get_rate(to_code)
        except Exception as e:
            logger.error(f"Currency rate lookup failed: {e}", exc_info=True)
            from_rate = DEFAULT_RATES.get(from_code)
            to_rate = DEFAULT_RATES.get(to_code)

        if from_rate is None or to_rate is None:
            logger.warning(
                f"⚠️ Unknown currency rate for {from_code}->{to_code}, "
                f"charging {amount} unconverted"
            )
            return amount

        try:
            return convert_amount(amount, from_rate.rate_from_base, to_rate.rate_from_base, to_rate.decimals)
        except (InvalidOperation, ArithmeticError) as e:
            logger.warning(f"Currency conversion {from_code}->{to_code} failed: {e}")
            return amount

    async def list_currencies(self) -> list[CurrencyRate]:
        """Все валюты витрины."""
        rates = await self.get_rates()
        return sorted(rates.values(), key=lambda rate: rate.code)
