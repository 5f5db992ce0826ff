"""Конфигурация приложения."""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Настройки приложения."""

    # Environment
    environment: str = "development"

    # Security (JWT для административных эндпоинтов)
    secret_key: str = "your-secret-key-change-in-production"

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Commerce backend (WooCommerce REST API) - хранит заказы и курсы валют
    commerce_api_url: str = "http://localhost:8080"
    commerce_consumer_key: str = ""
    commerce_consumer_secret: str = ""

    # Currencies
    currency_base: str = "AED"  # Все курсы задаются относительно этой валюты
    currency_rates_url: str = ""  # Пусто - берем {commerce_api_url}/wp-json/asl/v1/currencies
    currency_rates_ttl: int = 60  # Секунды
    currency_cache_backend: str = "memory"  # memory / redis

    # Общий таймаут исходящих запросов к платежным шлюзам (секунды)
    payment_http_timeout: float = 8.0

    # Базовые URL возврата покупателя с платежной страницы
    payment_success_url: str = "http://localhost:3000/checkout/success"
    payment_failure_url: str = "http://localhost:3000/checkout/failure"
    payment_cancel_url: str = "http://localhost:3000/checkout"
    payment_notification_url: str = ""  # Публичный URL этого сервиса для webhook (без пути)

    # MyFatoorah (карты, встроенная форма)
    myfatoorah_api_key: str = ""
    myfatoorah_test_mode: bool = False
    myfatoorah_country: str = "KWT"

    # Tabby (рассрочка)
    tabby_secret_key: str = ""
    tabby_merchant_code: str = "default"
    tabby_webhook_secret: str = ""  # Значение заголовка X-Tabby-Signature

    # Tamara (BNPL)
    tamara_api_token: str = ""
    tamara_test_mode: bool = False
    tamara_country_code: str = "AE"
    tamara_notification_token: str = ""  # Ключ для проверки tamaraToken (JWT)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("commerce_api_url", "payment_notification_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Убираем завершающий слеш, чтобы не получать // при склейке путей."""
        return v.rstrip("/")

    @field_validator("myfatoorah_country", "tamara_country_code", "currency_base", mode="after")
    @classmethod
    def upper_codes(cls, v: str) -> str:
        """Коды стран и валют храним в верхнем регистре."""
        return v.strip().upper()

    @property
    def rates_url(self) -> str:
        """URL источника курсов валют."""
        if self.currency_rates_url:
            return self.currency_rates_url
        return f"{self.commerce_api_url}/wp-json/asl/v1/currencies"

    @property
    def is_development(self) -> bool:
        """Проверка, что это development окружение."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Проверка, что это production окружение."""
        return self.environment == "production"


settings = Settings()
