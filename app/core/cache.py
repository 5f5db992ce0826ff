"""Кэширование с TTL: в памяти процесса или через Redis."""
import json
import time
from typing import Any, Optional, Protocol

import redis.asyncio as redis

from app.config import settings


class AsyncCache(Protocol):
    """Интерфейс кэша, который принимают сервисы."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl: int = 300) -> bool: ...

    async def delete(self, key: str) -> bool: ...


class MemoryCache:
    """Кэш в памяти процесса с временем жизни записей.

    Гонки при записи допустимы: побеждает последняя запись.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[float, Any]] = {}

    async def get(self, key: str) -> Any | None:
        """Получить значение из кэша."""
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._data.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        """Установить значение в кэш."""
        self._data[key] = (self._clock() + ttl, value)
        return True

    async def delete(self, key: str) -> bool:
        """Удалить значение из кэша."""
        return self._data.pop(key, None) is not None

    def clear(self) -> None:
        self._data.clear()


class CacheService:
    """Сервис для работы с кэшем Redis."""

    def __init__(self, url: str | None = None):
        self._url = url or settings.redis_url
        self._redis: Optional[redis.Redis] = None

    async def connect(self):
        """Подключение к Redis."""
        if not self._redis:
            try:
                self._redis = await redis.from_url(
                    self._url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                # Проверяем подключение
                await self._redis.ping()
            except Exception:
                # Если Redis недоступен, продолжаем без кэша
                self._redis = None

    async def disconnect(self):
        """Отключение от Redis."""
        if self._redis:
            await self._redis.close()
            self._redis = None

    async def get(self, key: str) -> Any | None:
        """Получить значение из кэша."""
        if not self._redis:
            await self.connect()

        if not self._redis:
            return None

        try:
            value = await self._redis.get(key)
            if value:
                return json.loads(value)
            return None
        except Exception:
            return None

    async def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        """Установить значение в кэш."""
        if not self._redis:
            await self.connect()

        if not self._redis:
            return False

        try:
            serialized = json.dumps(value, default=str)
            await self._redis.setex(key, ttl, serialized)
            return True
        except Exception:
            return False

    async def delete(self, key: str) -> bool:
        """Удалить значение из кэша."""
        if not self._redis:
            await self.connect()

        if not self._redis:
            return False

        try:
            await self._redis.delete(key)
            return True
        except Exception:
            return False


# Глобальные экземпляры
cache_service = CacheService()
memory_cache = MemoryCache()


def get_rates_cache() -> AsyncCache:
    """Кэш для курсов валют согласно настройкам."""
    if settings.currency_cache_backend == "redis":
        return cache_service
    return memory_cache


def get_cache_key_currency_rates(base: str) -> str:
    """Генерация ключа кэша для таблицы курсов."""
    return f"currency_rates:{base}"
