"""JWT токены для административных эндпоинтов и проверки уведомлений."""
from datetime import datetime, timedelta
from typing import Any

from jose import jwt

from app.config import settings

ALGORITHM = "HS256"


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Создание JWT токена."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(hours=24)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Декодирование JWT токена."""
    return decode_token(token, settings.secret_key)


def decode_token(token: str, key: str) -> dict[str, Any] | None:
    """Проверить подпись HS256 и вернуть payload. None - если токен неверный."""
    try:
        return jwt.decode(token, key, algorithms=[ALGORITHM])
    except jwt.JWTError:
        return None
