"""Currencies API."""
from decimal import Decimal

from fastapi import APIRouter, Depends, Query

from app.config import settings
from app.core.dependencies import get_currency_service
from app.services.currency_service import CurrencyService

router = APIRouter()


@router.get("")
async def list_currencies(service: CurrencyService = Depends(get_currency_service)):
    """Таблица курсов относительно базовой валюты."""
    currencies = await service.list_currencies()
    return {
        "success": True,
        "base": settings.currency_base,
        "currencies": [c.model_dump(mode="json") for c in currencies],
    }


@router.get("/convert")
async def convert_amount(
    amount: Decimal = Query(..., ge=0),
    from_currency: str = Query(..., alias="from", min_length=3, max_length=3),
    to_currency: str = Query(..., alias="to", min_length=3, max_length=3),
    service: CurrencyService = Depends(get_currency_service),
):
    """Пересчет суммы между валютами витрины."""
    converted = await service.convert(amount, from_currency, to_currency)
    return {
        "amount": str(amount),
        "from": from_currency.upper(),
        "to": to_currency.upper(),
        "converted": str(converted),
    }
