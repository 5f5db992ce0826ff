"""Payments API."""
import hmac
import logging
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.config import settings
from app.core.auth import get_current_admin
from app.core.dependencies import get_payment_service
from app.core.exceptions import PaymentError
from app.core.security import decode_token
from app.models.payment import (
    Address,
    CallbackUrls,
    Customer,
    Money,
    OrderItem,
    PaymentErrorDetail,
    PaymentOrder,
    ProviderName,
)
from app.services.payment_service import PaymentService
from app.services.status_normalizer import order_id_from_reference

logger = logging.getLogger(__name__)

router = APIRouter()

STATUS_BY_KIND = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "configuration": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "provider_rejected": status.HTTP_400_BAD_REQUEST,
    "transport": status.HTTP_502_BAD_GATEWAY,
}


def error_response(error: PaymentErrorDetail) -> JSONResponse:
    """Структурированная ошибка в формате {success: false, error: {...}}."""
    status_code = error.http_status or STATUS_BY_KIND.get(error.kind, status.HTTP_400_BAD_REQUEST)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error.model_dump(mode="json")},
    )


class InitiatePaymentRequest(BaseModel):
    """Запрос на создание оплаты от страницы оформления заказа."""

    order_id: str
    order_key: str = ""
    amount: Decimal = Field(..., ge=0)
    currency: str = "AED"
    customer: Customer = Field(default_factory=Customer)
    billing_address: Address | None = None
    shipping_address: Address | None = None
    items: list[OrderItem] = Field(default_factory=list)
    success_url: str = ""
    failure_url: str = ""
    cancel_url: str = ""
    locale: str = "en"
    description: str = ""
    card_flow: Literal["embedded", "redirect"] = "embedded"

    def to_order(self) -> PaymentOrder:
        return PaymentOrder(
            order_id=self.order_id,
            order_key=self.order_key,
            amount=Money(amount=self.amount, currency=self.currency),
            customer=self.customer,
            billing_address=self.billing_address,
            shipping_address=self.shipping_address,
            items=self.items,
            callbacks=CallbackUrls(
                success=self.success_url or settings.payment_success_url,
                failure=self.failure_url or settings.payment_failure_url,
                cancel=self.cancel_url,
            ),
            locale=self.locale,
            description=self.description,
            card_flow=self.card_flow,
        )


class RefundRequest(BaseModel):
    """Запрос на возврат оплаты картой."""

    payment_id: str | None = None
    invoice_id: str | None = None
    amount: Decimal
    comment: str | None = None
    service_charge_on_customer: bool = False
    order_id: str | None = None
    restock_items: bool = True


class SyncOrdersRequest(BaseModel):
    """Сверка заказов с MyFatoorah."""

    order_ids: list[str] | None = None
    payment_ids: list[str] | None = None


@router.get("/gateways")
async def list_gateways(service: PaymentService = Depends(get_payment_service)):
    """Платежные шлюзы и их готовность к работе."""
    return {
        "success": True,
        "gateways": service.gateways(),
        "myfatoorah_test_mode": settings.myfatoorah_test_mode,
    }


@router.post("/webhook/tabby")
async def tabby_webhook(
    request: Request,
    order_id: str | None = None,
    order_key: str | None = None,
    service: PaymentService = Depends(get_payment_service),
):
    """
    Webhook Tabby.

    Подпись - значение заголовка X-Tabby-Signature, заданное при регистрации webhook.
    Статус из тела не используется: платеж перепроверяется в Tabby.
    """
    logger.info("=== Tabby Webhook received ===")
    signature = request.headers.get("X-Tabby-Signature")

    if settings.tabby_webhook_secret:
        if not signature or not hmac.compare_digest(signature, settings.tabby_webhook_secret):
            logger.error("❌ Invalid Tabby webhook signature!")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid signature",
            )
    else:
        logger.warning("⚠️ Tabby webhook secret not configured - skipping signature validation")

    try:
        event = await request.json()
    except ValueError as e:
        logger.error(f"❌ Failed to parse JSON: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON",
        )

    payment_id = event.get("id") if isinstance(event, dict) else None
    if not payment_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payment ID is required")

    tabby_order = event.get("order")
    reference_id = tabby_order.get("reference_id") if isinstance(tabby_order, dict) else None
    order_id = order_id or order_id_from_reference(reference_id)
    logger.info(f"Tabby event for payment {payment_id}, order {order_id}, status {event.get('status')}")

    outcome = await service.confirm(
        ProviderName.TABBY, payment_id, order_id, order_key, require_order_key=False
    )
    if not outcome.success:
        return error_response(outcome.error)
    return {
        "ok": True,
        "payment_status": outcome.result.status.status,
        "order_updated": outcome.order_updated,
    }


@router.post("/webhook/tamara")
async def tamara_webhook(
    request: Request,
    order_id: str | None = None,
    order_key: str | None = None,
    tamara_token: str | None = Query(None, alias="tamaraToken"),
    service: PaymentService = Depends(get_payment_service),
):
    """
    Webhook Tamara.

    Уведомление подписано JWT (tamaraToken в query или Authorization: Bearer).
    """
    logger.info("=== Tamara Webhook received ===")
    token = tamara_token
    auth_header = request.headers.get("Authorization", "")
    if not token and auth_header.startswith("Bearer "):
        token = auth_header[len("Bearer "):]

    if settings.tamara_notification_token:
        if not token or decode_token(token, settings.tamara_notification_token) is None:
            logger.error("❌ Invalid Tamara notification token!")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token",
            )
    else:
        logger.warning("⚠️ Tamara notification token not configured - skipping token validation")

    try:
        event = await request.json()
    except ValueError as e:
        logger.error(f"❌ Failed to parse JSON: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON",
        )

    tamara_order_id = event.get("order_id") if isinstance(event, dict) else None
    if not tamara_order_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order ID is required")

    order_id = order_id or order_id_from_reference(event.get("order_reference_id"))
    logger.info(f"Tamara event {event.get('event_type')} for order {order_id} ({tamara_order_id})")

    outcome = await service.confirm(
        ProviderName.TAMARA, tamara_order_id, order_id, order_key, require_order_key=False
    )
    if not outcome.success:
        return error_response(outcome.error)
    return {
        "ok": True,
        "payment_status": outcome.result.status.status,
        "order_updated": outcome.order_updated,
    }


@router.get("/myfatoorah/sessions/{session_id}")
async def get_myfatoorah_session(
    session_id: str,
    service: PaymentService = Depends(get_payment_service),
):
    """Детали сессии MyFatoorah."""
    try:
        session = await service.fetch_session(ProviderName.MYFATOORAH, session_id)
    except PaymentError as e:
        return error_response(e.to_detail())
    return {"success": True, "session": session}


@router.get("/myfatoorah/customers/{reference}")
async def get_myfatoorah_customer(
    reference: str,
    service: PaymentService = Depends(get_payment_service),
):
    """Покупатель MyFatoorah и его сохраненные карты."""
    try:
        customer = await service.fetch_customer(reference)
    except PaymentError as e:
        return error_response(e.to_detail())
    cards = customer.get("Cards") or []
    return {
        "success": True,
        "reference": customer.get("Reference"),
        "name": customer.get("Name"),
        "email": customer.get("Email"),
        "mobile": customer.get("Mobile"),
        "cards": [
            {
                "token": card.get("Token"),
                "brand": card.get("Brand"),
                "number": card.get("Number"),
                "expiry_month": card.get("ExpiryMonth"),
                "expiry_year": card.get("ExpiryYear"),
                "name_on_card": card.get("NameOnCard"),
                "issuer": card.get("Issuer"),
                "issuer_country": card.get("IssuerCountry"),
                "funding_method": card.get("FundingMethod"),
            }
            for card in cards
        ],
    }


@router.post("/myfatoorah/refund")
async def create_refund(
    refund_data: RefundRequest,
    current_user: dict = Depends(get_current_admin),
    service: PaymentService = Depends(get_payment_service),
):
    """Возврат оплаты картой (только для администраторов)."""
    logger.info(f"Refund requested by {current_user.get('sub')}: {refund_data.payment_id or refund_data.invoice_id}")
    try:
        refund = await service.refund(
            amount=refund_data.amount,
            payment_id=refund_data.payment_id,
            invoice_id=refund_data.invoice_id,
            comment=refund_data.comment,
            service_charge_on_customer=refund_data.service_charge_on_customer,
            order_id=refund_data.order_id,
            restock_items=refund_data.restock_items,
        )
    except PaymentError as e:
        return error_response(e.to_detail())
    return {
        "success": True,
        "refund": refund.model_dump(mode="json"),
        "message": "Refund request submitted successfully. It will be processed by MyFatoorah finance team.",
    }


@router.get("/myfatoorah/refund")
async def get_refund_status(
    refund_id: str | None = None,
    refund_reference: str | None = None,
    invoice_id: str | None = None,
    current_user: dict = Depends(get_current_admin),
    service: PaymentService = Depends(get_payment_service),
):
    """Статус возвратов MyFatoorah (только для администраторов)."""
    try:
        refunds = await service.refund_status(
            refund_id=refund_id,
            refund_reference=refund_reference,
            invoice_id=invoice_id,
        )
    except PaymentError as e:
        return error_response(e.to_detail())
    return {"success": True, "refunds": [r.model_dump(mode="json") for r in refunds]}


@router.post("/myfatoorah/sync-orders")
async def sync_orders(
    sync_data: SyncOrdersRequest,
    current_user: dict = Depends(get_current_admin),
    service: PaymentService = Depends(get_payment_service),
):
    """Сверить неоплаченные заказы с MyFatoorah (только для администраторов)."""
    try:
        results = await service.sync_card_orders(
            order_ids=sync_data.order_ids,
            payment_ids=sync_data.payment_ids,
        )
    except PaymentError as e:
        return error_response(e.to_detail())

    synced_count = sum(1 for r in results if r.synced)
    return {
        "success": True,
        "message": f"Synced {synced_count} of {len(results)} orders",
        "results": [r.model_dump(mode="json") for r in results],
    }


@router.post("/{provider}/initiate")
async def initiate_payment(
    provider: str,
    payment_data: InitiatePaymentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    """
    Создать оплату заказа.

    Возвращает redirect_url (Tabby, Tamara, счет MyFatoorah) или embed
    (встроенная форма MyFatoorah).
    """
    result = await service.initiate(payment_data.to_order(), provider)
    if not result.success:
        return error_response(result.error)
    return {"success": True, "handle": result.handle.model_dump(mode="json")}


@router.get("/{provider}/verify")
async def verify_payment(
    provider: str,
    reference: str = Query(..., min_length=1),
    service: PaymentService = Depends(get_payment_service),
):
    """Проверить статус оплаты у шлюза (без изменения заказа)."""
    outcome = await service.verify(provider, reference)
    if not outcome.success:
        return error_response(outcome.error)
    return outcome_payload(outcome)


@router.get("/{provider}/return")
async def payment_return(
    provider: str,
    order_id: str = Query(...),
    order_key: str = Query(...),
    payment_id_camel: str | None = Query(None, alias="paymentId"),
    payment_id: str | None = None,
    provider_order_id: str | None = Query(None, alias="orderId"),
    service: PaymentService = Depends(get_payment_service),
):
    """
    Возврат покупателя со страницы шлюза.

    MyFatoorah передает paymentId, Tabby - payment_id, Tamara - orderId.
    """
    reference = payment_id_camel or payment_id or provider_order_id
    outcome = await service.confirm(provider, reference, order_id, order_key)
    if not outcome.success:
        return error_response(outcome.error)
    return outcome_payload(outcome)


def outcome_payload(outcome) -> dict:
    result = outcome.result
    return {
        "success": True,
        "payment_status": result.status.status,
        "status_message": result.status.message,
        "state": result.state.value,
        "ambiguous": result.status.ambiguous,
        "provider": result.provider.value,
        "reference": result.reference,
        "order_id": result.order_id,
        "transaction_id": result.transaction_id,
        "provider_reference": result.provider_reference,
        "raw_status": result.raw_status,
        "error_code": result.status.provider_error_code,
        "amount": result.amount_settled,
        "currency": result.settlement_currency,
        "order_updated": outcome.order_updated,
    }
