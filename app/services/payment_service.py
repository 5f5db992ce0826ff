"""Сервис для работы с платежами: создание, проверка и сверка оплат."""
import logging
from decimal import Decimal
from typing import Any

from app.config import settings
from app.core.exceptions import ConfigurationError, PaymentError, ValidationError
from app.models.order import OrderSyncResult
from app.models.payment import (
    CallbackUrls,
    InitiateResult,
    Money,
    PaymentOrder,
    PaymentState,
    ProviderName,
    RefundResult,
    VerificationResult,
    VerifyOutcome,
)
from app.services.currency_service import CurrencyService, quantize
from app.services.order_service import CommerceOrderService
from app.services.payment_providers import PROVIDER_TITLES, PaymentProvider, bind_callbacks
from app.services.payment_providers.myfatoorah import MyFatoorahProvider
from app.services.status_normalizer import normalize_response

logger = logging.getLogger(__name__)


def _myfatoorah_payment_meta(raw: dict[str, Any]) -> list[dict[str, str]]:
    """Способ оплаты и ID платежа MyFatoorah для заказа."""
    transaction = raw.get("Transaction") or {}
    if not transaction:
        transactions = raw.get("InvoiceTransactions") or []
        transaction = next(
            (t for t in transactions if str(t.get("TransactionStatus", "")).upper() in ("SUCCESS", "SUCCSS")),
            {},
        )
    values = {
        "_myfatoorah_payment_method": transaction.get("PaymentMethod") or transaction.get("PaymentGateway"),
        "_myfatoorah_payment_id": transaction.get("PaymentId"),
    }
    return [{"key": key, "value": str(value)} for key, value in values.items() if value]


class PaymentService:
    """
    Оркестратор оплат.

    Ошибки адаптеров (PaymentError) не пробрасываются из initiate / verify /
    confirm: они возвращаются в поле error ответа, чтобы UI мог показать их как есть.
    """

    def __init__(
        self,
        providers: dict[ProviderName, PaymentProvider],
        currency_service: CurrencyService,
        order_service: CommerceOrderService | None = None,
    ):
        self.providers = providers
        self.currency_service = currency_service
        self.order_service = order_service

    def get_provider(self, provider: ProviderName | str) -> PaymentProvider:
        try:
            name = ProviderName(provider)
        except ValueError:
            raise ValidationError("unsupported_provider", f"Unsupported payment provider: {provider}")
        adapter = self.providers.get(name)
        if adapter is None:
            raise ValidationError("unsupported_provider", f"Unsupported payment provider: {provider}")
        return adapter

    def _card_provider(self) -> MyFatoorahProvider:
        adapter = self.get_provider(ProviderName.MYFATOORAH)
        adapter.ensure_configured()
        return adapter

    def validate_order(self, order: PaymentOrder, adapter: PaymentProvider) -> None:
        """Проверка обязательных полей до любого сетевого вызова."""
        missing = []
        if not order.order_id:
            missing.append("order_id")
        if not order.order_key:
            missing.append("order_key")
        if order.amount.amount <= 0:
            missing.append("amount")
        if not order.callbacks.success:
            missing.append("callbacks.success")
        if not order.callbacks.failure:
            missing.append("callbacks.failure")
        missing.extend(adapter.missing_fields(order))

        if missing:
            logger.warning(f"⚠️ Payment for order {order.order_id or '?'} rejected, missing: {missing}")
            raise ValidationError(
                "missing_params",
                f"Missing required parameters: {', '.join(missing)}",
                provider_details={"missing": missing},
            )

    def _callbacks(self, order: PaymentOrder, provider: ProviderName) -> CallbackUrls:
        """URL возврата с настройками по умолчанию, привязанные к заказу."""
        callbacks = order.callbacks
        notification = callbacks.notification
        if not notification and settings.payment_notification_url:
            notification = f"{settings.payment_notification_url}/api/v1/payments/webhook/{provider.value}"
        filled = CallbackUrls(
            success=callbacks.success,
            failure=callbacks.failure,
            cancel=callbacks.cancel or settings.payment_cancel_url or callbacks.failure,
            notification=notification,
        )
        return bind_callbacks(filled, order.order_id, order.order_key)

    async def settlement_amount(self, order: PaymentOrder, adapter: PaymentProvider) -> Money:
        """Сумма в валюте расчетов шлюза."""
        display = order.amount
        currency = adapter.settlement_currency(display.currency)
        if currency == display.currency:
            return display

        converted = await self.currency_service.convert(display.amount, display.currency, currency)
        logger.info(f"Converted {display.amount} {display.currency} -> {converted} {currency} for order {order.order_id}")
        return Money(amount=quantize(converted, currency), currency=currency)

    async def initiate(self, order: PaymentOrder, provider: ProviderName | str) -> InitiateResult:
        """
        Создать оплату заказа через выбранный шлюз.

        Returns:
            InitiateResult с handle (redirect_url или embed) либо с error
        """
        try:
            adapter = self.get_provider(provider)
            self.validate_order(order, adapter)
            adapter.ensure_configured()

            amount = await self.settlement_amount(order, adapter)
            callbacks = self._callbacks(order, adapter.name)

            logger.info(
                f"Initiating {adapter.name.value} payment for order {order.order_id}: "
                f"{amount.amount} {amount.currency}"
            )
            handle = await adapter.create_session(order, amount, callbacks, order.locale)
        except PaymentError as e:
            logger.error(f"❌ Payment initiation failed for order {order.order_id}: {e.kind}/{e.code}: {e.message}")
            return InitiateResult(success=False, error=e.to_detail())

        logger.info(f"✅ Payment session {handle.session_id} created for order {order.order_id}")
        return InitiateResult(success=True, handle=handle)

    async def _verify(self, provider: ProviderName | str, reference: str) -> VerificationResult:
        adapter = self.get_provider(provider)
        if not reference:
            raise ValidationError("missing_reference", "Payment reference is required")
        adapter.ensure_configured()

        raw = await adapter.fetch_status(reference)
        result = normalize_response(adapter.name, reference, raw)
        logger.info(
            f"{adapter.name.value} payment {reference}: raw={result.raw_status} -> {result.status.status}"
        )
        return result

    async def verify(self, provider: ProviderName | str, reference: str) -> VerifyOutcome:
        """
        Проверить оплату у шлюза.

        Только читает состояние шлюза, поэтому повторные вызовы безопасны.
        """
        try:
            result = await self._verify(provider, reference)
        except PaymentError as e:
            logger.error(f"❌ Payment verification failed for {provider}/{reference}: {e.code}: {e.message}")
            return VerifyOutcome(success=False, error=e.to_detail())
        return VerifyOutcome(success=True, result=result)

    async def confirm(
        self,
        provider: ProviderName | str,
        reference: str,
        order_id: str,
        order_key: str | None,
        require_order_key: bool = True,
    ) -> VerifyOutcome:
        """
        Проверить оплату после возврата покупателя или webhook и записать итог в заказ.

        Заказ определяется только по order_id/order_key из URL возврата; суммы и
        статусы из запроса не используются, источник истины - ответ шлюза.
        require_order_key=False - для webhook с проверенной подписью, где ключа может не быть.
        """
        try:
            if not order_id or not reference or (require_order_key and not order_key):
                raise ValidationError(
                    "missing_params",
                    "Missing required parameters: order_id, order_key, payment reference",
                )
            if self.order_service is None:
                raise ConfigurationError("order_store_unavailable", "Commerce order backend is not configured")

            order = await self.order_service.get_order(order_id)
            if order is None:
                raise ValidationError("order_not_found", f"Order {order_id} not found", http_status=404)
            if order_key and order.order_key != order_key:
                logger.warning(f"⚠️ Order key mismatch for order {order_id}")
                raise ValidationError("order_mismatch", "Order key does not match")

            result = await self._verify(provider, reference)
            if result.order_id and result.order_id != order.id:
                logger.warning(
                    f"⚠️ Payment {reference} belongs to order {result.order_id}, not {order.id}"
                )
                raise ValidationError("order_mismatch", "Payment does not belong to this order")
            result.order_id = order.id

            updated = False
            if result.state == PaymentState.PENDING:
                logger.info(f"Payment for order {order.id} is pending, nothing to record")
            elif order.is_paid:
                logger.info(
                    f"ℹ️ Order {order.id} is already paid ({order.status}), "
                    f"ignoring {result.status.status} result"
                )
            elif result.state == PaymentState.FAILED and not order.accepts_failure:
                logger.warning(
                    f"⚠️ Order {order.id} is {order.status}, not recording failed payment {reference}"
                )
            else:
                extra_meta = _myfatoorah_payment_meta(result.raw) if result.provider == ProviderName.MYFATOORAH else None
                updated = await self.order_service.record_settlement(order.id, result.to_report(), extra_meta)
        except PaymentError as e:
            logger.error(f"❌ Payment confirmation failed for order {order_id}: {e.code}: {e.message}")
            return VerifyOutcome(success=False, error=e.to_detail())

        return VerifyOutcome(success=True, result=result, order_updated=updated)

    async def fetch_session(self, provider: ProviderName | str, session_id: str) -> dict[str, Any]:
        """Сырые данные сессии шлюза. Ошибки пробрасываются как PaymentError."""
        adapter = self.get_provider(provider)
        if not session_id:
            raise ValidationError("missing_session_id", "Session ID is required")
        adapter.ensure_configured()
        return await adapter.fetch_session(session_id)

    async def fetch_customer(self, reference: str) -> dict[str, Any]:
        """Покупатель MyFatoorah с сохраненными картами. Ошибки пробрасываются как PaymentError."""
        if not reference:
            raise ValidationError("missing_params", "Missing required parameter: reference")
        return await self._card_provider().fetch_customer(reference)

    def gateways(self) -> list[dict[str, Any]]:
        """Список шлюзов для страницы оформления заказа."""
        result = []
        for name, adapter in self.providers.items():
            title, description = PROVIDER_TITLES.get(name, (name.value, ""))
            result.append(
                {
                    "id": name.value,
                    "title": title,
                    "description": description,
                    "enabled": adapter.is_configured,
                    "test_mode": bool(getattr(adapter, "test_mode", False)),
                }
            )
        return result

    async def refund(
        self,
        amount: Decimal,
        payment_id: str | None = None,
        invoice_id: str | None = None,
        comment: str | None = None,
        service_charge_on_customer: bool = False,
        order_id: str | None = None,
        restock_items: bool = True,
    ) -> RefundResult:
        """
        Возврат оплаты картой (MyFatoorah).

        При переданном order_id возврат дублируется в магазин.

        Raises:
            PaymentError: при отказе или недоступности шлюза
        """
        if not payment_id and not invoice_id:
            raise ValidationError("missing_key", "Either payment_id or invoice_id is required")
        if amount is None or amount <= 0:
            raise ValidationError("invalid_amount", "Amount must be greater than 0")

        adapter = self._card_provider()
        key_type = "PaymentId" if payment_id else "InvoiceId"
        refund = await adapter.refund(
            payment_id or invoice_id,
            amount,
            comment=comment,
            key_type=key_type,
            service_charge_on_customer=service_charge_on_customer,
        )
        logger.info(f"✅ MyFatoorah refund submitted: {refund.refund_id} ({refund.refund_reference})")

        if order_id and refund.refund_id and self.order_service is not None:
            refund.commerce_refund_id = await self.order_service.create_refund(
                order_id,
                refund.amount or amount,
                comment or f"MyFatoorah Refund #{refund.refund_reference}",
                restock_items=restock_items,
            )
            refund.order_updated = await self.order_service.record_refund(order_id, refund)
        return refund

    async def refund_status(
        self,
        refund_id: str | None = None,
        refund_reference: str | None = None,
        invoice_id: str | None = None,
    ) -> list[RefundResult]:
        if refund_id:
            key_type, key = "RefundId", refund_id
        elif refund_reference:
            key_type, key = "RefundReference", refund_reference
        elif invoice_id:
            key_type, key = "InvoiceId", invoice_id
        else:
            raise ValidationError("missing_key", "Either refund_id, refund_reference, or invoice_id is required")
        return await self._card_provider().refund_status(key, key_type)

    async def sync_card_orders(
        self,
        order_ids: list[str] | None = None,
        payment_ids: list[str] | None = None,
    ) -> list[OrderSyncResult]:
        """
        Сверить неоплаченные заказы со статусом оплат в MyFatoorah.

        Заказ переводится в processing, только если шлюз подтвердил оплату.
        Ошибка по одному заказу не прерывает обработку остальных.
        """
        if not order_ids and not payment_ids:
            raise ValidationError("missing_params", "Either order_ids or payment_ids array is required")
        if self.order_service is None:
            raise ConfigurationError("order_store_unavailable", "Commerce order backend is not configured")
        adapter = self._card_provider()

        results = []
        for payment_id in payment_ids or []:
            try:
                raw = await adapter.fetch_payment(str(payment_id))
            except PaymentError as e:
                results.append(
                    OrderSyncResult(order_id="", payment_status="not_found", message=e.message)
                )
                continue
            result = normalize_response(ProviderName.MYFATOORAH, str(payment_id), raw)
            if not result.order_id:
                results.append(
                    OrderSyncResult(
                        order_id="",
                        payment_status=result.status.status,
                        message=f"Could not extract order ID from payment {payment_id}",
                    )
                )
                continue
            results.append(await self._sync_order(result.order_id, result))

        for order_id in order_ids or []:
            results.append(await self._sync_order(str(order_id)))

        synced = sum(1 for r in results if r.synced)
        logger.info(f"Synced {synced} of {len(results)} orders")
        return results

    async def _sync_order(self, order_id: str, result: VerificationResult | None = None) -> OrderSyncResult:
        try:
            order = await self.order_service.get_order(order_id)
            if order is None:
                return OrderSyncResult(order_id=order_id, message="Order not found in commerce backend")
            previous_status = order.status
            if not order.is_pending:
                return OrderSyncResult(
                    order_id=order_id,
                    previous_status=previous_status,
                    new_status=previous_status,
                    message=f"Order status is already '{previous_status}', skipping",
                )

            if result is None:
                try:
                    raw = await self.providers[ProviderName.MYFATOORAH].find_by_customer_reference(f"WC-{order_id}")
                except PaymentError:
                    return OrderSyncResult(
                        order_id=order_id,
                        previous_status=previous_status,
                        new_status=previous_status,
                        payment_status="not_found",
                        message="No payment found in MyFatoorah for this order",
                    )
                result = normalize_response(ProviderName.MYFATOORAH, f"WC-{order_id}", raw)

            if result.state != PaymentState.SUCCESS:
                return OrderSyncResult(
                    order_id=order_id,
                    previous_status=previous_status,
                    new_status=previous_status,
                    payment_status=result.status.status,
                    transaction_id=result.transaction_id,
                    message=f"Payment status is '{result.status.status}', order not updated",
                )

            updated = await self.order_service.record_settlement(
                order_id, result.to_report(), _myfatoorah_payment_meta(result.raw)
            )
        except PaymentError as e:
            logger.error(f"❌ Order {order_id} sync failed: {e.code}: {e.message}")
            return OrderSyncResult(order_id=order_id, message=e.message)

        if not updated:
            return OrderSyncResult(
                order_id=order_id,
                previous_status=previous_status,
                new_status=previous_status,
                payment_status=result.status.status,
                transaction_id=result.transaction_id,
                message="Payment was successful but failed to update commerce order",
            )
        return OrderSyncResult(
            order_id=order_id,
            previous_status=previous_status,
            new_status="processing",
            payment_status=result.status.status,
            transaction_id=result.transaction_id,
            synced=True,
            message="Order updated to processing",
        )
