import logging
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel

from storefront.domain.models import CallbackResult, OrderStatus, PaymentStatus, provider_outcome
from storefront.domain.exceptions import (
    ConcurrentUpdateError, ConfigurationError, MissingFieldError, MissingOrderIdError, SignatureMismatchError
)
from storefront.application.notifications import enqueue_order_emails
from storefront.infrastructure import liqpay

logger = logging.getLogger(__name__)


class PaymentCallbackDTO(BaseModel):
    data: Optional[str] = None
    signature: Optional[str] = None


class ProcessPaymentCallbackUseCase:
    """Webhook LiqPay: проверка подписи и перевод заказа по статусам.

    Все изменения по одному callback (заказ, позиции, событие очистки корзины,
    письма в outbox) пишутся одной транзакцией. Письма уходят после commit.
    """

    def __init__(self, unit_of_work, private_key: str, outbox_processor=None):
        self._uow = unit_of_work
        self._private_key = private_key
        self._outbox = outbox_processor

    async def __call__(self, dto: PaymentCallbackDTO) -> CallbackResult:
        missing = [name for name in ("data", "signature") if not getattr(dto, name)]
        if missing:
            raise MissingFieldError(missing)
        if not self._private_key:
            logger.error("LiqPay private key не настроен, callback не может быть проверен")
            raise ConfigurationError("Payment configuration error")

        if not liqpay.verify_signature(self._private_key, dto.data, dto.signature):
            logger.warning("Callback с неверной подписью отклонён")
            raise SignatureMismatchError()

        payload = liqpay.decode_data(dto.data)
        order_id = str(payload.get("order_id") or "").strip()
        if not order_id:
            raise MissingOrderIdError()

        provider_status = str(payload.get("status") or "").lower()
        payment_id = payload.get("payment_id") or payload.get("transaction_id")
        payment_id = str(payment_id) if payment_id else None
        logger.info(
            f"Callback LiqPay: заказ {order_id}, статус {provider_status}, "
            f"сумма {payload.get('amount')} {payload.get('currency')}"
        )

        outcome = provider_outcome(provider_status)
        if outcome is None:
            logger.info(f"Промежуточный статус {provider_status} для заказа {order_id}, заказ не меняется")
            return CallbackResult(order_id=order_id, action="ignored")

        status, payment_status = outcome
        try:
            result = await self._apply(order_id, status, payment_status, payment_id, provider_status)
        except ConcurrentUpdateError:
            logger.info(f"Заказ {order_id} уже обработан параллельным callback")
            return CallbackResult(order_id=order_id, action="duplicate")

        if result.action in ("created", "updated") and self._outbox is not None:
            await self._outbox.dispatch_for_order(order_id)
        return result

    async def _apply(self, order_id: str, status: OrderStatus, payment_status: PaymentStatus,
                     payment_id: Optional[str], provider_status: str) -> CallbackResult:
        async with self._uow() as uow:
            order = await uow.orders.lock(order_id)

            if order is None:
                if status != OrderStatus.PAID:
                    await uow.pending_orders.mark_as_failed(order_id)
                    await uow.commit()
                    logger.info(f"Оплата заказа {order_id} не прошла ({provider_status})")
                    return CallbackResult(order_id=order_id, action="ignored")

                pending = await uow.pending_orders.claim(order_id)
                if pending is not None:
                    new_order = pending.to_order(status, payment_status, payment_id, datetime.now(timezone.utc))
                    await uow.orders.create(new_order)
                    await uow.cart_events.create(order_id)
                    await enqueue_order_emails(uow, new_order)
                    await uow.commit()
                    logger.info(f"Заказ {order_id} создан после оплаты: {len(new_order.items)} позиций")
                    return CallbackResult(order_id=order_id, action="created", order_status=new_order.status)

                # Снапшот мог забрать параллельный create-order-after-payment
                order = await uow.orders.lock(order_id)
                if order is None:
                    if await uow.pending_orders.get_by_id(order_id):
                        logger.info(f"Pending-заказ {order_id} уже использован")
                        return CallbackResult(order_id=order_id, action="duplicate")
                    logger.error(f"Заказ {order_id} не найден: нет pending-данных, заказ не создан")
                    return CallbackResult(order_id=order_id, action="not_found")

            reversal = provider_status == "reversed"
            if order.is_paid() and status == OrderStatus.PAID:
                logger.info(f"Заказ {order_id} уже оплачен")
                return CallbackResult(order_id=order_id, action="duplicate", order_status=order.status)
            if order.is_paid() and not reversal:
                logger.warning(f"Поздний статус {provider_status} для оплаченного заказа {order_id} проигнорирован")
                return CallbackResult(order_id=order_id, action="ignored", order_status=order.status)
            if order.status == status and order.payment_status == payment_status:
                return CallbackResult(order_id=order_id, action="duplicate", order_status=order.status)
            if not order.can_transition_to(status):
                logger.warning(f"Переход {order.status.value} -> {status.value} для заказа {order_id} запрещён")
                return CallbackResult(order_id=order_id, action="ignored", order_status=order.status)

            updated = await uow.orders.update_status(order_id, status, payment_status, payment_id)
            if status == OrderStatus.PAID:
                await uow.cart_events.create(order_id)
                await enqueue_order_emails(uow, updated)
            await uow.commit()
            logger.info(f"Заказ {order_id}: {order.status.value} -> {status.value}")
            return CallbackResult(order_id=order_id, action="updated", order_status=updated.status)
