import logging
from typing import Optional

from storefront.domain.models import Order, OrderStatus, PaymentStatus
from storefront.domain.exceptions import OrderNotFoundError, ValidationError
from storefront.application.notifications import enqueue_status_update

logger = logging.getLogger(__name__)


class UpdateOrderStatusUseCase:
    """Ручная смена статуса из админки; покупатель получает письмо о новом статусе"""

    def __init__(self, unit_of_work, outbox_processor=None):
        self._uow = unit_of_work
        self._outbox = outbox_processor

    async def __call__(self, order_id: str, status: OrderStatus,
                       payment_status: Optional[PaymentStatus] = None) -> Order:
        async with self._uow() as uow:
            order = await uow.orders.lock(order_id)
            if not order:
                raise OrderNotFoundError(f"Заказ {order_id} не найден")
            if not order.can_transition_to(status):
                raise ValidationError(
                    f"Нельзя перевести заказ {order_id} из {order.status.value} в {status.value}"
                )
            updated = await uow.orders.update_status(order_id, status, payment_status)
            notify = updated.status != order.status
            if notify:
                notify = await enqueue_status_update(uow, updated) is not None
            await uow.commit()

        logger.info(f"Статус заказа {order_id} изменён: {order.status.value} -> {status.value}")
        if notify and self._outbox is not None:
            await self._outbox.dispatch_for_order(order_id)
        return updated
