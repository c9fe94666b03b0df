import logging
from typing import Optional

from storefront.domain.models import CartClearingEvent
from storefront.domain.exceptions import DomainException, MissingOrderIdError

logger = logging.getLogger(__name__)


class ClearCartUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: Optional[str]) -> CartClearingEvent:
        if not order_id:
            raise MissingOrderIdError()
        async with self._uow() as uow:
            event = await uow.cart_events.create(order_id)
            await uow.commit()
        logger.info(f"Событие очистки корзины для заказа {order_id}")
        return event


class CheckCartClearingUseCase:
    """Опрос клиентом: нужно ли очистить корзину. Ошибки дают False."""

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: Optional[str]) -> Optional[CartClearingEvent]:
        if not order_id:
            raise MissingOrderIdError()
        try:
            async with self._uow() as uow:
                return await uow.cart_events.get_by_order_id(order_id)
        except DomainException as e:
            logger.warning(f"Не удалось проверить очистку корзины для {order_id}: {e}")
            return None
