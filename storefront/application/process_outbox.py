import logging
from typing import Optional

from storefront.domain.exceptions import ConfigurationError, NotificationError

logger = logging.getLogger(__name__)


class ProcessOutboxEventsUseCase:
    def __init__(self, unit_of_work, dispatcher, max_attempts: int = 5, visibility_timeout: float = 300):
        self._uow = unit_of_work
        self._handlers = dispatcher.handlers()
        self._max_attempts = max_attempts
        self._visibility_timeout = visibility_timeout

    async def __call__(self, limit: int = 10, order_id: Optional[str] = None) -> int:
        """Обрабатывает pending события из outbox. Возвращает количество отправленных."""
        async with self._uow() as uow:
            pending = await uow.outbox.get_pending(
                limit=limit, order_id=order_id, visibility_timeout=self._visibility_timeout
            )

        published = 0
        for event in pending:
            if await self._process(event):
                published += 1
        return published

    async def dispatch_for_order(self, order_id: str) -> int:
        """Немедленная отправка после commit; при сбое событие дождётся outbox worker"""
        try:
            return await self(order_id=order_id)
        except Exception as e:
            logger.error(f"Отправка писем для заказа {order_id} отложена: {e}", exc_info=True)
            return 0

    async def _process(self, event: dict) -> bool:
        # Захват события: pending -> processing, чтобы письмо не ушло дважды
        async with self._uow() as uow:
            claimed = await uow.outbox.claim(event["id"], visibility_timeout=self._visibility_timeout)
            order = await uow.orders.get_by_id(event["order_id"]) if claimed else None
            await uow.commit()

        if not claimed:
            logger.info(f"Outbox event {event['id']} уже обрабатывается")
            return False

        error = None
        handler = self._handlers.get(event["event_type"])
        if order is None:
            error = f"Заказ {event['order_id']} не найден"
        elif handler is None:
            error = f"Неизвестный тип события {event['event_type']}"
        else:
            try:
                await handler(order)
            except (NotificationError, ConfigurationError) as e:
                error = str(e)
            except Exception as e:
                logger.error(f"Обработчик {event['event_type']} упал на заказе {order.id}", exc_info=True)
                error = f"{type(e).__name__}: {e}"

        async with self._uow() as uow:
            if error is None:
                await uow.outbox.mark_as_published(event["id"])
                logger.info(f"Outbox event {event['event_type']} для заказа {event['order_id']} отправлен")
            else:
                logger.error(f"Ошибка обработки outbox event {event['id']}: {error}")
                await uow.outbox.mark_as_retry(event["id"], error, self._max_attempts)
            await uow.commit()
        return error is None
