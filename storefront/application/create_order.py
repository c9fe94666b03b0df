import logging
import random
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel

from storefront.domain.models import (
    CartItem, CustomerData, Order, OrderStatus, PaymentMethod, PaymentStatus, PendingOrder,
    items_total, to_money
)
from storefront.domain.exceptions import ConcurrentUpdateError, MissingFieldError, TotalMismatchError
from storefront.application.notifications import enqueue_order_emails

logger = logging.getLogger(__name__)


def generate_order_number(now: Optional[datetime] = None) -> str:
    """Формат: ORD-YYYYMMDD-HHMMSS-XXXX"""
    now = now or datetime.now(timezone.utc)
    return f"ORD-{now:%Y%m%d-%H%M%S}-{random.randint(0, 9999):04d}"


class CreateOrderDTO(BaseModel):
    order_id: Optional[str] = None
    customer_data: Optional[CustomerData] = None
    items: Optional[list[CartItem]] = None
    total_amount: Optional[Decimal] = None
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY


class CreateOrderUseCase:
    def __init__(self, unit_of_work, outbox_processor=None):
        self._uow = unit_of_work
        self._outbox = outbox_processor

    async def __call__(self, dto: CreateOrderDTO) -> Order:
        order_id = dto.order_id or generate_order_number()
        logger.info(f"Создание заказа {order_id} ({dto.payment_method.value})")

        try:
            order, created = await self._create(order_id, dto)
        except ConcurrentUpdateError:
            # Заказ с тем же id успел создать параллельный запрос
            async with self._uow() as uow:
                order = await uow.orders.get_by_id(order_id)
            if order is None:
                raise
            created = False

        if not created:
            logger.info(f"Заказ уже существует: {order_id}")
        elif order.payment_method == PaymentMethod.CASH_ON_DELIVERY and self._outbox is not None:
            await self._outbox.dispatch_for_order(order_id)
        return order

    async def _create(self, order_id: str, dto: CreateOrderDTO) -> tuple[Order, bool]:
        async with self._uow() as uow:
            existing = await uow.orders.get_by_id(order_id)
            if existing:
                return existing, False

            # Снимок корзины, если он был, больше не может быть превращён в заказ
            pending = await uow.pending_orders.claim(order_id)
            customer = dto.customer_data or (pending.customer_data if pending else None)
            items = dto.items or (pending.items if pending else None)
            total = dto.total_amount if dto.total_amount is not None else (
                pending.total_amount if pending else None
            )

            missing = [
                name for name, value in
                (("customerData", customer), ("items", items), ("totalAmount", total))
                if value in (None, [])
            ]
            if missing:
                raise MissingFieldError(missing)

            expected = items_total(items)
            if expected != to_money(total):
                raise TotalMismatchError(expected, to_money(total))

            cash = dto.payment_method == PaymentMethod.CASH_ON_DELIVERY
            now = datetime.now(timezone.utc)
            snapshot = PendingOrder(
                id=order_id,
                customer_data=customer,
                items=items,
                total_amount=expected,
                payment_method=dto.payment_method,
                created_at=now
            )
            order = snapshot.to_order(
                status=OrderStatus.PENDING if cash else OrderStatus.PENDING_PAYMENT,
                payment_status=PaymentStatus.PENDING,
                payment_id=None,
                now=now
            )
            await uow.orders.create(order)
            if cash:
                await enqueue_order_emails(uow, order)
            await uow.commit()

        logger.info(f"Заказ создан: {order.id} на {order.total_amount}")
        return order, True
