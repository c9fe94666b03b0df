import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel

from storefront.domain.models import (
    CartItem, CustomerData, PaymentMethod, PendingOrder, PendingOrderStatus, items_total, to_money
)
from storefront.domain.exceptions import MissingFieldError, PendingOrderConsumedError, TotalMismatchError

logger = logging.getLogger(__name__)


class StagePendingOrderDTO(BaseModel):
    order_id: Optional[str] = None
    customer_data: Optional[CustomerData] = None
    items: Optional[list[CartItem]] = None
    total_amount: Optional[Decimal] = None
    payment_method: PaymentMethod = PaymentMethod.ONLINE


class StagePendingOrderUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, dto: StagePendingOrderDTO) -> PendingOrder:
        missing = []
        if not dto.order_id:
            missing.append("orderId")
        if dto.customer_data is None:
            missing.append("customerData")
        if not dto.items:
            missing.append("items")
        if dto.total_amount is None:
            missing.append("totalAmount")
        if missing:
            raise MissingFieldError(missing)

        expected = items_total(dto.items)
        if expected != to_money(dto.total_amount):
            raise TotalMismatchError(expected, to_money(dto.total_amount))

        async with self._uow() as uow:
            existing = await uow.pending_orders.get_by_id(dto.order_id)
            if existing and existing.status == PendingOrderStatus.CONSUMED:
                raise PendingOrderConsumedError(dto.order_id)
            if await uow.orders.get_by_id(dto.order_id):
                raise PendingOrderConsumedError(dto.order_id)

            pending = PendingOrder(
                id=dto.order_id,
                customer_data=dto.customer_data,
                items=dto.items,
                total_amount=expected,
                payment_method=dto.payment_method,
                created_at=existing.created_at if existing else datetime.now(timezone.utc)
            )
            await uow.pending_orders.save(pending)
            await uow.commit()

        logger.info(f"Pending-заказ {pending.id} сохранён: {len(pending.items)} позиций на {pending.total_amount}")
        return pending
