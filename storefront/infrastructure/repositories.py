import uuid
from typing import Optional, List
from datetime import datetime, timedelta, timezone
from sqlalchemy import select, insert, update, func, case, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.domain.models import (
    Order, OrderItem, OrderStatus, PaymentStatus, PaymentMethod, PendingOrder, PendingOrderStatus,
    CustomerData, CartItem, CartClearingEvent, Category, OrderStats, to_money
)
from storefront.infrastructure.db_schema import (
    orders_tbl, order_items_tbl, products_tbl, categories_tbl, pending_orders_tbl,
    cart_clearing_events_tbl, outbox_events_tbl
)
from storefront.application.interfaces import (
    OrderRepository, PendingOrderRepository, CartClearingRepository, OutboxRepository, CategoryRepository
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SQLAlchemyOrderRepository(OrderRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    def _select_with_items(self):
        """Заказ + позиции + картинка и категория товара одним запросом"""
        joined = (
            orders_tbl
            .outerjoin(order_items_tbl, order_items_tbl.c.order_id == orders_tbl.c.id)
            .outerjoin(products_tbl, products_tbl.c.id == order_items_tbl.c.product_id)
            .outerjoin(categories_tbl, categories_tbl.c.id == products_tbl.c.category_id)
        )
        return (
            select(
                orders_tbl,
                order_items_tbl.c.id.label("item_id"),
                order_items_tbl.c.product_id.label("item_product_id"),
                order_items_tbl.c.product_name.label("item_product_name"),
                order_items_tbl.c.quantity.label("item_quantity"),
                order_items_tbl.c.unit_price.label("item_unit_price"),
                order_items_tbl.c.image_url.label("item_image_url"),
                products_tbl.c.image_url.label("product_image_url"),
                categories_tbl.c.name.label("category_name"),
            )
            .select_from(joined)
        )

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self._session.execute(
            self._select_with_items()
            .where(orders_tbl.c.id == order_id)
            .order_by(order_items_tbl.c.id.asc())
        )
        orders = self._to_domain(result.fetchall())
        return orders[0] if orders else None

    async def lock(self, order_id: str) -> Optional[Order]:
        """SELECT ... FOR UPDATE по заказу (сериализация по order_id)"""
        result = await self._session.execute(
            select(orders_tbl.c.id).where(orders_tbl.c.id == order_id).with_for_update()
        )
        if result.fetchone() is None:
            return None
        return await self.get_by_id(order_id)

    async def get_by_status(self, status: OrderStatus) -> List[Order]:
        result = await self._session.execute(
            self._select_with_items()
            .where(orders_tbl.c.status == status)
            .order_by(orders_tbl.c.created_at.desc(), order_items_tbl.c.id.asc())
        )
        return self._to_domain(result.fetchall())

    async def get_all(self) -> List[Order]:
        result = await self._session.execute(
            self._select_with_items()
            .order_by(orders_tbl.c.created_at.desc(), order_items_tbl.c.id.asc())
        )
        return self._to_domain(result.fetchall())

    async def create(self, order: Order) -> None:
        """Заказ и позиции пишутся в транзакции вызывающего (commit делает UoW)"""
        await self._session.execute(
            insert(orders_tbl).values(
                id=order.id,
                customer_name=order.customer_name,
                customer_email=order.customer_email,
                customer_phone=order.customer_phone,
                city=order.city,
                branch=order.branch,
                payment_method=order.payment_method,
                total_amount=order.total_amount,
                status=order.status,
                payment_status=order.payment_status,
                payment_id=order.payment_id,
                created_at=order.created_at,
                updated_at=order.updated_at
            )
        )
        if order.items:
            await self._session.execute(
                insert(order_items_tbl),
                [
                    {
                        "order_id": order.id,
                        "product_id": item.product_id,
                        "product_name": item.product_name,
                        "quantity": item.quantity,
                        "unit_price": item.unit_price,
                        "image_url": item.image_url,
                        "created_at": order.created_at,
                    }
                    for item in order.items
                ]
            )

    async def update_status(self, order_id: str, status: OrderStatus,
                            payment_status: Optional[PaymentStatus] = None,
                            payment_id: Optional[str] = None) -> Optional[Order]:
        values = {"status": status, "updated_at": _now()}
        if payment_status is not None:
            values["payment_status"] = payment_status
        if payment_id:
            values["payment_id"] = payment_id
        result = await self._session.execute(
            update(orders_tbl).where(orders_tbl.c.id == order_id).values(**values)
        )
        if result.rowcount == 0:
            return None
        return await self.get_by_id(order_id)

    async def get_stats(self) -> OrderStats:
        result = await self._session.execute(
            select(orders_tbl.c.status, func.count(orders_tbl.c.id)).group_by(orders_tbl.c.status)
        )
        by_status = {status.value: 0 for status in OrderStatus}
        for row in result.fetchall():
            by_status[OrderStatus(row[0]).value] = row[1]

        revenue = await self._session.scalar(
            select(func.coalesce(func.sum(orders_tbl.c.total_amount), 0))
            .where(orders_tbl.c.status == OrderStatus.DELIVERED)
        )
        return OrderStats(
            total_orders=sum(by_status.values()),
            by_status=by_status,
            total_revenue=to_money(revenue or 0)
        )

    def _to_domain(self, rows) -> List[Order]:
        """Трансформация DB → Domain (строки join сворачиваются в заказы)"""
        orders: dict[str, Order] = {}
        for row in rows:
            order = orders.get(row.id)
            if order is None:
                order = Order(
                    id=row.id,
                    customer_name=row.customer_name,
                    customer_email=row.customer_email,
                    customer_phone=row.customer_phone,
                    city=row.city,
                    branch=row.branch,
                    payment_method=PaymentMethod(row.payment_method),
                    total_amount=to_money(row.total_amount),
                    status=OrderStatus(row.status),
                    payment_status=PaymentStatus(row.payment_status),
                    payment_id=row.payment_id,
                    items=[],
                    created_at=row.created_at,
                    updated_at=row.updated_at
                )
                orders[row.id] = order
            if row.item_id is not None:
                order.items.append(OrderItem(
                    id=row.item_id,
                    order_id=row.id,
                    product_id=row.item_product_id,
                    product_name=row.item_product_name,
                    quantity=row.item_quantity,
                    unit_price=to_money(row.item_unit_price),
                    image_url=row.item_image_url or row.product_image_url,
                    category_name=row.category_name
                ))
        return list(orders.values())


class SQLAlchemyPendingOrderRepository(PendingOrderRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, order_id: str) -> Optional[PendingOrder]:
        result = await self._session.execute(
            select(pending_orders_tbl).where(pending_orders_tbl.c.id == order_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def save(self, pending: PendingOrder) -> None:
        values = {
            "customer_data": pending.customer_data.model_dump(mode="json"),
            "items": [item.model_dump(mode="json") for item in pending.items],
            "total_amount": pending.total_amount,
            "payment_method": pending.payment_method,
            "status": pending.status,
        }
        result = await self._session.execute(
            update(pending_orders_tbl)
            .where(pending_orders_tbl.c.id == pending.id)
            .values(**values)
        )
        if result.rowcount == 0:
            await self._session.execute(
                insert(pending_orders_tbl).values(id=pending.id, created_at=pending.created_at, **values)
            )

    async def claim(self, order_id: str) -> Optional[PendingOrder]:
        """Атомарно забирает снимок: pending|failed -> consumed ровно один раз"""
        result = await self._session.execute(
            update(pending_orders_tbl)
            .where(
                pending_orders_tbl.c.id == order_id,
                pending_orders_tbl.c.status.in_([PendingOrderStatus.PENDING, PendingOrderStatus.FAILED])
            )
            .values(status=PendingOrderStatus.CONSUMED)
        )
        if result.rowcount != 1:
            return None
        return await self.get_by_id(order_id)

    async def mark_as_failed(self, order_id: str) -> None:
        await self._session.execute(
            update(pending_orders_tbl)
            .where(
                pending_orders_tbl.c.id == order_id,
                pending_orders_tbl.c.status == PendingOrderStatus.PENDING
            )
            .values(status=PendingOrderStatus.FAILED)
        )

    def _to_domain(self, row) -> PendingOrder:
        return PendingOrder(
            id=row.id,
            customer_data=CustomerData(**row.customer_data),
            items=[CartItem(**item) for item in row.items],
            total_amount=to_money(row.total_amount),
            payment_method=PaymentMethod(row.payment_method),
            status=PendingOrderStatus(row.status),
            created_at=row.created_at
        )


class SQLAlchemyCartClearingRepository(CartClearingRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, order_id: str) -> CartClearingEvent:
        created_at = _now()
        result = await self._session.execute(
            insert(cart_clearing_events_tbl).values(order_id=order_id, created_at=created_at)
        )
        return CartClearingEvent(id=result.inserted_primary_key[0], order_id=order_id, created_at=created_at)

    async def get_by_order_id(self, order_id: str) -> Optional[CartClearingEvent]:
        result = await self._session.execute(
            select(cart_clearing_events_tbl)
            .where(cart_clearing_events_tbl.c.order_id == order_id)
            .order_by(cart_clearing_events_tbl.c.id.asc())
            .limit(1)
        )
        row = result.fetchone()
        if row is None:
            return None
        return CartClearingEvent(id=row.id, order_id=row.order_id, created_at=row.created_at)


class SQLAlchemyOutboxRepository(OutboxRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, event_type: str, event_data: dict, order_id: str, idempotency_key: str) -> Optional[str]:
        existing = await self._session.scalar(
            select(outbox_events_tbl.c.id).where(outbox_events_tbl.c.idempotency_key == idempotency_key)
        )
        if existing:
            return None
        event_id = str(uuid.uuid4())
        await self._session.execute(
            insert(outbox_events_tbl).values(
                id=event_id,
                event_type=event_type,
                event_data=event_data,
                order_id=order_id,
                idempotency_key=idempotency_key,
                status="pending",
                attempts=0,
                created_at=_now()
            )
        )
        return event_id

    @staticmethod
    def _claimable(visibility_timeout: float):
        # processing без продвижения дольше таймаута: обработчик упал, событие можно забрать снова
        cutoff = _now() - timedelta(seconds=visibility_timeout)
        return or_(
            outbox_events_tbl.c.status == "pending",
            and_(outbox_events_tbl.c.status == "processing", outbox_events_tbl.c.locked_at < cutoff)
        )

    async def get_pending(self, limit: int = 10, order_id: Optional[str] = None,
                          visibility_timeout: float = 300) -> List[dict]:
        query = select(outbox_events_tbl).where(self._claimable(visibility_timeout))
        if order_id is not None:
            query = query.where(outbox_events_tbl.c.order_id == order_id)
        result = await self._session.execute(
            query.order_by(outbox_events_tbl.c.created_at.asc()).limit(limit)
        )
        return [
            {
                "id": row.id,
                "event_type": row.event_type,
                "event_data": row.event_data,
                "order_id": row.order_id,
                "attempts": row.attempts
            }
            for row in result.fetchall()
        ]

    async def claim(self, event_id: str, visibility_timeout: float = 300) -> bool:
        result = await self._session.execute(
            update(outbox_events_tbl)
            .where(outbox_events_tbl.c.id == event_id, self._claimable(visibility_timeout))
            .values(status="processing", attempts=outbox_events_tbl.c.attempts + 1, locked_at=_now())
        )
        return result.rowcount == 1

    async def mark_as_published(self, event_id: str) -> None:
        await self._session.execute(
            update(outbox_events_tbl)
            .where(outbox_events_tbl.c.id == event_id)
            .values(status="published", published_at=_now(), last_error=None)
        )

    async def mark_as_retry(self, event_id: str, error: str, max_attempts: int) -> None:
        await self._session.execute(
            update(outbox_events_tbl)
            .where(outbox_events_tbl.c.id == event_id)
            .values(
                status=case((outbox_events_tbl.c.attempts >= max_attempts, "failed"), else_="pending"),
                last_error=error[:500]
            )
        )


class SQLAlchemyCategoryRepository(CategoryRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_all(self) -> List[Category]:
        result = await self._session.execute(
            select(categories_tbl).order_by(categories_tbl.c.name.asc())
        )
        return [Category(id=row.id, name=row.name, parent_id=row.parent_id) for row in result.fetchall()]
