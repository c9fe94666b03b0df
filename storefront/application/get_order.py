from typing import Optional

from storefront.domain.models import Category, Order, OrderStats, OrderStatus, build_category_tree
from storefront.domain.exceptions import OrderNotFoundError


class GetOrderUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: str) -> Order:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            if not order:
                raise OrderNotFoundError(f"Заказ {order_id} не найден")
            return order


class ListOrdersUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, status: Optional[OrderStatus] = None) -> list[Order]:
        async with self._uow() as uow:
            if status is not None:
                return await uow.orders.get_by_status(status)
            return await uow.orders.get_all()


class GetOrderStatsUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self) -> OrderStats:
        async with self._uow() as uow:
            return await uow.orders.get_stats()


class GetCategoryTreeUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self) -> list[Category]:
        async with self._uow() as uow:
            categories = await uow.categories.get_all()
        return build_category_tree(categories)
