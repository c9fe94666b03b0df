from abc import ABC, abstractmethod
from typing import Optional, List
from storefront.domain.models import (
    Order, OrderStatus, PaymentStatus, PendingOrder, CartClearingEvent, Category, OrderStats
)


class OrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def lock(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_status(self, status: OrderStatus) -> List[Order]:
        pass

    @abstractmethod
    async def get_all(self) -> List[Order]:
        pass

    @abstractmethod
    async def create(self, order: Order) -> None:
        pass

    @abstractmethod
    async def update_status(self, order_id: str, status: OrderStatus,
                            payment_status: Optional[PaymentStatus] = None,
                            payment_id: Optional[str] = None) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_stats(self) -> OrderStats:
        pass


class PendingOrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[PendingOrder]:
        pass

    @abstractmethod
    async def save(self, pending: PendingOrder) -> None:
        pass

    @abstractmethod
    async def claim(self, order_id: str) -> Optional[PendingOrder]:
        pass

    @abstractmethod
    async def mark_as_failed(self, order_id: str) -> None:
        pass


class CartClearingRepository(ABC):
    @abstractmethod
    async def create(self, order_id: str) -> CartClearingEvent:
        pass

    @abstractmethod
    async def get_by_order_id(self, order_id: str) -> Optional[CartClearingEvent]:
        pass


class OutboxRepository(ABC):
    @abstractmethod
    async def create(self, event_type: str, event_data: dict, order_id: str, idempotency_key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def get_pending(self, limit: int = 10, order_id: Optional[str] = None,
                          visibility_timeout: float = 300) -> List[dict]:
        pass

    @abstractmethod
    async def claim(self, event_id: str, visibility_timeout: float = 300) -> bool:
        pass

    @abstractmethod
    async def mark_as_published(self, event_id: str) -> None:
        pass

    @abstractmethod
    async def mark_as_retry(self, event_id: str, error: str, max_attempts: int) -> None:
        pass


class CategoryRepository(ABC):
    @abstractmethod
    async def get_all(self) -> List[Category]:
        pass


class UnitOfWork(ABC):
    @property
    @abstractmethod
    def orders(self) -> OrderRepository:
        pass

    @property
    @abstractmethod
    def pending_orders(self) -> PendingOrderRepository:
        pass

    @property
    @abstractmethod
    def cart_events(self) -> CartClearingRepository:
        pass

    @property
    @abstractmethod
    def outbox(self) -> OutboxRepository:
        pass

    @property
    @abstractmethod
    def categories(self) -> CategoryRepository:
        pass

    @abstractmethod
    async def __call__(self):
        pass

    @abstractmethod
    async def commit(self):
        pass

    @abstractmethod
    async def rollback(self):
        pass


class EmailService(ABC):
    @abstractmethod
    async def send(self, to: List[str], subject: str, html: str, text: str) -> str:
        pass
