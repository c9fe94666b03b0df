import logging
from contextlib import asynccontextmanager
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.domain.exceptions import ConcurrentUpdateError, PersistenceError
from storefront.infrastructure.repositories import (
    SQLAlchemyOrderRepository,
    SQLAlchemyPendingOrderRepository,
    SQLAlchemyCartClearingRepository,
    SQLAlchemyOutboxRepository,
    SQLAlchemyCategoryRepository
)

logger = logging.getLogger(__name__)


class UnitOfWork:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def __call__(self):
        async with self._session_factory() as session:
            try:
                uow_impl = _UnitOfWorkImpl(session)
                yield uow_impl
                # Без commit изменения откатываются
                await session.rollback()
            except IntegrityError as e:
                await session.rollback()
                logger.warning(f"Конфликт уникальности: {e.orig}")
                raise ConcurrentUpdateError(str(e.orig)) from e
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Ошибка базы данных: {e}")
                raise PersistenceError("Database operation failed") from e
            except Exception:
                await session.rollback()
                raise


class _UnitOfWorkImpl:
    def __init__(self, session: AsyncSession):
        self._session = session
        self.orders = SQLAlchemyOrderRepository(session)
        self.pending_orders = SQLAlchemyPendingOrderRepository(session)
        self.cart_events = SQLAlchemyCartClearingRepository(session)
        self.outbox = SQLAlchemyOutboxRepository(session)
        self.categories = SQLAlchemyCategoryRepository(session)

    async def commit(self):
        await self._session.commit()

    async def rollback(self):
        await self._session.rollback()
