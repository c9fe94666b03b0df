import asyncio
import logging
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from storefront.config import settings
from storefront.database import build_engine, build_session_factory
from storefront.infrastructure.unit_of_work import UnitOfWork
from storefront.infrastructure.http_clients import HTTPEmailClient
from storefront.application.notifications import OrderEmailRenderer, OrderNotificationDispatcher
from storefront.application.process_outbox import ProcessOutboxEventsUseCase

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def build_use_case(session_factory) -> ProcessOutboxEventsUseCase:
    email_client = HTTPEmailClient(
        settings.EMAIL_API_URL,
        settings.RESEND_API_KEY,
        settings.EMAIL_FROM,
        timeout=settings.EMAIL_TIMEOUT
    )
    dispatcher = OrderNotificationDispatcher(
        email_client,
        OrderEmailRenderer(settings.SITE_URL),
        settings.STORE_ORDERS_EMAIL
    )
    return ProcessOutboxEventsUseCase(
        unit_of_work=UnitOfWork(session_factory),
        dispatcher=dispatcher,
        max_attempts=settings.OUTBOX_MAX_ATTEMPTS,
        visibility_timeout=settings.OUTBOX_VISIBILITY_TIMEOUT
    )


async def outbox_worker():
    """Worker для повторной отправки писем из outbox"""
    logger.info("Outbox worker запущен")
    engine = build_engine(settings.DATABASE_URL)
    use_case = build_use_case(build_session_factory(engine))

    try:
        while True:
            try:
                processed = await use_case(limit=settings.OUTBOX_BATCH_SIZE)
                if processed:
                    logger.info(f"Обработано {processed} outbox events")

                await asyncio.sleep(settings.OUTBOX_POLL_INTERVAL)

            except Exception as e:
                logger.error(f"Ошибка в outbox worker: {e}", exc_info=True)
                await asyncio.sleep(10)
    finally:
        await engine.dispose()


async def main():
    await outbox_worker()


if __name__ == "__main__":
    asyncio.run(main())
