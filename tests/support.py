import os
import tempfile
import unittest
from decimal import Decimal
from sqlalchemy import select

from storefront.application.interfaces import EmailService
from storefront.application.notifications import OrderEmailRenderer, OrderNotificationDispatcher
from storefront.application.process_outbox import ProcessOutboxEventsUseCase
from storefront.application.process_payment import PaymentCallbackDTO
from storefront.database import build_engine, build_session_factory, create_tables
from storefront.domain.exceptions import NotificationError
from storefront.domain.models import CartItem, CustomerData
from storefront.infrastructure import liqpay
from storefront.infrastructure.db_schema import outbox_events_tbl, cart_clearing_events_tbl
from storefront.infrastructure.unit_of_work import UnitOfWork

PRIVATE_KEY = "sandbox_private_key"
STORE_EMAIL = "orders@shop.test"


class FakeEmailService(EmailService):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send(self, to, subject, html, text):
        if self.fail:
            raise NotificationError("Email provider ошибка 500: down")
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return f"email-{len(self.sent)}"


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    """Отдельный sqlite-файл на каждый тест"""

    async def asyncSetUp(self):
        fd, self.db_path = tempfile.mkstemp(suffix=".db")
        os.close(fd)
        self.engine = build_engine(f"sqlite+aiosqlite:///{self.db_path}")
        await create_tables(self.engine)
        self.uow = UnitOfWork(build_session_factory(self.engine))

    async def asyncTearDown(self):
        await self.engine.dispose()
        os.remove(self.db_path)

    def outbox_processor(self, email: EmailService, max_attempts: int = 5) -> ProcessOutboxEventsUseCase:
        dispatcher = OrderNotificationDispatcher(email, OrderEmailRenderer("https://shop.test"), STORE_EMAIL)
        return ProcessOutboxEventsUseCase(self.uow, dispatcher, max_attempts)

    async def fetch_outbox(self):
        async with self.engine.connect() as conn:
            result = await conn.execute(select(outbox_events_tbl).order_by(outbox_events_tbl.c.event_type))
            return result.fetchall()

    async def fetch_cart_events(self):
        async with self.engine.connect() as conn:
            result = await conn.execute(select(cart_clearing_events_tbl))
            return result.fetchall()


def customer() -> CustomerData:
    return CustomerData(
        name="Олена Коваль",
        email="olena@example.com",
        phone="+380501112233",
        city="Київ",
        branch="Відділення №12"
    )


def cart_items() -> list[CartItem]:
    return [
        CartItem(product_id=101, name="Павербанк 20000", unit_price=Decimal("900.00"), quantity=1),
        CartItem(product_id="lamp-7", name="LED лампа", unit_price=Decimal("50.00"), quantity=2),
    ]


def signed_callback(private_key: str = PRIVATE_KEY, **payload) -> PaymentCallbackDTO:
    data = liqpay.encode_data(payload)
    return PaymentCallbackDTO(data=data, signature=liqpay.make_signature(private_key, data))
