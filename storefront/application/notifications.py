import logging
from decimal import Decimal
from pathlib import Path
from typing import Optional
from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import BaseModel

from storefront.application.interfaces import EmailService
from storefront.domain.models import Order, OrderStatus, PaymentMethod

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

CUSTOMER_CONFIRMATION = "email.customer_confirmation"
STORE_NOTIFICATION = "email.store_notification"
STATUS_UPDATE = "email.status_update"

STATUS_LABELS = {
    OrderStatus.PENDING_PAYMENT: "Очікує оплати",
    OrderStatus.PAID: "Оплачено",
    OrderStatus.PENDING: "Очікує підтвердження",
    OrderStatus.CONFIRMED: "Підтверджено",
    OrderStatus.SHIPPED: "Відправлено",
    OrderStatus.DELIVERED: "Доставлено",
    OrderStatus.CANCELLED: "Скасовано",
}

PAYMENT_METHOD_LABELS = {
    PaymentMethod.ONLINE: "💳 Онлайн оплата",
    PaymentMethod.CASH_ON_DELIVERY: "💰 Накладений платіж",
}


def _money(value) -> str:
    return f"{Decimal(str(value)):,.2f}".replace(",", " ")


class RenderedEmail(BaseModel):
    subject: str
    html: str
    text: str


class OrderEmailRenderer:
    """Письма по заказу: подтверждение и смена статуса покупателю, уведомление магазину"""

    def __init__(self, site_url: str, store_name: str = "AntiBlackout",
                 support_email: str = "antiblackoutsupp@gmail.com"):
        self._site_url = site_url.rstrip("/")
        self._store_name = store_name
        self._support_email = support_email
        self._env = Environment(
            loader=FileSystemLoader(TEMPLATES_DIR),
            autoescape=select_autoescape(["html"]),
            keep_trailing_newline=True
        )
        self._env.filters["money"] = _money

    def _context(self, order: Order) -> dict:
        return {
            "order": order,
            "site_url": self._site_url,
            "store_name": self._store_name,
            "support_email": self._support_email,
            "status_label": STATUS_LABELS.get(order.status, order.status.value),
            "payment_method_label": PAYMENT_METHOD_LABELS.get(order.payment_method, "Не вказано"),
            "order_date": order.created_at.strftime("%d.%m.%Y %H:%M"),
        }

    def _render(self, name: str, subject: str, order: Order) -> RenderedEmail:
        ctx = self._context(order)
        return RenderedEmail(
            subject=subject,
            html=self._env.get_template(f"emails/{name}.html").render(ctx),
            text=self._env.get_template(f"emails/{name}.txt").render(ctx)
        )

    def customer_confirmation(self, order: Order) -> RenderedEmail:
        subject = f"Ваше замовлення №{order.id} успішно прийняте | {self._store_name}"
        return self._render("order_confirmation_customer", subject, order)

    def store_notification(self, order: Order) -> RenderedEmail:
        subject = f"🚨 НОВЕ ЗАМОВЛЕННЯ #{order.id} | {self._store_name} Admin"
        return self._render("order_notification_admin", subject, order)

    def status_update(self, order: Order) -> RenderedEmail:
        status_label = STATUS_LABELS.get(order.status, order.status.value)
        subject = f"Статус замовлення №{order.id} змінено на \"{status_label}\" | {self._store_name}"
        return self._render("order_status_update", subject, order)


class OrderNotificationDispatcher:
    """Отправка писем по заказу. Ошибки провайдера пробрасываются (NotificationError),
    решение о повторе принимает outbox."""

    def __init__(self, email_service: EmailService, renderer: OrderEmailRenderer, store_email: str):
        self._email = email_service
        self._renderer = renderer
        self._store_email = store_email

    async def send_customer_confirmation(self, order: Order) -> str:
        if not order.customer_email:
            logger.info(f"У заказа {order.id} нет email покупателя, подтверждение не отправляется")
            return ""
        mail = self._renderer.customer_confirmation(order)
        return await self._email.send([order.customer_email], mail.subject, mail.html, mail.text)

    async def send_store_notification(self, order: Order) -> str:
        mail = self._renderer.store_notification(order)
        return await self._email.send([self._store_email], mail.subject, mail.html, mail.text)

    async def send_status_update(self, order: Order) -> str:
        if not order.customer_email:
            logger.info(f"У заказа {order.id} нет email покупателя, смена статуса без письма")
            return ""
        mail = self._renderer.status_update(order)
        return await self._email.send([order.customer_email], mail.subject, mail.html, mail.text)

    def handlers(self) -> dict:
        return {
            CUSTOMER_CONFIRMATION: self.send_customer_confirmation,
            STORE_NOTIFICATION: self.send_store_notification,
            STATUS_UPDATE: self.send_status_update,
        }


async def enqueue_order_emails(uow, order: Order) -> list[str]:
    """Кладёт письма по заказу в outbox в текущей транзакции.

    Ключи идемпотентности привязаны к order_id, поэтому повторный вызов
    для того же заказа новых событий не создаёт.
    """
    created = []
    events = [(STORE_NOTIFICATION, f"store_notification_{order.id}")]
    if order.customer_email:
        events.insert(0, (CUSTOMER_CONFIRMATION, f"customer_confirmation_{order.id}"))
    for event_type, idempotency_key in events:
        event_id = await uow.outbox.create(
            event_type=event_type,
            event_data={"order_id": order.id, "status": order.status.value},
            order_id=order.id,
            idempotency_key=idempotency_key
        )
        if event_id:
            created.append(event_id)
    if created:
        logger.info(f"В outbox добавлено {len(created)} писем для заказа {order.id}")
    return created


async def enqueue_status_update(uow, order: Order) -> Optional[str]:
    """Письмо покупателю о смене статуса; одно на каждую пару (заказ, статус)"""
    if not order.customer_email:
        return None
    event_id = await uow.outbox.create(
        event_type=STATUS_UPDATE,
        event_data={"order_id": order.id, "status": order.status.value},
        order_id=order.id,
        idempotency_key=f"status_update_{order.id}_{order.status.value}"
    )
    if event_id:
        logger.info(f"В outbox добавлено письмо о статусе {order.status.value} для заказа {order.id}")
    return event_id
