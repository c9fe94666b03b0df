import json
import unittest
from datetime import datetime
from decimal import Decimal
import httpx

from storefront.application.notifications import STATUS_UPDATE, OrderEmailRenderer, OrderNotificationDispatcher
from storefront.domain.exceptions import ConfigurationError, NotificationError
from storefront.domain.models import Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus
from storefront.infrastructure.http_clients import HTTPEmailClient

from support import FakeEmailService, STORE_EMAIL


def _client(handler, api_key="re_test"):
    return HTTPEmailClient(
        "https://api.resend.test/emails", api_key, "Shop <no-reply@shop.test>",
        timeout=5.0, transport=httpx.MockTransport(handler)
    )


def _order(email="olena@example.com") -> Order:
    created = datetime(2024, 12, 7, 14, 30)
    return Order(
        id="AB-123",
        customer_name="Олена <Коваль>",
        customer_email=email,
        customer_phone="+380501112233",
        city="Львів",
        branch="Відділення №3",
        payment_method=PaymentMethod.ONLINE,
        total_amount=Decimal("1250.00"),
        status=OrderStatus.PAID,
        payment_status=PaymentStatus.SUCCESS,
        items=[
            OrderItem(order_id="AB-123", product_id="101", product_name="Павербанк", quantity=1,
                      unit_price=Decimal("1150.00"), category_name="Павербанки"),
            OrderItem(order_id="AB-123", product_name="Кабель", quantity=2, unit_price=Decimal("50.00")),
        ],
        created_at=created,
        updated_at=created
    )


class HTTPEmailClientTests(unittest.IsolatedAsyncioTestCase):

    async def test_posts_to_provider_with_bearer_token(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"id": "email-1"})

        email_id = await _client(handler).send(["a@example.com"], "Subject", "<p>hi</p>", "hi")

        self.assertEqual(email_id, "email-1")
        request = requests[0]
        self.assertEqual(request.headers["Authorization"], "Bearer re_test")
        self.assertEqual(json.loads(request.content), {
            "from": "Shop <no-reply@shop.test>",
            "to": ["a@example.com"],
            "subject": "Subject",
            "html": "<p>hi</p>",
            "text": "hi",
        })

    async def test_provider_error(self):
        client = _client(lambda request: httpx.Response(422, json={"message": "Invalid `to` field"}))
        with self.assertRaises(NotificationError) as cm:
            await client.send(["bad"], "s", "h", "t")
        self.assertIn("Invalid `to` field", str(cm.exception))

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertLogs("storefront.infrastructure.http_clients", level="ERROR"):
            with self.assertRaises(NotificationError):
                await _client(handler).send(["a@example.com"], "s", "h", "t")

    async def test_missing_api_key(self):
        with self.assertRaises(ConfigurationError):
            await _client(lambda request: httpx.Response(200), api_key="").send(["a@example.com"], "s", "h", "t")


class RendererTests(unittest.TestCase):

    def setUp(self):
        self.renderer = OrderEmailRenderer("https://shop.test/")

    def test_customer_confirmation(self):
        mail = self.renderer.customer_confirmation(_order())

        self.assertEqual(mail.subject, "Ваше замовлення №AB-123 успішно прийняте | AntiBlackout")
        self.assertIn("Павербанк (Павербанки)", mail.html)
        self.assertIn("Оплачено", mail.html)
        self.assertIn("https://shop.test/order-status/AB-123", mail.text)
        self.assertIn("₴1 250.00", mail.text)
        self.assertIn("- Кабель x2 = ₴100.00", mail.text)
        # html экранируется, текст нет
        self.assertIn("Олена &lt;Коваль&gt;", mail.html)
        self.assertIn("Олена <Коваль>", mail.text)

    def test_store_notification(self):
        mail = self.renderer.store_notification(_order())

        self.assertEqual(mail.subject, "🚨 НОВЕ ЗАМОВЛЕННЯ #AB-123 | AntiBlackout Admin")
        self.assertIn("Відділення: Відділення №3", mail.text)
        self.assertIn("💳 Онлайн оплата", mail.text)
        self.assertIn("07.12.2024 14:30", mail.text)

    def test_status_update(self):
        order = _order().model_copy(update={"status": OrderStatus.SHIPPED})

        mail = self.renderer.status_update(order)

        self.assertEqual(mail.subject, "Статус замовлення №AB-123 змінено на \"Відправлено\" | AntiBlackout")
        self.assertIn("Новий статус: <strong>Відправлено</strong>", mail.html)
        self.assertIn("Вітаємо, Олена <Коваль>!", mail.text)
        self.assertIn("https://shop.test/order-status/AB-123", mail.text)


class DispatcherTests(unittest.IsolatedAsyncioTestCase):

    async def test_customer_without_email_is_skipped(self):
        email = FakeEmailService()
        dispatcher = OrderNotificationDispatcher(email, OrderEmailRenderer("https://shop.test"), STORE_EMAIL)

        self.assertEqual(await dispatcher.send_customer_confirmation(_order(email=None)), "")
        await dispatcher.send_store_notification(_order(email=None))

        self.assertEqual([mail["to"] for mail in email.sent], [[STORE_EMAIL]])

    async def test_status_update_goes_to_customer_only(self):
        email = FakeEmailService()
        dispatcher = OrderNotificationDispatcher(email, OrderEmailRenderer("https://shop.test"), STORE_EMAIL)

        await dispatcher.handlers()[STATUS_UPDATE](_order())
        self.assertEqual(await dispatcher.send_status_update(_order(email=None)), "")

        self.assertEqual([mail["to"] for mail in email.sent], [["olena@example.com"]])
