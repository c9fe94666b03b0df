from decimal import Decimal
from unittest.mock import patch
from jinja2 import TemplateError

from storefront.application.create_order import CreateOrderUseCase, CreateOrderDTO
from storefront.application.notifications import OrderEmailRenderer
from storefront.application.process_payment import ProcessPaymentCallbackUseCase, PaymentCallbackDTO
from storefront.application.stage_pending_order import StagePendingOrderUseCase, StagePendingOrderDTO
from storefront.domain.exceptions import (
    ConcurrentUpdateError, MissingFieldError, MissingOrderIdError, SignatureMismatchError
)
from storefront.domain.models import OrderStatus, PaymentMethod, PaymentStatus, PendingOrderStatus
from storefront.infrastructure import liqpay
from storefront.infrastructure.repositories import SQLAlchemyOrderRepository

from support import DatabaseTestCase, FakeEmailService, PRIVATE_KEY, STORE_EMAIL, cart_items, customer, signed_callback


class PaymentCallbackTests(DatabaseTestCase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.email = FakeEmailService()
        self.use_case = ProcessPaymentCallbackUseCase(self.uow, PRIVATE_KEY, self.outbox_processor(self.email))

    async def stage(self, order_id="AB-123"):
        await StagePendingOrderUseCase(self.uow)(StagePendingOrderDTO(
            order_id=order_id,
            customer_data=customer(),
            items=cart_items(),
            total_amount=Decimal("1000.00")
        ))

    async def get_order(self, order_id="AB-123"):
        async with self.uow() as uow:
            return await uow.orders.get_by_id(order_id)

    async def get_pending(self, order_id="AB-123"):
        async with self.uow() as uow:
            return await uow.pending_orders.get_by_id(order_id)

    async def test_success_creates_paid_order(self):
        await self.stage()

        result = await self.use_case(signed_callback(
            order_id="AB-123", status="success", amount=1000, currency="UAH", payment_id=555
        ))

        self.assertEqual(result.action, "created")
        order = await self.get_order()
        self.assertEqual(order.status, OrderStatus.PAID)
        self.assertEqual(order.payment_status, PaymentStatus.SUCCESS)
        self.assertEqual(order.payment_id, "555")
        self.assertEqual(order.payment_method, PaymentMethod.ONLINE)
        self.assertEqual(order.total_amount, Decimal("1000.00"))
        self.assertEqual(sum(item.subtotal for item in order.items), order.total_amount)
        self.assertEqual((await self.get_pending()).status, PendingOrderStatus.CONSUMED)

        self.assertEqual(len(await self.fetch_cart_events()), 1)
        outbox = await self.fetch_outbox()
        self.assertEqual([row.status for row in outbox], ["published", "published"])
        self.assertEqual(
            sorted(mail["to"][0] for mail in self.email.sent),
            sorted(["olena@example.com", STORE_EMAIL])
        )

    async def test_sandbox_status_counts_as_success(self):
        await self.stage()
        result = await self.use_case(signed_callback(order_id="AB-123", status="sandbox"))

        self.assertEqual(result.order_status, OrderStatus.PAID)

    async def test_duplicate_callback_is_idempotent(self):
        await self.stage()
        callback = signed_callback(order_id="AB-123", status="success", transaction_id=42)

        first = await self.use_case(callback)
        second = await self.use_case(callback)

        self.assertEqual(first.action, "created")
        self.assertEqual(second.action, "duplicate")
        async with self.uow() as uow:
            self.assertEqual(len(await uow.orders.get_all()), 1)
        self.assertEqual(len(self.email.sent), 2)
        self.assertEqual(len(await self.fetch_cart_events()), 1)

    async def test_tampered_payload_changes_nothing(self):
        await self.stage()
        genuine = signed_callback(order_id="AB-123", status="failure")
        forged = PaymentCallbackDTO(
            data=liqpay.encode_data({"order_id": "AB-123", "status": "success"}),
            signature=genuine.signature
        )

        with self.assertLogs("storefront.application.process_payment", level="WARNING"):
            with self.assertRaises(SignatureMismatchError):
                await self.use_case(forged)

        self.assertIsNone(await self.get_order())
        self.assertEqual((await self.get_pending()).status, PendingOrderStatus.PENDING)
        self.assertEqual(self.email.sent, [])

    async def test_missing_fields(self):
        with self.assertRaises(MissingFieldError) as cm:
            await self.use_case(PaymentCallbackDTO(data="eyJ9"))
        self.assertEqual(cm.exception.fields, ["signature"])

        with self.assertRaises(MissingOrderIdError):
            await self.use_case(signed_callback(status="success"))

    async def test_failure_marks_pending_failed(self):
        await self.stage()
        result = await self.use_case(signed_callback(order_id="AB-123", status="failure"))

        self.assertEqual(result.action, "ignored")
        self.assertIsNone(await self.get_order())
        self.assertEqual((await self.get_pending()).status, PendingOrderStatus.FAILED)

    async def test_failure_then_success_creates_paid_order(self):
        await self.stage()
        await self.use_case(signed_callback(order_id="AB-123", status="failure"))

        result = await self.use_case(signed_callback(order_id="AB-123", status="success", payment_id="retry-1"))

        self.assertEqual(result.action, "created")
        order = await self.get_order()
        self.assertEqual((order.status, order.payment_status), (OrderStatus.PAID, PaymentStatus.SUCCESS))
        self.assertEqual(order.payment_id, "retry-1")
        self.assertEqual((await self.get_pending()).status, PendingOrderStatus.CONSUMED)
        self.assertEqual(len(self.email.sent), 2)
        self.assertEqual(len(await self.fetch_cart_events()), 1)

    async def test_failed_snapshot_can_be_restaged(self):
        await self.stage()
        await self.use_case(signed_callback(order_id="AB-123", status="error"))

        await self.stage()

        self.assertEqual((await self.get_pending()).status, PendingOrderStatus.PENDING)

    async def test_intermediate_status_is_acknowledged_without_changes(self):
        await self.stage()
        result = await self.use_case(signed_callback(order_id="AB-123", status="processing"))

        self.assertEqual(result.action, "ignored")
        self.assertIsNone(await self.get_order())
        self.assertEqual((await self.get_pending()).status, PendingOrderStatus.PENDING)

    async def test_unknown_order_is_acknowledged(self):
        with self.assertLogs("storefront.application.process_payment", level="ERROR"):
            result = await self.use_case(signed_callback(order_id="NOPE", status="success"))

        self.assertEqual(result.action, "not_found")
        self.assertIsNone(await self.get_order("NOPE"))

    async def test_existing_order_transitions_to_paid(self):
        await CreateOrderUseCase(self.uow)(CreateOrderDTO(
            order_id="AB-123",
            customer_data=customer(),
            items=cart_items(),
            total_amount=Decimal("1000.00"),
            payment_method=PaymentMethod.ONLINE
        ))
        self.assertEqual((await self.get_order()).status, OrderStatus.PENDING_PAYMENT)

        result = await self.use_case(signed_callback(order_id="AB-123", status="success", payment_id="p-1"))

        self.assertEqual(result.action, "updated")
        order = await self.get_order()
        self.assertEqual((order.status, order.payment_status), (OrderStatus.PAID, PaymentStatus.SUCCESS))
        self.assertEqual(order.payment_id, "p-1")
        self.assertEqual(len(self.email.sent), 2)
        self.assertEqual(len(await self.fetch_cart_events()), 1)

    async def test_order_created_concurrently_is_updated(self):
        await self.stage()
        original_lock = SQLAlchemyOrderRepository.lock
        calls = []

        async def lock_before_order_exists(repo, order_id):
            calls.append(order_id)
            if len(calls) == 1:
                # Между первым чтением и claim заказ создаёт create-order-after-payment
                await CreateOrderUseCase(self.uow)(CreateOrderDTO(
                    order_id=order_id, payment_method=PaymentMethod.ONLINE
                ))
                return None
            return await original_lock(repo, order_id)

        with patch.object(SQLAlchemyOrderRepository, "lock", lock_before_order_exists):
            result = await self.use_case(signed_callback(order_id="AB-123", status="success"))

        self.assertEqual(calls, ["AB-123", "AB-123"])
        self.assertEqual(result.action, "updated")
        order = await self.get_order()
        self.assertEqual((order.status, order.payment_status), (OrderStatus.PAID, PaymentStatus.SUCCESS))
        self.assertEqual(len(self.email.sent), 2)
        self.assertEqual(len(await self.fetch_cart_events()), 1)

    async def test_late_failure_after_paid_is_ignored(self):
        await self.stage()
        await self.use_case(signed_callback(order_id="AB-123", status="success"))

        result = await self.use_case(signed_callback(order_id="AB-123", status="error"))

        self.assertEqual(result.action, "ignored")
        self.assertEqual((await self.get_order()).status, OrderStatus.PAID)

    async def test_reversal_cancels_paid_order(self):
        await self.stage()
        await self.use_case(signed_callback(order_id="AB-123", status="success"))

        result = await self.use_case(signed_callback(order_id="AB-123", status="reversed"))

        self.assertEqual(result.action, "updated")
        order = await self.get_order()
        self.assertEqual((order.status, order.payment_status), (OrderStatus.CANCELLED, PaymentStatus.FAILED))
        self.assertEqual(len(self.email.sent), 2)

    async def test_concurrent_insert_is_treated_as_duplicate(self):
        await self.stage()
        with patch.object(SQLAlchemyOrderRepository, "create", side_effect=ConcurrentUpdateError("orders_pkey")):
            result = await self.use_case(signed_callback(order_id="AB-123", status="success"))

        self.assertEqual(result.action, "duplicate")
        # Транзакция откатилась целиком: снимок снова доступен
        self.assertEqual((await self.get_pending()).status, PendingOrderStatus.PENDING)
        self.assertEqual(await self.fetch_outbox(), [])

    async def test_email_failure_does_not_fail_callback(self):
        self.email.fail = True
        await self.stage()

        with self.assertLogs("storefront.application.process_outbox", level="ERROR"):
            result = await self.use_case(signed_callback(order_id="AB-123", status="success"))

        self.assertEqual(result.action, "created")
        self.assertEqual((await self.get_order()).status, OrderStatus.PAID)
        outbox = await self.fetch_outbox()
        self.assertEqual([(row.status, row.attempts) for row in outbox], [("pending", 1), ("pending", 1)])
        self.assertTrue(all(row.last_error for row in outbox))

    async def test_template_error_does_not_fail_callback(self):
        await self.stage()

        with patch.object(OrderEmailRenderer, "customer_confirmation", side_effect=TemplateError("boom")):
            with self.assertLogs("storefront.application.process_outbox", level="ERROR"):
                result = await self.use_case(signed_callback(order_id="AB-123", status="success"))

        self.assertEqual(result.action, "created")
        self.assertEqual((await self.get_order()).status, OrderStatus.PAID)
        outbox = await self.fetch_outbox()
        self.assertEqual([(row.status, row.attempts) for row in outbox], [("pending", 1), ("published", 1)])
        self.assertEqual([mail["to"] for mail in self.email.sent], [[STORE_EMAIL]])
