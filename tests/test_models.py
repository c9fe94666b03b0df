import unittest
from datetime import datetime
from decimal import Decimal

from storefront.domain.models import (
    CartItem, Category, Order, OrderStatus, PaymentMethod, PaymentStatus, build_category_tree, items_total,
    provider_outcome
)


class ProviderStatusTests(unittest.TestCase):

    def test_mapping(self):
        self.assertEqual(provider_outcome("success"), (OrderStatus.PAID, PaymentStatus.SUCCESS))
        self.assertEqual(provider_outcome("SANDBOX"), (OrderStatus.PAID, PaymentStatus.SUCCESS))
        for status in ("failure", "error", "reversed"):
            self.assertEqual(provider_outcome(status), (OrderStatus.CANCELLED, PaymentStatus.FAILED))
        for status in ("processing", "wait_accept", "", None):
            self.assertIsNone(provider_outcome(status))


class OrderRulesTests(unittest.TestCase):

    def _order(self, status):
        now = datetime(2024, 1, 1)
        return Order(
            id="ORD-1", customer_name="Тарас", payment_method=PaymentMethod.ONLINE,
            total_amount=Decimal("10.00"), status=status, payment_status=PaymentStatus.SUCCESS,
            created_at=now, updated_at=now
        )

    def test_paid_is_monotonic(self):
        paid = self._order(OrderStatus.PAID)
        self.assertFalse(paid.can_transition_to(OrderStatus.PENDING_PAYMENT))
        self.assertFalse(paid.can_transition_to(OrderStatus.PENDING))
        self.assertTrue(paid.can_transition_to(OrderStatus.SHIPPED))
        self.assertTrue(paid.can_transition_to(OrderStatus.CANCELLED))
        self.assertTrue(self._order(OrderStatus.PENDING_PAYMENT).can_transition_to(OrderStatus.PAID))


class CartItemTests(unittest.TestCase):

    def test_product_id_is_canonical_string(self):
        self.assertEqual(CartItem(product_id=101, name="x", unit_price=1, quantity=1).product_id, "101")
        self.assertIsNone(CartItem(product_id="", name="x", unit_price=1, quantity=1).product_id)

    def test_items_total(self):
        items = [
            CartItem(name="a", unit_price=Decimal("0.10"), quantity=3),
            CartItem(name="b", unit_price=Decimal("19.99"), quantity=2),
        ]
        self.assertEqual(items_total(items), Decimal("40.28"))


class CategoryTreeTests(unittest.TestCase):

    def test_builds_nested_tree(self):
        tree = build_category_tree([
            Category(id="energy", name="Енергія"),
            Category(id="power", name="Павербанки", parent_id="energy"),
            Category(id="solar", name="Сонячні панелі", parent_id="energy"),
            Category(id="orphan", name="Інше", parent_id="missing"),
        ])

        self.assertEqual([node.id for node in tree], ["energy", "orphan"])
        self.assertEqual([child.id for child in tree[0].children], ["power", "solar"])
