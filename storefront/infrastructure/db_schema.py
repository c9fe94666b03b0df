from sqlalchemy import (
    Table, Column, String, Integer, Enum, DateTime, JSON, MetaData, Numeric, ForeignKey, Index
)
from sqlalchemy.sql import func

from storefront.domain.models import OrderStatus, PaymentStatus, PaymentMethod, PendingOrderStatus

metadata = MetaData()


def _enum(enum_cls, name):
    # Храним значения ("paid"), а не имена членов ("PAID")
    return Enum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e], native_enum=False)


categories_tbl = Table(
    "categories",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("parent_id", String, ForeignKey("categories.id"), nullable=True),
)


products_tbl = Table(
    "products",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("price", Numeric(10, 2), nullable=False),
    Column("image_url", String, nullable=True),
    Column("category_id", String, ForeignKey("categories.id"), nullable=True),
)


orders_tbl = Table(
    "orders",
    metadata,
    Column("id", String, primary_key=True),
    Column("customer_name", String, nullable=False),
    Column("customer_email", String, nullable=True),
    Column("customer_phone", String, nullable=True),
    Column("city", String, nullable=True),
    Column("branch", String, nullable=True),
    Column("payment_method", _enum(PaymentMethod, "payment_method"), nullable=False),
    Column("total_amount", Numeric(10, 2), nullable=False),
    Column("status", _enum(OrderStatus, "order_status"), nullable=False, index=True),
    Column("payment_status", _enum(PaymentStatus, "payment_status"), nullable=False),
    Column("payment_id", String, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
)


order_items_tbl = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("product_id", String, nullable=True),
    Column("product_name", String, nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", Numeric(10, 2), nullable=False),
    Column("image_url", String, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now())
)


pending_orders_tbl = Table(
    "pending_orders",
    metadata,
    Column("id", String, primary_key=True),
    Column("customer_data", JSON, nullable=False),
    Column("items", JSON, nullable=False),
    Column("total_amount", Numeric(10, 2), nullable=False),
    Column("payment_method", _enum(PaymentMethod, "pending_payment_method"), nullable=False),
    Column("status", _enum(PendingOrderStatus, "pending_order_status"), nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Index("idx_pending_orders_created_at", "created_at"),
)


cart_clearing_events_tbl = Table(
    "cart_clearing_events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String, nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now())
)


outbox_events_tbl = Table(
    "outbox_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("event_type", String, nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("order_id", String, nullable=False, index=True),
    Column("idempotency_key", String, unique=True, nullable=False),
    Column("status", String, default="pending"),
    Column("attempts", Integer, default=0, nullable=False),
    Column("last_error", String, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("locked_at", DateTime(timezone=True), nullable=True),
    Column("published_at", DateTime(timezone=True), nullable=True)
)
