from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator

CENT = Decimal("0.01")


class OrderStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    ONLINE = "online"
    CASH_ON_DELIVERY = "cash_on_delivery"


class PendingOrderStatus(str, Enum):
    PENDING = "pending"
    CONSUMED = "consumed"
    FAILED = "failed"


# Статусы до оплаты и после неё: из вторых в первые возврата нет
PRE_PAYMENT_STATUSES = {OrderStatus.PENDING_PAYMENT, OrderStatus.PENDING}
POST_PAYMENT_STATUSES = {OrderStatus.PAID, OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.DELIVERED}

# Статусы LiqPay -> (статус заказа, статус оплаты)
PROVIDER_SUCCESS_STATUSES = {"success", "sandbox"}
PROVIDER_FAILURE_STATUSES = {"failure", "error", "reversed"}


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def items_total(items) -> Decimal:
    """Сумма позиций: цена за единицу * количество"""
    return to_money(sum((to_money(item.unit_price) * item.quantity for item in items), Decimal("0")))


def provider_outcome(provider_status: str) -> Optional[tuple["OrderStatus", "PaymentStatus"]]:
    """Переводит статус платежа провайдера в статусы заказа.

    None означает промежуточный статус (processing, wait_accept, ...),
    по которому заказ не меняется.
    """
    status = (provider_status or "").lower()
    if status in PROVIDER_SUCCESS_STATUSES:
        return OrderStatus.PAID, PaymentStatus.SUCCESS
    if status in PROVIDER_FAILURE_STATUSES:
        return OrderStatus.CANCELLED, PaymentStatus.FAILED
    return None


class CustomerData(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    branch: Optional[str] = None


class CartItem(BaseModel):
    """Value Object: позиция корзины на момент оплаты"""
    product_id: Optional[str] = None
    name: str
    unit_price: Decimal = Field(gt=0)
    quantity: int = Field(gt=0)
    image: Optional[str] = None

    @field_validator("product_id", mode="before")
    @classmethod
    def _canonical_product_id(cls, value):
        # Числовые id из корзины храним как строку, без таблиц соответствия
        return None if value in (None, "") else str(value)

    @property
    def subtotal(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)


class OrderItem(BaseModel):
    id: Optional[int] = None
    order_id: str
    product_id: Optional[str] = None
    product_name: str
    quantity: int = Field(gt=0)
    unit_price: Decimal
    image_url: Optional[str] = None
    category_name: Optional[str] = None

    @property
    def subtotal(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)

    @property
    def label(self) -> str:
        if self.category_name:
            return f"{self.product_name} ({self.category_name})"
        return self.product_name


class Order(BaseModel):
    """Domain Entity: заказ"""
    id: str
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    city: Optional[str] = None
    branch: Optional[str] = None
    payment_method: PaymentMethod
    total_amount: Decimal
    status: OrderStatus
    payment_status: PaymentStatus
    payment_id: Optional[str] = None
    items: list[OrderItem] = []
    created_at: datetime
    updated_at: datetime

    def is_paid(self) -> bool:
        return self.status in POST_PAYMENT_STATUSES and self.payment_status == PaymentStatus.SUCCESS

    def can_transition_to(self, status: OrderStatus) -> bool:
        """Бизнес-правило: оплаченный заказ не возвращается в ожидание оплаты"""
        if status == self.status:
            return True
        return not (self.status in POST_PAYMENT_STATUSES and status in PRE_PAYMENT_STATUSES)


class PendingOrder(BaseModel):
    """Снимок корзины и данных покупателя до подтверждения оплаты"""
    id: str
    customer_data: CustomerData
    items: list[CartItem]
    total_amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.ONLINE
    status: PendingOrderStatus = PendingOrderStatus.PENDING
    created_at: datetime

    def to_order(self, status: OrderStatus, payment_status: PaymentStatus,
                 payment_id: Optional[str], now: datetime) -> Order:
        return Order(
            id=self.id,
            customer_name=self.customer_data.name,
            customer_email=self.customer_data.email,
            customer_phone=self.customer_data.phone,
            city=self.customer_data.city,
            branch=self.customer_data.branch,
            payment_method=self.payment_method,
            total_amount=to_money(self.total_amount),
            status=status,
            payment_status=payment_status,
            payment_id=payment_id,
            items=[
                OrderItem(
                    order_id=self.id,
                    product_id=item.product_id,
                    product_name=item.name,
                    quantity=item.quantity,
                    unit_price=to_money(item.unit_price),
                    image_url=item.image,
                )
                for item in self.items
            ],
            created_at=now,
            updated_at=now,
        )


class CartClearingEvent(BaseModel):
    id: Optional[int] = None
    order_id: str
    created_at: datetime


class Category(BaseModel):
    id: str
    name: str
    parent_id: Optional[str] = None
    children: list["Category"] = []


def build_category_tree(categories: list[Category]) -> list[Category]:
    """Собирает плоский список категорий (parent_id) в дерево"""
    nodes = {c.id: c.model_copy(update={"children": []}) for c in categories}
    roots = []
    for node in nodes.values():
        parent = nodes.get(node.parent_id) if node.parent_id else None
        if parent is None or parent.id == node.id:
            roots.append(node)
        else:
            parent.children.append(node)
    return roots


class OrderStats(BaseModel):
    total_orders: int = 0
    by_status: dict[str, int] = {}
    total_revenue: Decimal = Decimal("0.00")


class PaymentSession(BaseModel):
    data: str
    signature: str
    order_id: str
    checkout_url: str


class CallbackResult(BaseModel):
    order_id: str
    action: str  # created | updated | duplicate | ignored | not_found
    order_status: Optional[OrderStatus] = None
