from datetime import datetime
from decimal import Decimal
from typing import Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.domain.models import (
    CartClearingEvent, CartItem, Category, CustomerData, Order, OrderStats, OrderStatus, PaymentMethod,
    PaymentStatus
)


def _as_str(value):
    return None if value in (None, "") else str(value)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CustomerDataRequest(_CamelModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    branch: Optional[str] = None
    warehouse: Optional[str] = None
    address: Optional[str] = None

    def to_domain(self) -> CustomerData:
        return CustomerData(
            name=self.name,
            email=self.email,
            phone=self.phone,
            city=self.city,
            branch=self.branch or self.warehouse or self.address
        )


class CartItemRequest(_CamelModel):
    id: Optional[Union[str, int]] = None
    name: str
    price: Decimal = Field(gt=0)
    quantity: int = Field(gt=0)
    image: Optional[str] = None

    def to_domain(self) -> CartItem:
        return CartItem(
            product_id=self.id,
            name=self.name,
            unit_price=self.price,
            quantity=self.quantity,
            image=self.image
        )


class _CartRequest(_CamelModel):
    order_id: Optional[str] = Field(default=None, alias="orderId")
    customer_data: Optional[CustomerDataRequest] = Field(default=None, alias="customerData")
    items: Optional[list[CartItemRequest]] = None

    @field_validator("order_id", mode="before")
    @classmethod
    def _order_id_as_str(cls, value):
        return _as_str(value)

    def domain_customer(self) -> Optional[CustomerData]:
        return self.customer_data.to_domain() if self.customer_data else None

    def domain_items(self) -> Optional[list[CartItem]]:
        return [item.to_domain() for item in self.items] if self.items else None


class PaymentRequest(_CartRequest):
    amount: Optional[Union[str, int, float]] = None
    description: Optional[str] = None
    currency: Optional[str] = None


class CreatePendingOrderRequest(_CartRequest):
    total_amount: Optional[Decimal] = Field(default=None, alias="totalAmount")


class CreateOrderRequest(_CartRequest):
    total: Optional[Decimal] = None
    total_amount: Optional[Decimal] = Field(default=None, alias="totalAmount")
    payment_method: PaymentMethod = Field(default=PaymentMethod.CASH_ON_DELIVERY, alias="paymentMethod")


class CartClearRequest(_CamelModel):
    order_id: Optional[str] = Field(default=None, alias="orderId")

    @field_validator("order_id", mode="before")
    @classmethod
    def _order_id_as_str(cls, value):
        return _as_str(value)


class StatusUpdateRequest(_CamelModel):
    status: OrderStatus
    payment_status: Optional[PaymentStatus] = Field(default=None, alias="paymentStatus")


class OrderItemResponse(BaseModel):
    id: Optional[int] = None
    product_id: Optional[str] = None
    product_name: str
    quantity: int
    price: float
    image_url: Optional[str] = None
    category_name: Optional[str] = None


class OrderResponse(BaseModel):
    id: str
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    city: Optional[str] = None
    branch: Optional[str] = None
    payment_method: PaymentMethod
    total_amount: float
    status: OrderStatus
    payment_status: PaymentStatus
    payment_id: Optional[str] = None
    items: list[OrderItemResponse] = []
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, order: Order):
        return cls(
            id=order.id,
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            customer_phone=order.customer_phone,
            city=order.city,
            branch=order.branch,
            payment_method=order.payment_method,
            total_amount=float(order.total_amount),
            status=order.status,
            payment_status=order.payment_status,
            payment_id=order.payment_id,
            items=[
                OrderItemResponse(
                    id=item.id,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    price=float(item.unit_price),
                    image_url=item.image_url,
                    category_name=item.category_name
                )
                for item in order.items
            ],
            created_at=order.created_at,
            updated_at=order.updated_at
        )


class OrderStatusResponse(BaseModel):
    """Короткая проекция для опроса статуса оплаты"""
    id: str
    status: OrderStatus
    payment_status: PaymentStatus
    customer_name: str
    total_amount: float
    created_at: datetime

    @classmethod
    def from_domain(cls, order: Order):
        return cls(
            id=order.id,
            status=order.status,
            payment_status=order.payment_status,
            customer_name=order.customer_name,
            total_amount=float(order.total_amount),
            created_at=order.created_at
        )


class ClearingEventResponse(BaseModel):
    id: Optional[int] = None
    order_id: str
    created_at: datetime

    @classmethod
    def from_domain(cls, event: CartClearingEvent):
        return cls(id=event.id, order_id=event.order_id, created_at=event.created_at)


class StatsResponse(BaseModel):
    total_orders: int
    by_status: dict[str, int]
    total_revenue: float

    @classmethod
    def from_domain(cls, stats: OrderStats):
        return cls(
            total_orders=stats.total_orders,
            by_status=stats.by_status,
            total_revenue=float(stats.total_revenue)
        )


class CategoryResponse(BaseModel):
    id: str
    name: str
    parent_id: Optional[str] = None
    children: list["CategoryResponse"] = []

    @classmethod
    def from_domain(cls, category: Category):
        return cls(
            id=category.id,
            name=category.name,
            parent_id=category.parent_id,
            children=[cls.from_domain(child) for child in category.children]
        )


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
