import logging
from decimal import Decimal, InvalidOperation
from typing import Optional
from pydantic import BaseModel, field_validator

from storefront.domain.models import CartItem, CustomerData, PaymentSession, to_money
from storefront.domain.exceptions import ConfigurationError, MissingFieldError, ValidationError
from storefront.application.stage_pending_order import StagePendingOrderDTO, StagePendingOrderUseCase
from storefront.infrastructure import liqpay

logger = logging.getLogger(__name__)


class CreatePaymentSessionDTO(BaseModel):
    amount: Optional[str] = None
    description: Optional[str] = None
    order_id: Optional[str] = None
    currency: Optional[str] = None
    customer_data: Optional[CustomerData] = None
    items: Optional[list[CartItem]] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_as_string(cls, value):
        return None if value is None else str(value)


class CreatePaymentSessionUseCase:
    def __init__(
        self,
        public_key: str,
        private_key: str,
        site_url: str,
        checkout_url: str,
        stage_pending: Optional[StagePendingOrderUseCase] = None
    ):
        self._public_key = public_key
        self._private_key = private_key
        self._site_url = site_url.rstrip("/")
        self._checkout_url = checkout_url
        self._stage_pending = stage_pending

    def _amount(self, raw: str) -> Decimal:
        try:
            amount = to_money(raw)
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Некорректная сумма: {raw}")
        if amount <= 0:
            raise ValidationError(f"Сумма должна быть положительной: {raw}")
        return amount

    def build_payload(self, amount: Decimal, currency: str, description: str, order_id: str) -> dict:
        return {
            "public_key": self._public_key,
            "version": liqpay.API_VERSION,
            "action": "pay",
            "amount": f"{amount:.2f}",
            "currency": currency,
            "description": description,
            "order_id": order_id,
            "result_url": f"{self._site_url}/order-success?orderId={order_id}",
            "server_url": f"{self._site_url}/api/payment-callback",
            "language": "uk",
        }

    async def __call__(self, dto: CreatePaymentSessionDTO) -> PaymentSession:
        missing = [
            name for name, value in
            (("amount", dto.amount), ("description", dto.description), ("orderId", dto.order_id))
            if value in (None, "")
        ]
        if missing:
            raise MissingFieldError(missing)
        amount = self._amount(dto.amount)

        if not self._public_key or not self._private_key:
            logger.error("LiqPay ключи не настроены")
            raise ConfigurationError("Payment configuration error")

        # Снимок корзины сохраняем до выдачи подписанной сессии
        if dto.customer_data is not None and dto.items and self._stage_pending is not None:
            await self._stage_pending(StagePendingOrderDTO(
                order_id=dto.order_id,
                customer_data=dto.customer_data,
                items=dto.items,
                total_amount=amount
            ))

        payload = self.build_payload(amount, dto.currency or "UAH", dto.description, dto.order_id)
        data = liqpay.encode_data(payload)
        signature = liqpay.make_signature(self._private_key, data)
        logger.info(f"Платёжная сессия для заказа {dto.order_id} на {payload['amount']} {payload['currency']}")
        return PaymentSession(
            data=data,
            signature=signature,
            order_id=dto.order_id,
            checkout_url=liqpay.checkout_url(self._checkout_url, data, signature)
        )
