import logging
import secrets
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from storefront.config import Settings
from storefront.presentation.schemas import (
    PaymentRequest, CreatePendingOrderRequest, CreateOrderRequest, CartClearRequest, StatusUpdateRequest,
    OrderResponse, OrderStatusResponse, ClearingEventResponse, StatsResponse, CategoryResponse, ErrorResponse
)
from storefront.application.create_payment_session import CreatePaymentSessionUseCase, CreatePaymentSessionDTO
from storefront.application.stage_pending_order import StagePendingOrderUseCase, StagePendingOrderDTO
from storefront.application.process_payment import ProcessPaymentCallbackUseCase, PaymentCallbackDTO
from storefront.application.create_order import CreateOrderUseCase, CreateOrderDTO
from storefront.application.get_order import (
    GetOrderUseCase, ListOrdersUseCase, GetOrderStatsUseCase, GetCategoryTreeUseCase
)
from storefront.application.update_status import UpdateOrderStatusUseCase
from storefront.application.cart_clearing import ClearCartUseCase, CheckCartClearingUseCase
from storefront.application.notifications import OrderEmailRenderer, OrderNotificationDispatcher
from storefront.application.process_outbox import ProcessOutboxEventsUseCase
from storefront.domain.models import OrderStatus
from storefront.domain.exceptions import (
    AuthenticationError, ConfigurationError, NotFoundError, PersistenceError, ValidationError
)
from storefront.infrastructure.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

router = APIRouter()
security = HTTPBasic()

ERRORS = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


# Фабрики для создания use cases
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_uow(request: Request) -> UnitOfWork:
    return UnitOfWork(request.app.state.session_factory)


def get_outbox_processor(
    request: Request,
    uow: UnitOfWork = Depends(get_uow),
    settings: Settings = Depends(get_settings)
):
    dispatcher = OrderNotificationDispatcher(
        request.app.state.email_client,
        OrderEmailRenderer(settings.SITE_URL),
        settings.STORE_ORDERS_EMAIL
    )
    return ProcessOutboxEventsUseCase(
        uow, dispatcher, settings.OUTBOX_MAX_ATTEMPTS, settings.OUTBOX_VISIBILITY_TIMEOUT
    )


def get_stage_pending_use_case(uow: UnitOfWork = Depends(get_uow)):
    return StagePendingOrderUseCase(uow)


def get_payment_session_use_case(
    settings: Settings = Depends(get_settings),
    stage_pending: StagePendingOrderUseCase = Depends(get_stage_pending_use_case)
):
    return CreatePaymentSessionUseCase(
        public_key=settings.LIQPAY_PUBLIC_KEY,
        private_key=settings.LIQPAY_PRIVATE_KEY,
        site_url=settings.SITE_URL,
        checkout_url=settings.LIQPAY_CHECKOUT_URL,
        stage_pending=stage_pending
    )


def get_process_payment_use_case(
    uow: UnitOfWork = Depends(get_uow),
    settings: Settings = Depends(get_settings),
    outbox: ProcessOutboxEventsUseCase = Depends(get_outbox_processor)
):
    return ProcessPaymentCallbackUseCase(uow, settings.LIQPAY_PRIVATE_KEY, outbox)


def get_create_order_use_case(
    uow: UnitOfWork = Depends(get_uow),
    outbox: ProcessOutboxEventsUseCase = Depends(get_outbox_processor)
):
    return CreateOrderUseCase(uow, outbox)


def get_get_order_use_case(uow: UnitOfWork = Depends(get_uow)):
    return GetOrderUseCase(uow)


def get_list_orders_use_case(uow: UnitOfWork = Depends(get_uow)):
    return ListOrdersUseCase(uow)


def get_stats_use_case(uow: UnitOfWork = Depends(get_uow)):
    return GetOrderStatsUseCase(uow)


def get_categories_use_case(uow: UnitOfWork = Depends(get_uow)):
    return GetCategoryTreeUseCase(uow)


def get_update_status_use_case(
    uow: UnitOfWork = Depends(get_uow),
    outbox: ProcessOutboxEventsUseCase = Depends(get_outbox_processor)
):
    return UpdateOrderStatusUseCase(uow, outbox)


def get_clear_cart_use_case(uow: UnitOfWork = Depends(get_uow)):
    return ClearCartUseCase(uow)


def get_check_cart_use_case(uow: UnitOfWork = Depends(get_uow)):
    return CheckCartClearingUseCase(uow)


def require_admin(
    credentials: HTTPBasicCredentials = Depends(security),
    settings: Settings = Depends(get_settings)
) -> str:
    """HTTP Basic для админки; без настроенных учётных данных доступ закрыт"""
    configured = bool(settings.ADMIN_USERNAME and settings.ADMIN_PASSWORD)
    username_ok = secrets.compare_digest(
        credentials.username.encode("utf-8"), settings.ADMIN_USERNAME.encode("utf-8")
    )
    password_ok = secrets.compare_digest(
        credentials.password.encode("utf-8"), settings.ADMIN_PASSWORD.encode("utf-8")
    )
    if not (configured and username_ok and password_ok):
        logger.warning(f"Отказ в доступе к админке для '{credentials.username}'")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Basic"}
        )
    return credentials.username


async def _callback_fields(request: Request) -> PaymentCallbackDTO:
    """LiqPay шлёт form-urlencoded, но принимаем и multipart, и JSON"""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
    else:
        body = dict(await request.form())
    return PaymentCallbackDTO(
        data=body.get("data") if isinstance(body.get("data"), str) else None,
        signature=body.get("signature") if isinstance(body.get("signature"), str) else None
    )


@router.post("/payment", responses=ERRORS)
async def create_payment(
    payload: PaymentRequest,
    use_case: CreatePaymentSessionUseCase = Depends(get_payment_session_use_case)
):
    """Подписанная платёжная сессия LiqPay"""
    try:
        session = await use_case(CreatePaymentSessionDTO(
            amount=payload.amount,
            description=payload.description,
            order_id=payload.order_id,
            currency=payload.currency,
            customer_data=payload.domain_customer(),
            items=payload.domain_items()
        ))
        return {
            "success": True,
            "data": session.data,
            "signature": session.signature,
            "orderId": session.order_id,
            "checkoutUrl": session.checkout_url
        }
    except ValidationError as e:
        return _error(400, str(e))
    except ConfigurationError as e:
        return _error(500, str(e))
    except PersistenceError:
        return _error(500, "Failed to save pending order")


@router.post("/order/create-pending", responses=ERRORS)
async def create_pending_order(
    payload: CreatePendingOrderRequest,
    use_case: StagePendingOrderUseCase = Depends(get_stage_pending_use_case)
):
    """Снимок корзины до подтверждения оплаты"""
    try:
        pending = await use_case(StagePendingOrderDTO(
            order_id=payload.order_id,
            customer_data=payload.domain_customer(),
            items=payload.domain_items(),
            total_amount=payload.total_amount
        ))
        return {"success": True, "orderId": pending.id, "status": pending.status.value}
    except ValidationError as e:
        return _error(400, str(e))
    except PersistenceError:
        return _error(500, "Failed to create pending order")


@router.post("/payment-callback", responses=ERRORS)
async def payment_callback(
    request: Request,
    use_case: ProcessPaymentCallbackUseCase = Depends(get_process_payment_use_case)
):
    """Обработка callback от LiqPay"""
    try:
        result = await use_case(await _callback_fields(request))
        return {
            "success": True,
            "orderId": result.order_id,
            "action": result.action,
            "processed": result.action in ("created", "updated")
        }
    except (ValidationError, AuthenticationError) as e:
        return _error(400, str(e))
    except ConfigurationError as e:
        return _error(500, str(e))
    except PersistenceError as e:
        # 500: LiqPay повторит callback
        logger.error(f"Callback не обработан: {e}")
        return _error(500, "Failed to process payment callback")


@router.get("/check-payment-status", responses=ERRORS)
async def check_payment_status(
    order_id: Optional[str] = Query(default=None, alias="orderId"),
    use_case: GetOrderUseCase = Depends(get_get_order_use_case)
):
    if not order_id:
        return _error(400, "Order ID is required")
    try:
        order = await use_case(order_id)
        return {"success": True, "exists": True, "order": OrderStatusResponse.from_domain(order)}
    except NotFoundError:
        return {"success": False, "exists": False, "message": "Order not found"}
    except PersistenceError:
        return _error(500, "Failed to check payment status")


@router.get("/order-success", responses=ERRORS)
async def order_success(
    order_id: Optional[str] = Query(default=None, alias="orderId"),
    use_case: GetOrderUseCase = Depends(get_get_order_use_case)
):
    """Полная проекция заказа для страницы успешной оплаты"""
    if not order_id:
        return _error(400, "Order ID is required")
    try:
        order = await use_case(order_id)
        return {"success": True, "order": OrderResponse.from_domain(order)}
    except NotFoundError:
        return _error(404, "Order not found")
    except PersistenceError:
        return _error(500, "Failed to load order")


@router.post("/create-order-after-payment", responses=ERRORS)
async def create_order_after_payment(
    payload: CreateOrderRequest,
    use_case: CreateOrderUseCase = Depends(get_create_order_use_case)
):
    try:
        order = await use_case(CreateOrderDTO(
            order_id=payload.order_id,
            customer_data=payload.domain_customer(),
            items=payload.domain_items(),
            total_amount=payload.total if payload.total is not None else payload.total_amount,
            payment_method=payload.payment_method
        ))
        return {"success": True, "orderId": order.id, "order": OrderResponse.from_domain(order)}
    except ValidationError as e:
        return _error(400, str(e))
    except PersistenceError:
        return _error(500, "Failed to create order")


@router.post("/cart/clear", responses=ERRORS)
async def clear_cart(
    payload: CartClearRequest,
    use_case: ClearCartUseCase = Depends(get_clear_cart_use_case)
):
    try:
        event = await use_case(payload.order_id)
        return {"success": True, "clearingEvent": ClearingEventResponse.from_domain(event)}
    except ValidationError as e:
        return _error(400, str(e))
    except PersistenceError:
        return _error(500, "Failed to record cart clearing")


@router.get("/check-cart-clearing", responses=ERRORS)
async def check_cart_clearing(
    order_id: Optional[str] = Query(default=None, alias="orderId"),
    use_case: CheckCartClearingUseCase = Depends(get_check_cart_use_case)
):
    try:
        event = await use_case(order_id)
    except ValidationError as e:
        return _error(400, str(e), shouldClear=False, clearingEvent=None)
    return {
        "shouldClear": event is not None,
        "clearingEvent": ClearingEventResponse.from_domain(event) if event else None
    }


@router.get("/orders", responses=ERRORS)
async def list_orders(
    status: Optional[OrderStatus] = None,
    _: str = Depends(require_admin),
    use_case: ListOrdersUseCase = Depends(get_list_orders_use_case)
):
    try:
        orders = await use_case(status)
        return {"success": True, "orders": [OrderResponse.from_domain(order) for order in orders]}
    except PersistenceError:
        return _error(500, "Failed to fetch orders")


@router.patch("/orders/{order_id}/status", responses=ERRORS)
async def update_order_status(
    order_id: str,
    payload: StatusUpdateRequest,
    _: str = Depends(require_admin),
    use_case: UpdateOrderStatusUseCase = Depends(get_update_status_use_case)
):
    try:
        order = await use_case(order_id, payload.status, payload.payment_status)
        return {"success": True, "order": OrderResponse.from_domain(order)}
    except NotFoundError:
        return _error(404, "Order not found")
    except ValidationError as e:
        return _error(400, str(e))
    except PersistenceError:
        return _error(500, "Failed to update order status")


@router.get("/stats", responses=ERRORS)
async def order_stats(
    _: str = Depends(require_admin),
    use_case: GetOrderStatsUseCase = Depends(get_stats_use_case)
):
    try:
        stats = await use_case()
        return {"success": True, "stats": StatsResponse.from_domain(stats)}
    except PersistenceError:
        return _error(500, "Failed to fetch stats")


@router.get("/categories", responses=ERRORS)
async def categories(use_case: GetCategoryTreeUseCase = Depends(get_categories_use_case)):
    try:
        tree = await use_case()
        return {"success": True, "categories": [CategoryResponse.from_domain(c) for c in tree]}
    except PersistenceError:
        return _error(500, "Failed to fetch categories")
