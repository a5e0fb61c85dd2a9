"""
API routes for the shop: catalog, orders, payments, webhooks, dashboard and auth.

Domain errors propagate to the exception handlers in api.main, which turn
them into the error envelope.
"""
import time
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from core.exceptions import PaymentVerificationError, ServiceError
from monitoring.metrics import metrics

from .dependencies import (
    Services,
    authenticate_admin,
    check_admin_credentials,
    get_services,
    require_admin,
)
from .schemas import (
    ApiResponse,
    CreateOrderRequest,
    CreatePaymentRequest,
    DashboardStatsResponse,
    ErrorResponse,
    HealthCheckResponse,
    LoginRequest,
    OrderResponse,
    PaymentCheckoutResponse,
    PaymentResponse,
    ProductRequest,
    ProductResponse,
    TokenResponse,
    UpdateStatusRequest,
    VerificationResponse,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

# Error envelope shown in the OpenAPI document for every domain route
ERROR_RESPONSES: Dict[int, Dict[str, Any]] = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse, "description": "Validation failed"},
    status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse, "description": "Not authorized"},
    status.HTTP_404_NOT_FOUND: {"model": ErrorResponse, "description": "Not found"},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse, "description": "Server error"},
}

# Create routers
catalog_router = APIRouter(prefix="/products", tags=["products"], responses=ERROR_RESPONSES)
order_router = APIRouter(prefix="/orders", tags=["orders"], responses=ERROR_RESPONSES)
payment_router = APIRouter(prefix="/payments", tags=["payments"], responses=ERROR_RESPONSES)
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"], responses=ERROR_RESPONSES)
dashboard_router = APIRouter(prefix="/dashboard", tags=["dashboard"], responses=ERROR_RESPONSES)
auth_router = APIRouter(prefix="/auth", tags=["auth"], responses=ERROR_RESPONSES)
monitoring_router = APIRouter(tags=["monitoring"])


# Catalog


@catalog_router.get(
    "",
    response_model=ApiResponse[List[ProductResponse]],
    summary="List products",
    description="Available products, newest first. Admins may include unavailable ones.",
)
async def list_products(
    include_unavailable: bool = Query(default=False, alias="includeUnavailable"),
    authorization: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
) -> ApiResponse[List[ProductResponse]]:
    if include_unavailable:
        authenticate_admin(services, authorization)

    products = await services.catalog.list_products(available_only=not include_unavailable)
    return ApiResponse(data=[ProductResponse.model_validate(p) for p in products])


@catalog_router.get("/{product_id}", response_model=ApiResponse[ProductResponse])
async def get_product(
    product_id: str, services: Services = Depends(get_services)
) -> ApiResponse[ProductResponse]:
    product = await services.catalog.get_product(product_id)
    return ApiResponse(data=ProductResponse.model_validate(product))


@catalog_router.post(
    "",
    response_model=ApiResponse[ProductResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
async def create_product(
    request: ProductRequest, services: Services = Depends(get_services)
) -> ApiResponse[ProductResponse]:
    product = await services.catalog.create_product(
        title=request.title,
        description=request.description,
        category=request.category,
        price=request.price,
        quantity=request.quantity,
        available=request.available,
        images=request.images,
    )
    return ApiResponse(data=ProductResponse.model_validate(product), message="Product created")


@catalog_router.put(
    "/{product_id}",
    response_model=ApiResponse[ProductResponse],
    dependencies=[Depends(require_admin)],
)
async def update_product(
    product_id: str,
    request: ProductRequest,
    services: Services = Depends(get_services),
) -> ApiResponse[ProductResponse]:
    product = await services.catalog.update_product(
        product_id,
        title=request.title,
        description=request.description,
        category=request.category,
        price=request.price,
        quantity=request.quantity,
        available=request.available,
        images=request.images,
    )
    return ApiResponse(data=ProductResponse.model_validate(product), message="Product updated")


@catalog_router.delete(
    "/{product_id}",
    response_model=ApiResponse[Dict[str, Any]],
    dependencies=[Depends(require_admin)],
)
async def delete_product(
    product_id: str, services: Services = Depends(get_services)
) -> ApiResponse[Dict[str, Any]]:
    await services.catalog.delete_product(product_id)
    return ApiResponse(data={"id": product_id}, message="Product deleted")


# Orders


@order_router.post(
    "",
    response_model=ApiResponse[OrderResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create an order",
)
async def create_order(
    request: CreateOrderRequest, services: Services = Depends(get_services)
) -> ApiResponse[OrderResponse]:
    items = None
    if request.items is not None:
        items = [item.model_dump() for item in request.items]

    order = await services.orders.create_order(
        customer_name=request.customer_name,
        email=request.email,
        phone=request.phone,
        location=request.location,
        items=items,
        total=request.total,
        subtotal=request.subtotal,
        delivery_fee=request.delivery_fee,
        latitude=request.latitude,
        longitude=request.longitude,
        delivery_notes=request.delivery_notes,
    )
    metrics.record_order_created(order.total)
    return ApiResponse(data=OrderResponse.model_validate(order), message="Order created")


@order_router.get(
    "",
    response_model=ApiResponse[List[OrderResponse]],
    dependencies=[Depends(require_admin)],
)
async def list_orders(
    services: Services = Depends(get_services),
) -> ApiResponse[List[OrderResponse]]:
    orders = await services.orders.list_orders()
    return ApiResponse(data=[OrderResponse.model_validate(o) for o in orders])


@order_router.get(
    "/{order_id}",
    response_model=ApiResponse[OrderResponse],
    dependencies=[Depends(require_admin)],
)
async def get_order(
    order_id: str, services: Services = Depends(get_services)
) -> ApiResponse[OrderResponse]:
    order = await services.orders.get_order(order_id)
    return ApiResponse(data=OrderResponse.model_validate(order))


@order_router.get(
    "/{order_id}/payments",
    response_model=ApiResponse[List[PaymentResponse]],
    dependencies=[Depends(require_admin)],
)
async def list_order_payments(
    order_id: str, services: Services = Depends(get_services)
) -> ApiResponse[List[PaymentResponse]]:
    await services.orders.get_order(order_id)
    payments = await services.payments.list_payments_for_order(order_id)
    return ApiResponse(data=[PaymentResponse.model_validate(p) for p in payments])


@order_router.patch(
    "/{order_id}/status",
    response_model=ApiResponse[OrderResponse],
    dependencies=[Depends(require_admin)],
)
async def update_order_status(
    order_id: str,
    request: UpdateStatusRequest,
    services: Services = Depends(get_services),
) -> ApiResponse[OrderResponse]:
    order = await services.orders.update_status(order_id, request.status)
    metrics.record_order_status_change(order.status)
    return ApiResponse(data=OrderResponse.model_validate(order), message="Order status updated")


# Payments


@payment_router.post(
    "/create",
    response_model=ApiResponse[PaymentCheckoutResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create a payment",
)
async def create_payment(
    request: CreatePaymentRequest, services: Services = Depends(get_services)
) -> ApiResponse[PaymentCheckoutResponse]:
    checkout = await services.payments.create_payment(
        order_id=request.order_id,
        amount=request.amount,
        currency=request.currency,
    )
    metrics.record_payment_created(checkout.payment.currency)
    return ApiResponse(
        data=PaymentCheckoutResponse(
            payment_id=checkout.payment_id,
            transaction_id=checkout.transaction_id,
            checkout_url=checkout.checkout_url,
        ),
        message="Payment created",
    )


@payment_router.get("/{payment_id}", response_model=ApiResponse[PaymentResponse])
async def get_payment(
    payment_id: str, services: Services = Depends(get_services)
) -> ApiResponse[PaymentResponse]:
    payment = await services.payments.get_payment(payment_id)
    return ApiResponse(data=PaymentResponse.model_validate(payment))


@payment_router.post(
    "/verify/{order_id}",
    response_model=ApiResponse[VerificationResponse],
    summary="Verify the pending payment of an order",
)
async def verify_payment(
    order_id: str, services: Services = Depends(get_services)
) -> ApiResponse[VerificationResponse]:
    """
    Verify a payment and confirm its order.

    Calling this again after a success returns the same state without
    writing anything.
    """
    start_time = time.time()
    try:
        outcome = await services.workflow.verify_payment(order_id)
    except PaymentVerificationError:
        metrics.record_verification("rejected", time.time() - start_time)
        raise
    except ServiceError:
        metrics.record_verification("error", time.time() - start_time)
        raise

    result = "already_verified" if outcome.already_verified else "verified"
    metrics.record_verification(result, time.time() - start_time)

    return ApiResponse(
        data=VerificationResponse(
            order=OrderResponse.model_validate(outcome.order),
            payment=PaymentResponse.model_validate(outcome.payment) if outcome.payment else None,
            already_verified=outcome.already_verified,
        ),
        message="Payment already verified" if outcome.already_verified else "Payment verified",
    )


# Webhooks


@webhook_router.post(
    "/{gateway}",
    response_model=ApiResponse[WebhookResponse],
    summary="Gateway webhook",
    description="Signed asynchronous payment notification",
)
async def gateway_webhook(
    gateway: str,
    request: Request,
    x_webhook_signature: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
) -> ApiResponse[WebhookResponse]:
    """
    Handle a gateway webhook.

    The acknowledgement is only sent after the resulting change has been
    committed; redelivered events are acknowledged without a second change.
    """
    start_time = time.time()
    payload = await request.body()

    try:
        event = services.webhooks.verify_signature(gateway, payload, x_webhook_signature)
    except ServiceError:
        metrics.record_webhook_event(gateway, "", "rejected", time.time() - start_time)
        raise

    result = await services.webhooks.process_event(gateway, event)
    metrics.record_webhook_event(
        gateway, str(event.get("type") or ""), result["status"], time.time() - start_time
    )
    return ApiResponse(data=WebhookResponse.model_validate(result))


# Dashboard


@dashboard_router.get(
    "/stats",
    response_model=ApiResponse[DashboardStatsResponse],
    dependencies=[Depends(require_admin)],
)
async def dashboard_stats(
    services: Services = Depends(get_services),
) -> ApiResponse[DashboardStatsResponse]:
    summary = await services.reporting.dashboard_summary()
    return ApiResponse(data=DashboardStatsResponse.model_validate(summary))


# Auth


@auth_router.post("/login", response_model=ApiResponse[TokenResponse])
async def login(
    request: LoginRequest, services: Services = Depends(get_services)
) -> ApiResponse[TokenResponse]:
    check_admin_credentials(services, request.username, request.password)
    issued = services.signer.issue(services.settings.admin_username)
    logger.info("admin_logged_in", username=services.settings.admin_username)
    return ApiResponse(data=TokenResponse(**issued), message="Login successful")


# Monitoring


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return await services.health.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Checks that the database answers",
)
async def readiness(services: Services = Depends(get_services)) -> Dict[str, Any]:
    result = await services.health.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result
