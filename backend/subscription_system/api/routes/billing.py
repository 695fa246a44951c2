"""Billing routes: products, customers, subscriptions, portal, one-off payments, webhooks."""

from typing import TypeVar

import structlog
from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, Request

from subscription_system.api.deps import get_billing_service, get_webhook_dispatcher
from subscription_system.api.schemas.billing import (
    CustomerResponse,
    PaymentRequest,
    ProductPaymentRequest,
    ProductResponse,
    SubscriptionStatusResponse,
    UrlResponse,
    WebhookAck,
)
from subscription_system.core.auth import AuthenticatedUser, require_user
from subscription_system.core.config import get_settings
from subscription_system.domain.result import Failure, Result, Success
from subscription_system.services.billing_service import BillingService
from subscription_system.services.webhook_dispatcher import WebhookDispatcher

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/stripe")

T = TypeVar("T")


def _unwrap(result: Result[T], status_code: int, message: str) -> T:
    """Return the success value or raise an HTTPException carrying the error code."""
    match result:
        case Success(value=value):
            return value
        case Failure(error=error):
            raise HTTPException(
                status_code=status_code,
                detail={"code": error.code, "message": message, "error": str(error)},
            )


# ── Endpoints ───────────────────────────────────────────────────────


@router.get("/get-all-products", response_model=list[ProductResponse])
async def get_all_products(
    user: AuthenticatedUser = Depends(require_user),
    service: BillingService = Depends(get_billing_service),
):
    """List the provider's products with their default price."""
    products = _unwrap(await service.get_all_products(), 500, "An error occurred while fetching products")
    if not products:
        raise HTTPException(status_code=400, detail="Unable to fetch the product details")
    return [
        ProductResponse(default_price_id=p.default_price_id, name=p.name, description=p.description)
        for p in products
    ]


@router.post("/create-customer", response_model=CustomerResponse)
async def create_customer(
    user_id: str = Query(..., alias="userId", min_length=1),
    service: BillingService = Depends(get_billing_service),
):
    """Return the user's provider customer id, creating the customer on first call."""
    customer_id = _unwrap(await service.create_customer(user_id), 400, "Unable to create the customer")
    return CustomerResponse(customer_id=customer_id)


@router.post("/make-payment", response_model=UrlResponse)
async def subscribe_product(
    body: PaymentRequest,
    user: AuthenticatedUser = Depends(require_user),
    service: BillingService = Depends(get_billing_service),
):
    """Subscribe to a price; returns the success URL (free plan) or a checkout URL."""
    result = await service.subscribe_product_plan(body.price_id, body.customer_id, user.user_id)
    return UrlResponse(url=_unwrap(result, 500, "An error occurred while making payment"))


@router.post("/create-customer-portal", response_model=UrlResponse)
async def create_customer_portal(
    customer_id: str = Query(..., alias="customerId", min_length=1),
    service: BillingService = Depends(get_billing_service),
):
    """Open a billing-portal session for the customer."""
    url = _unwrap(
        await service.customer_portal(customer_id),
        500,
        "An error occurred while accessing customer portal",
    )
    return UrlResponse(url=url)


@router.get("/get-customer-id", response_model=SubscriptionStatusResponse)
async def get_customer_subscription_details(
    user: AuthenticatedUser = Depends(require_user),
    service: BillingService = Depends(get_billing_service),
):
    """Status of the caller's active subscription."""
    status = _unwrap(
        await service.get_subscription_for_user(user.user_id),
        500,
        "An error occurred while fetching the subscription",
    )
    return SubscriptionStatusResponse(
        subscription_id=status.subscription_id,
        subscription_status=status.subscription_status,
        current_period_start=status.current_period_start,
        current_period_end=status.current_period_end,
    )


@router.get("/payment-product", response_model=UrlResponse)
async def payment_for_product(
    body: ProductPaymentRequest = Body(...),
    user: AuthenticatedUser = Depends(require_user),
    service: BillingService = Depends(get_billing_service),
):
    """Create a one-off payment checkout session."""
    max_quantity = get_settings().one_off_max_quantity
    if body.quantity > max_quantity:
        raise HTTPException(status_code=400, detail=f"You can add maximum {max_quantity} tasks")

    result = await service.payment_product(body.customer_id, body.price, body.quantity, user.user_id)
    return UrlResponse(url=_unwrap(result, 500, "An error occurred while creating the payment"))


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
):
    """Receive a Stripe webhook; answers 200 only once the event is applied."""
    payload = await request.body()
    outcome = await dispatcher.dispatch(payload, stripe_signature)
    return WebhookAck(outcome=outcome.value)
