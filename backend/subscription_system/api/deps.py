"""FastAPI dependency providers for the billing routes."""

import structlog
from fastapi import Depends, HTTPException, Request

from subscription_system.billing.gateway import StripeGateway
from subscription_system.core.config import BillingClientConfig, get_settings
from subscription_system.services.billing_service import BillingService
from subscription_system.services.webhook_dispatcher import WebhookDispatcher
from subscription_system.store.base import SubscriptionStore

logger = structlog.get_logger(__name__)


def get_store(request: Request) -> SubscriptionStore:
    """The store created by the application lifespan."""
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise RuntimeError("Subscription store not initialized.")
    return store


def get_gateway() -> StripeGateway:
    return StripeGateway(BillingClientConfig.from_settings(get_settings()))


def get_billing_service(
    gateway: StripeGateway = Depends(get_gateway),
    store: SubscriptionStore = Depends(get_store),
) -> BillingService:
    return BillingService(gateway, store, get_settings())


def get_webhook_dispatcher(store: SubscriptionStore = Depends(get_store)) -> WebhookDispatcher:
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        logger.error("stripe_webhook_secret_missing")
        raise HTTPException(status_code=503, detail="Stripe webhook endpoint is not configured")
    return WebhookDispatcher(store, settings.stripe_webhook_secret)
