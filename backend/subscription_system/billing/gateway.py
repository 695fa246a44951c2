"""Stripe gateway: thin async wrapper over the Stripe SDK.

The API key comes from an immutable BillingClientConfig and is passed on each
request, so the module-level ``stripe.api_key`` is never touched. Every call
is bounded by the configured timeout, and SDK failures surface as
ProviderError.
"""

import asyncio
import json
from typing import Any, Awaitable, Mapping

import stripe
import structlog

from subscription_system.core.config import BillingClientConfig
from subscription_system.core.exceptions import (
    AuthError,
    ConfigurationError,
    PayloadError,
    ProviderError,
)
from subscription_system.domain.subscriptions import USER_ID_METADATA_KEY

logger = structlog.get_logger(__name__)


class StripeGateway:
    """Stripe calls used by the billing service and webhook dispatcher."""

    def __init__(self, config: BillingClientConfig):
        if not config.secret_key:
            logger.critical("stripe_secret_key_missing")
            raise ConfigurationError("Stripe secret key is not configured.")
        self.config = config

    def _request_options(self, **extra: Any) -> dict[str, Any]:
        options: dict[str, Any] = {
            "api_key": self.config.secret_key,
            "max_network_retries": self.config.max_network_retries,
        }
        options.update({k: v for k, v in extra.items() if v is not None})
        return options

    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.config.timeout_seconds)
        except TimeoutError as exc:
            logger.error("stripe_call_timeout", operation=operation, timeout=self.config.timeout_seconds)
            raise ProviderError(operation, "request timed out") from exc
        except stripe.StripeError as exc:
            message = getattr(exc, "user_message", None) or str(exc)
            logger.error("stripe_call_failed", operation=operation, error=message, error_type=type(exc).__name__)
            raise ProviderError(operation, message) from exc

    # ── Products and prices ─────────────────────────────────────────

    async def list_products(self) -> list[Mapping[str, Any]]:
        products = await self._call(
            "list_products",
            stripe.Product.list_async(expand=["data.default_price"], **self._request_options()),
        )
        return list(products.data)

    async def retrieve_price(self, price_id: str) -> Mapping[str, Any]:
        return await self._call(
            "retrieve_price",
            stripe.Price.retrieve_async(price_id, **self._request_options()),
        )

    # ── Customers and subscriptions ─────────────────────────────────

    async def create_customer(
        self,
        user_id: str,
        name: str | None = None,
        email: str | None = None,
    ) -> Mapping[str, Any]:
        params: dict[str, Any] = {"metadata": {USER_ID_METADATA_KEY: user_id}}
        if name:
            params["name"] = name
        if email:
            params["email"] = email
        return await self._call(
            "create_customer",
            stripe.Customer.create_async(
                **params,
                **self._request_options(idempotency_key=f"customer-create-{user_id}"),
            ),
        )

    async def create_subscription(self, customer_id: str, price_id: str, user_id: str) -> Mapping[str, Any]:
        """Subscribe a customer directly, without collecting a payment method."""
        return await self._call(
            "create_subscription",
            stripe.Subscription.create_async(
                customer=customer_id,
                items=[{"price": price_id, "quantity": 1}],
                metadata={USER_ID_METADATA_KEY: user_id},
                **self._request_options(),
            ),
        )

    async def list_active_subscriptions(self, customer_id: str) -> list[Mapping[str, Any]]:
        subscriptions = await self._call(
            "list_subscriptions",
            stripe.Subscription.list_async(customer=customer_id, status="active", **self._request_options()),
        )
        return list(subscriptions.data)

    # ── Hosted sessions ─────────────────────────────────────────────

    async def create_checkout_session(self, **params: Any) -> Mapping[str, Any]:
        params.setdefault("success_url", self.config.success_url)
        params.setdefault("cancel_url", self.config.cancel_url)
        return await self._call(
            "create_checkout_session",
            stripe.checkout.Session.create_async(**params, **self._request_options()),
        )

    async def create_portal_session(self, customer_id: str, return_url: str | None = None) -> Mapping[str, Any]:
        return await self._call(
            "create_portal_session",
            stripe.billing_portal.Session.create_async(
                customer=customer_id,
                return_url=return_url or self.config.host,
                **self._request_options(),
            ),
        )

    # ── Webhooks ────────────────────────────────────────────────────

    @staticmethod
    def construct_event(payload: bytes | str, signature: str | None, secret: str) -> dict[str, Any]:
        """Verify a webhook signature, then decode the body.

        Raises AuthError on a missing or mismatched signature (the body is not
        looked at) and PayloadError when a correctly signed body is not a JSON
        event envelope.
        """
        if not signature:
            raise AuthError("Missing Stripe-Signature header")

        try:
            text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as exc:
            # Stripe signs UTF-8 JSON; any other body cannot carry a valid signature
            raise AuthError("Invalid webhook signature") from exc

        try:
            stripe.WebhookSignature.verify_header(text, signature, secret, stripe.Webhook.DEFAULT_TOLERANCE)
        except stripe.SignatureVerificationError as exc:
            raise AuthError("Invalid webhook signature") from exc

        try:
            event = json.loads(text)
        except ValueError as exc:
            raise PayloadError("Webhook body is not valid JSON") from exc
        if not isinstance(event, dict):
            raise PayloadError("Webhook body is not an event object")
        return event
