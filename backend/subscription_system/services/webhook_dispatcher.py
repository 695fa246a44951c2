"""Webhook dispatch: verify, decode, deduplicate, route.

Handlers are looked up by event type in a plain dict. Unknown event types are
acknowledged without doing anything, so new provider event types never fail
a delivery.

Each event id is claimed in the store before its handler runs. A redelivery
of a claimed id is acknowledged without re-running the handler; a handler
failure releases the claim so the provider's retry is processed. The store
writes themselves are idempotent by key, which covers a redelivery racing
the original delivery.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

import structlog

from subscription_system.billing.gateway import StripeGateway
from subscription_system.core.exceptions import DataIntegrityError, PayloadError, SubscriptionSystemError
from subscription_system.domain.subscriptions import (
    extract_user_id,
    from_timestamp,
    snapshot_from_subscription,
)
from subscription_system.store.base import SubscriptionStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WebhookEvent:
    id: str
    type: str
    created: datetime | None
    data_object: dict[str, Any]

    @classmethod
    def from_envelope(cls, envelope: dict[str, Any]) -> "WebhookEvent":
        event_id = envelope.get("id")
        event_type = envelope.get("type")
        data_object = (envelope.get("data") or {}).get("object")
        if not event_id or not event_type or not isinstance(data_object, dict):
            raise PayloadError("Webhook body is not a Stripe event envelope")
        return cls(
            id=event_id,
            type=event_type,
            created=from_timestamp(envelope.get("created")),
            data_object=data_object,
        )


class DispatchOutcome(StrEnum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


EventHandler = Callable[[WebhookEvent], Awaitable[None]]


class WebhookDispatcher:
    def __init__(self, store: SubscriptionStore, webhook_secret: str):
        self.store = store
        self.webhook_secret = webhook_secret
        self.handlers: dict[str, EventHandler] = {
            "customer.created": self.handle_customer_created,
            "customer.subscription.created": self.handle_subscription_created,
            "customer.subscription.updated": self.handle_subscription_updated,
            "customer.subscription.deleted": self.handle_subscription_deleted,
            "checkout.session.completed": self.handle_checkout_completed,
        }

    def register(self, event_type: str, handler: EventHandler) -> None:
        self.handlers[event_type] = handler

    async def dispatch(self, payload: bytes, signature: str | None) -> DispatchOutcome:
        """Verify and apply one webhook delivery.

        Raises AuthError (bad signature, nothing is read or written),
        PayloadError, DataIntegrityError or StoreError. Returns only after the
        handler has finished.
        """
        envelope = StripeGateway.construct_event(payload, signature, self.webhook_secret)
        event = WebhookEvent.from_envelope(envelope)
        log = logger.bind(event_id=event.id, event_type=event.type)

        handler = self.handlers.get(event.type)
        if handler is None:
            log.info("stripe_webhook_ignored")
            return DispatchOutcome.IGNORED

        if not await self.store.claim_event(event.id, event.type):
            log.info("stripe_duplicate_event_ignored")
            return DispatchOutcome.DUPLICATE

        log.info("stripe_webhook_received")
        try:
            await handler(event)
        except Exception as exc:
            log.error("stripe_webhook_failed", error=str(exc), error_type=type(exc).__name__)
            await self._release(event.id)
            raise

        return DispatchOutcome.PROCESSED

    async def _release(self, event_id: str) -> None:
        try:
            await self.store.release_event(event_id)
        except SubscriptionSystemError as exc:
            # The redelivery will be treated as a duplicate until the claim is removed
            logger.error("stripe_event_release_failed", event_id=event_id, error=str(exc))

    # ── Handlers ────────────────────────────────────────────────────

    async def handle_customer_created(self, event: WebhookEvent) -> None:
        customer = event.data_object
        customer_id = customer.get("id")
        if not customer_id:
            raise DataIntegrityError("Customer object has no id")
        user_id = extract_user_id(customer)
        await self.store.upsert_customer(customer_id, user_id)

    async def handle_subscription_created(self, event: WebhookEvent) -> None:
        subscription = event.data_object
        user_id = extract_user_id(subscription)
        snapshot = snapshot_from_subscription(subscription, observed_at=event.created)
        await self.store.upsert_subscription(snapshot, user_id)

    async def handle_subscription_updated(self, event: WebhookEvent) -> None:
        subscription = event.data_object
        user_id = extract_user_id(subscription)
        snapshot = snapshot_from_subscription(subscription, observed_at=event.created)
        await self.store.update_subscription(snapshot, user_id)

    async def handle_subscription_deleted(self, event: WebhookEvent) -> None:
        subscription = event.data_object
        user_id = extract_user_id(subscription)
        snapshot = snapshot_from_subscription(subscription, observed_at=event.created)
        await self.store.update_subscription(snapshot.canceled(), user_id)

    async def handle_checkout_completed(self, event: WebhookEvent) -> None:
        session = event.data_object
        user_id = extract_user_id(session)
        # One-off purchase fulfilment hooks in here
        logger.info(
            "checkout_completed",
            user_id=user_id,
            session_id=session.get("id"),
            mode=session.get("mode"),
        )
