"""In-process SubscriptionStore for local development and tests."""

import asyncio
from dataclasses import replace
from datetime import UTC, datetime

import structlog

from subscription_system.core.exceptions import DataIntegrityError
from subscription_system.domain.subscriptions import (
    CustomerRecord,
    SubscriptionRecord,
    SubscriptionSnapshot,
    SubscriptionStatus,
    reconcile,
    superseded_by,
)

logger = structlog.get_logger(__name__)


class InMemorySubscriptionStore:
    """Dict-backed store; one asyncio.Lock makes each write atomic."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self.customers: dict[str, CustomerRecord] = {}
        self.subscriptions: dict[str, SubscriptionRecord] = {}
        self.claimed_events: dict[str, str | None] = {}

    async def upsert_customer(self, provider_customer_id: str, user_id: str) -> CustomerRecord:
        async with self._lock:
            existing = self.customers.get(user_id)
            if existing is not None:
                if existing.provider_customer_id != provider_customer_id:
                    logger.warning(
                        "customer_already_linked",
                        user_id=user_id,
                        existing_customer_id=existing.provider_customer_id,
                        rejected_customer_id=provider_customer_id,
                    )
                return existing

            for other in self.customers.values():
                if other.provider_customer_id == provider_customer_id:
                    raise DataIntegrityError(
                        f"Customer {provider_customer_id} is already linked to another user"
                    )

            record = CustomerRecord(
                user_id=user_id,
                provider_customer_id=provider_customer_id,
                created_at=datetime.now(UTC),
            )
            self.customers[user_id] = record
            logger.info("customer_upserted", user_id=user_id, customer_id=provider_customer_id)
            return record

    async def upsert_subscription(self, snapshot: SubscriptionSnapshot, user_id: str) -> SubscriptionRecord:
        return await self._apply(snapshot, user_id, creating=True)

    async def update_subscription(self, snapshot: SubscriptionSnapshot, user_id: str) -> SubscriptionRecord:
        if snapshot.provider_subscription_id not in self.subscriptions:
            logger.info("subscription_update_before_create", subscription_id=snapshot.provider_subscription_id)
        return await self._apply(snapshot, user_id)

    async def _apply(
        self, snapshot: SubscriptionSnapshot, user_id: str, creating: bool = False
    ) -> SubscriptionRecord:
        async with self._lock:
            existing = self.subscriptions.get(snapshot.provider_subscription_id)
            record = reconcile(existing, snapshot, user_id, creating=creating)
            if record is None:
                logger.info("subscription_stale_event_ignored", subscription_id=snapshot.provider_subscription_id)
                return replace(existing)

            for other in superseded_by(record, list(self.subscriptions.values())):
                other.status = SubscriptionStatus.CANCELED
                logger.warning(
                    "subscription_superseded",
                    user_id=user_id,
                    subscription_id=other.provider_subscription_id,
                    superseded_by=record.provider_subscription_id,
                )

            self.subscriptions[record.provider_subscription_id] = record
            logger.info(
                "subscription_upserted",
                user_id=user_id,
                subscription_id=record.provider_subscription_id,
                status=record.status.value,
            )
            return replace(record)

    async def get_customer_by_user(self, user_id: str) -> CustomerRecord | None:
        return self.customers.get(user_id)

    async def get_subscription(self, provider_subscription_id: str) -> SubscriptionRecord | None:
        record = self.subscriptions.get(provider_subscription_id)
        return replace(record) if record is not None else None

    async def list_subscriptions_for_user(self, user_id: str) -> list[SubscriptionRecord]:
        return [replace(r) for r in self.subscriptions.values() if r.user_id == user_id]

    async def claim_event(self, event_id: str, event_type: str | None = None) -> bool:
        async with self._lock:
            if event_id in self.claimed_events:
                return False
            self.claimed_events[event_id] = event_type
            return True

    async def release_event(self, event_id: str) -> None:
        async with self._lock:
            self.claimed_events.pop(event_id, None)

    async def ping(self) -> bool:
        return True
