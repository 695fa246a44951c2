"""Subscription store interface.

Implementations must make every write idempotent by key: replaying the same
customer or subscription write leaves exactly one record. Concurrent writers
are expected; implementations provide their own atomicity.
"""

from typing import Protocol

from subscription_system.domain.subscriptions import (
    CustomerRecord,
    SubscriptionRecord,
    SubscriptionSnapshot,
)


class SubscriptionStore(Protocol):
    async def upsert_customer(self, provider_customer_id: str, user_id: str) -> CustomerRecord:
        """Link a provider customer to a user.

        The first customer recorded for a user wins; a later, different
        customer id for the same user is not stored and the existing record
        is returned.
        """
        ...

    async def upsert_subscription(self, snapshot: SubscriptionSnapshot, user_id: str) -> SubscriptionRecord:
        """Record a newly created subscription.

        An existing record is only overwritten by a strictly newer snapshot;
        a creation replayed after an update leaves the update in place.
        """
        ...

    async def update_subscription(self, snapshot: SubscriptionSnapshot, user_id: str) -> SubscriptionRecord:
        """Apply an update; a subscription not seen before is created."""
        ...

    async def get_customer_by_user(self, user_id: str) -> CustomerRecord | None: ...

    async def get_subscription(self, provider_subscription_id: str) -> SubscriptionRecord | None: ...

    async def list_subscriptions_for_user(self, user_id: str) -> list[SubscriptionRecord]: ...

    async def claim_event(self, event_id: str, event_type: str | None = None) -> bool:
        """Return True if the event id is new (claimed), False if already claimed."""
        ...

    async def release_event(self, event_id: str) -> None:
        """Forget a claim so a redelivery of the event is processed again."""
        ...

    async def ping(self) -> bool: ...
