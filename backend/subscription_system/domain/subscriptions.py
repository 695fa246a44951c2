"""Subscription domain types and provider-object mapping.

Pure functions, no I/O. Provider objects arrive as plain dicts decoded from
webhook bodies or SDK responses.
"""

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Mapping

from subscription_system.core.exceptions import DataIntegrityError

USER_ID_METADATA_KEY = "UserId"
NOT_SUBSCRIBED_STATUS = "not subscribed any plan"


class SubscriptionStatus(StrEnum):
    """Provider subscription statuses."""

    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    UNPAID = "unpaid"
    PAUSED = "paused"


@dataclass(frozen=True)
class CustomerRecord:
    user_id: str
    provider_customer_id: str
    created_at: datetime | None = None


@dataclass
class SubscriptionRecord:
    provider_subscription_id: str
    user_id: str
    status: SubscriptionStatus
    current_period_start: datetime | None
    current_period_end: datetime | None
    last_event_at: datetime | None = None

    @property
    def is_canceled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELED


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """A provider subscription as seen by one webhook event."""

    provider_subscription_id: str
    provider_customer_id: str | None
    status: SubscriptionStatus
    current_period_start: datetime | None
    current_period_end: datetime | None
    observed_at: datetime | None = None

    def canceled(self) -> "SubscriptionSnapshot":
        return replace(self, status=SubscriptionStatus.CANCELED)

    def is_older_than(self, moment: datetime | None) -> bool:
        """True when this snapshot predates ``moment`` (stale redelivery)."""
        if moment is None or self.observed_at is None:
            return False
        return self.observed_at < moment

    def is_newer_than(self, moment: datetime | None) -> bool:
        if moment is None or self.observed_at is None:
            return False
        return self.observed_at > moment


@dataclass(frozen=True)
class ProductSummary:
    default_price_id: str | None
    name: str
    description: str | None


@dataclass(frozen=True)
class SubscriptionStatusDTO:
    subscription_id: str
    subscription_status: str
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None


def from_timestamp(value: Any) -> datetime | None:
    """Convert a provider epoch-seconds timestamp to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def parse_status(value: Any) -> SubscriptionStatus:
    try:
        return SubscriptionStatus(value)
    except ValueError as exc:
        raise DataIntegrityError(f"Unknown subscription status: {value!r}") from exc


def extract_user_id(obj: Mapping[str, Any]) -> str:
    """Return the internal user id stored in a provider object's metadata.

    Raises DataIntegrityError when the metadata entry is missing or blank.
    """
    metadata = obj.get("metadata") or {}
    user_id = metadata.get(USER_ID_METADATA_KEY)
    if not user_id or not str(user_id).strip():
        raise DataIntegrityError(
            f"{obj.get('object', 'object')} {obj.get('id')} has no {USER_ID_METADATA_KEY} metadata"
        )
    return str(user_id)


def _period_bounds(subscription: Mapping[str, Any]) -> tuple[Any, Any]:
    start = subscription.get("current_period_start")
    end = subscription.get("current_period_end")
    if start is not None or end is not None:
        return start, end

    # Newer API versions carry the billing period on each subscription item
    items = (subscription.get("items") or {}).get("data") or []
    if items:
        return items[0].get("current_period_start"), items[0].get("current_period_end")
    return None, None


def snapshot_from_subscription(
    subscription: Mapping[str, Any],
    observed_at: datetime | None = None,
) -> SubscriptionSnapshot:
    """Map a provider subscription object to a SubscriptionSnapshot."""
    subscription_id = subscription.get("id")
    if not subscription_id:
        raise DataIntegrityError("Subscription object has no id")

    customer = subscription.get("customer")
    if isinstance(customer, Mapping):
        customer = customer.get("id")

    start, end = _period_bounds(subscription)
    return SubscriptionSnapshot(
        provider_subscription_id=subscription_id,
        provider_customer_id=customer,
        status=parse_status(subscription.get("status")),
        current_period_start=from_timestamp(start),
        current_period_end=from_timestamp(end),
        observed_at=observed_at,
    )


def status_dto_from_subscription(subscription: Mapping[str, Any] | None) -> SubscriptionStatusDTO:
    """Map the first active subscription (or None) to the client status DTO."""
    if subscription is None:
        return SubscriptionStatusDTO(subscription_id="", subscription_status=NOT_SUBSCRIBED_STATUS)

    start, end = _period_bounds(subscription)
    return SubscriptionStatusDTO(
        subscription_id=subscription["id"],
        subscription_status=subscription.get("status") or "",
        current_period_start=from_timestamp(start),
        current_period_end=from_timestamp(end),
    )


def product_summary(product: Mapping[str, Any]) -> ProductSummary:
    """Map a provider product to {default_price_id, name, description}."""
    default_price = product.get("default_price")
    if isinstance(default_price, Mapping):
        default_price = default_price.get("id")
    return ProductSummary(
        default_price_id=default_price,
        name=product.get("name") or "",
        description=product.get("description"),
    )


def reconcile(
    existing: SubscriptionRecord | None,
    snapshot: SubscriptionSnapshot,
    user_id: str,
    creating: bool = False,
) -> SubscriptionRecord | None:
    """Compute the record that results from applying ``snapshot``.

    Returns None when the snapshot is older than the state already stored,
    in which case the stored record must be left untouched. A ``creating``
    snapshot carries the subscription's initial state, so it only replaces
    an existing record when it is strictly newer: event times have
    one-second resolution and a creation sharing its second with an update
    precedes it.

    Raises DataIntegrityError when the subscription belongs to another user.
    """
    if existing is not None:
        if existing.user_id != user_id:
            raise DataIntegrityError(
                f"Subscription {snapshot.provider_subscription_id} belongs to another user"
            )
        if snapshot.is_older_than(existing.last_event_at):
            return None
        if creating and not snapshot.is_newer_than(existing.last_event_at):
            return None

    last_event_at = snapshot.observed_at
    if last_event_at is None and existing is not None:
        last_event_at = existing.last_event_at

    return SubscriptionRecord(
        provider_subscription_id=snapshot.provider_subscription_id,
        user_id=user_id,
        status=snapshot.status,
        current_period_start=snapshot.current_period_start,
        current_period_end=snapshot.current_period_end,
        last_event_at=last_event_at,
    )


def superseded_by(record: SubscriptionRecord, others: list[SubscriptionRecord]) -> list[SubscriptionRecord]:
    """Other live subscriptions of the same user that ``record`` replaces.

    A user holds at most one non-canceled subscription, so once ``record`` is
    live every other live record of that user is superseded, unless that
    record has seen a newer event than ``record``.
    """
    if record.is_canceled:
        return []
    return [
        other
        for other in others
        if other.provider_subscription_id != record.provider_subscription_id
        and other.user_id == record.user_id
        and not other.is_canceled
        and not _is_newer(other.last_event_at, record.last_event_at)
    ]


def _is_newer(candidate: datetime | None, reference: datetime | None) -> bool:
    if candidate is None or reference is None:
        return False
    return candidate > reference
