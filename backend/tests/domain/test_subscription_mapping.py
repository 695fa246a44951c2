"""Tests for subscription domain mapping and reconciliation.

Pure functions: no provider, no store.
"""

from datetime import UTC, datetime, timedelta

import pytest

from subscription_system.core.exceptions import DataIntegrityError
from subscription_system.domain.result import Failure, Success
from subscription_system.domain.subscriptions import (
    NOT_SUBSCRIBED_STATUS,
    SubscriptionRecord,
    SubscriptionSnapshot,
    SubscriptionStatus,
    extract_user_id,
    product_summary,
    reconcile,
    snapshot_from_subscription,
    status_dto_from_subscription,
    superseded_by,
)

pytestmark = pytest.mark.unit

PERIOD_START = 1_700_000_000
PERIOD_END = 1_702_592_000


def _snapshot(sub_id: str = "sub_1", status=SubscriptionStatus.ACTIVE, observed_at=None) -> SubscriptionSnapshot:
    return SubscriptionSnapshot(
        provider_subscription_id=sub_id,
        provider_customer_id="cus_1",
        status=status,
        current_period_start=None,
        current_period_end=None,
        observed_at=observed_at,
    )


def _record(sub_id: str, user_id: str = "u1", status=SubscriptionStatus.ACTIVE, last_event_at=None):
    return SubscriptionRecord(
        provider_subscription_id=sub_id,
        user_id=user_id,
        status=status,
        current_period_start=None,
        current_period_end=None,
        last_event_at=last_event_at,
    )


# ---------------------------------------------------------------------------
# Metadata and object mapping
# ---------------------------------------------------------------------------


def test_extract_user_id_reads_metadata():
    assert extract_user_id({"id": "cus_1", "metadata": {"UserId": "u1"}}) == "u1"


@pytest.mark.parametrize("metadata", [None, {}, {"UserId": ""}, {"UserId": "   "}, {"userid": "u1"}])
def test_extract_user_id_missing_is_data_integrity_error(metadata):
    with pytest.raises(DataIntegrityError, match="UserId"):
        extract_user_id({"id": "sub_1", "object": "subscription", "metadata": metadata})


def test_snapshot_reads_top_level_period():
    observed = datetime(2024, 1, 1, tzinfo=UTC)
    snapshot = snapshot_from_subscription(
        {
            "id": "sub_1",
            "customer": "cus_1",
            "status": "past_due",
            "current_period_start": PERIOD_START,
            "current_period_end": PERIOD_END,
        },
        observed_at=observed,
    )

    assert snapshot.provider_subscription_id == "sub_1"
    assert snapshot.provider_customer_id == "cus_1"
    assert snapshot.status is SubscriptionStatus.PAST_DUE
    assert snapshot.current_period_start == datetime.fromtimestamp(PERIOD_START, tz=UTC)
    assert snapshot.current_period_end == datetime.fromtimestamp(PERIOD_END, tz=UTC)
    assert snapshot.observed_at == observed


def test_snapshot_falls_back_to_item_period():
    """Newer API versions only carry the period on subscription items."""
    snapshot = snapshot_from_subscription(
        {
            "id": "sub_1",
            "customer": {"id": "cus_9"},
            "status": "active",
            "items": {"data": [{"current_period_start": PERIOD_START, "current_period_end": PERIOD_END}]},
        }
    )

    assert snapshot.provider_customer_id == "cus_9"
    assert snapshot.current_period_start == datetime.fromtimestamp(PERIOD_START, tz=UTC)
    assert snapshot.current_period_end == datetime.fromtimestamp(PERIOD_END, tz=UTC)


def test_snapshot_unknown_status_rejected():
    with pytest.raises(DataIntegrityError, match="status"):
        snapshot_from_subscription({"id": "sub_1", "status": "exploded"})


def test_snapshot_without_id_rejected():
    with pytest.raises(DataIntegrityError):
        snapshot_from_subscription({"status": "active"})


def test_status_dto_sentinel_when_no_subscription():
    dto = status_dto_from_subscription(None)
    assert dto.subscription_id == ""
    assert dto.subscription_status == NOT_SUBSCRIBED_STATUS
    assert dto.current_period_start is None
    assert dto.current_period_end is None


def test_status_dto_maps_active_subscription():
    dto = status_dto_from_subscription(
        {"id": "sub_1", "status": "active", "current_period_start": PERIOD_START, "current_period_end": PERIOD_END}
    )
    assert dto.subscription_id == "sub_1"
    assert dto.subscription_status == "active"
    assert dto.current_period_end == datetime.fromtimestamp(PERIOD_END, tz=UTC)


def test_product_summary_with_expanded_default_price():
    summary = product_summary({"name": "Pro", "description": "All features", "default_price": {"id": "price_1"}})
    assert summary.default_price_id == "price_1"
    assert summary.name == "Pro"
    assert summary.description == "All features"


def test_product_summary_with_price_id_string():
    summary = product_summary({"name": "Free", "default_price": "price_free"})
    assert summary.default_price_id == "price_free"
    assert summary.description is None


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


def test_reconcile_creates_record_when_missing():
    record = reconcile(None, _snapshot(), "u1")
    assert record.provider_subscription_id == "sub_1"
    assert record.user_id == "u1"
    assert record.status is SubscriptionStatus.ACTIVE


def test_reconcile_ignores_stale_snapshot():
    now = datetime(2024, 6, 1, tzinfo=UTC)
    existing = _record("sub_1", last_event_at=now)
    stale = _snapshot(status=SubscriptionStatus.INCOMPLETE, observed_at=now - timedelta(minutes=5))

    assert reconcile(existing, stale, "u1") is None


def test_reconcile_applies_newer_snapshot():
    now = datetime(2024, 6, 1, tzinfo=UTC)
    existing = _record("sub_1", last_event_at=now)
    newer = _snapshot(status=SubscriptionStatus.PAST_DUE, observed_at=now + timedelta(minutes=5))

    record = reconcile(existing, newer, "u1")
    assert record.status is SubscriptionStatus.PAST_DUE
    assert record.last_event_at == now + timedelta(minutes=5)


def test_reconcile_create_in_same_second_as_stored_update_is_stale():
    now = datetime(2024, 6, 1, tzinfo=UTC)
    existing = _record("sub_1", last_event_at=now)
    created = _snapshot(status=SubscriptionStatus.INCOMPLETE, observed_at=now)

    assert reconcile(existing, created, "u1", creating=True) is None
    assert reconcile(existing, created, "u1") is not None


def test_reconcile_create_without_event_time_does_not_overwrite():
    existing = _record("sub_1", status=SubscriptionStatus.ACTIVE)

    assert reconcile(existing, _snapshot(status=SubscriptionStatus.INCOMPLETE), "u1", creating=True) is None


def test_reconcile_rejects_user_mismatch():
    with pytest.raises(DataIntegrityError, match="another user"):
        reconcile(_record("sub_1", user_id="u2"), _snapshot(), "u1")


def test_superseded_by_returns_other_live_subscriptions():
    live = _record("sub_2")
    others = [_record("sub_1"), _record("sub_0", status=SubscriptionStatus.CANCELED), _record("sub_x", user_id="u2")]

    assert [r.provider_subscription_id for r in superseded_by(live, others)] == ["sub_1"]


def test_superseded_by_keeps_newer_record():
    now = datetime(2024, 6, 1, tzinfo=UTC)
    stale_live = _record("sub_old", last_event_at=now - timedelta(days=1))
    newer = _record("sub_new", last_event_at=now)

    assert superseded_by(stale_live, [newer]) == []


def test_canceled_record_supersedes_nothing():
    canceled = _record("sub_2", status=SubscriptionStatus.CANCELED)
    assert superseded_by(canceled, [_record("sub_1")]) == []


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------


def test_result_variants_pattern_match():
    def describe(result):
        match result:
            case Success(value=value):
                return f"ok:{value}"
            case Failure(error=error):
                return f"err:{error.code}"

    assert describe(Success("https://example.test")) == "ok:https://example.test"
    assert describe(Failure(DataIntegrityError("missing"))) == "err:data_integrity_error"
    assert Failure(DataIntegrityError("missing")).message == "missing"
