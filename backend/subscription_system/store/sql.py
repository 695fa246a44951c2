"""SQLAlchemy-backed SubscriptionStore.

Idempotency rests on unique keys: inserts that lose a race hit IntegrityError,
roll back, and re-read the winning row. Subscription rows are locked with
SELECT ... FOR UPDATE on dialects that support it.
"""

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import AsyncIterator

import structlog
from sqlalchemy import delete, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subscription_system.core.exceptions import DataIntegrityError, StoreError
from subscription_system.db.models.customer import StripeCustomer
from subscription_system.db.models.stripe_event import StripeWebhookEvent
from subscription_system.db.models.subscription import StripeSubscription
from subscription_system.domain.subscriptions import (
    CustomerRecord,
    SubscriptionRecord,
    SubscriptionSnapshot,
    SubscriptionStatus,
    reconcile,
    superseded_by,
)

logger = structlog.get_logger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _customer_record(row: StripeCustomer) -> CustomerRecord:
    return CustomerRecord(
        user_id=row.user_id,
        provider_customer_id=row.stripe_customer_id,
        created_at=_aware(row.created_at),
    )


def _subscription_record(row: StripeSubscription) -> SubscriptionRecord:
    return SubscriptionRecord(
        provider_subscription_id=row.stripe_subscription_id,
        user_id=row.user_id,
        status=SubscriptionStatus(row.status),
        current_period_start=_aware(row.current_period_start),
        current_period_end=_aware(row.current_period_end),
        last_event_at=_aware(row.last_event_at),
    )


class SqlSubscriptionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("store_operation_failed", operation=operation, error=str(exc), exc_info=True)
                raise StoreError(f"{operation} failed") from exc

    # ── Customers ───────────────────────────────────────────────────

    async def _customer_for_user(self, session: AsyncSession, user_id: str) -> StripeCustomer | None:
        result = await session.execute(select(StripeCustomer).where(StripeCustomer.user_id == user_id))
        return result.scalar_one_or_none()

    async def upsert_customer(self, provider_customer_id: str, user_id: str) -> CustomerRecord:
        async with self._session("upsert_customer") as session:
            existing = await self._customer_for_user(session, user_id)
            if existing is None:
                try:
                    row = StripeCustomer(user_id=user_id, stripe_customer_id=provider_customer_id)
                    session.add(row)
                    await session.commit()
                    logger.info("customer_upserted", user_id=user_id, customer_id=provider_customer_id)
                    return _customer_record(row)
                except IntegrityError:
                    # Concurrent insert for this user, or the customer is linked elsewhere
                    await session.rollback()
                    existing = await self._customer_for_user(session, user_id)
                    if existing is None:
                        raise DataIntegrityError(
                            f"Customer {provider_customer_id} is already linked to another user"
                        ) from None

            if existing.stripe_customer_id != provider_customer_id:
                logger.warning(
                    "customer_already_linked",
                    user_id=user_id,
                    existing_customer_id=existing.stripe_customer_id,
                    rejected_customer_id=provider_customer_id,
                )
            return _customer_record(existing)

    async def get_customer_by_user(self, user_id: str) -> CustomerRecord | None:
        async with self._session("get_customer_by_user") as session:
            row = await self._customer_for_user(session, user_id)
            return _customer_record(row) if row is not None else None

    # ── Subscriptions ───────────────────────────────────────────────

    async def upsert_subscription(self, snapshot: SubscriptionSnapshot, user_id: str) -> SubscriptionRecord:
        return await self._apply("upsert_subscription", snapshot, user_id)

    async def update_subscription(self, snapshot: SubscriptionSnapshot, user_id: str) -> SubscriptionRecord:
        return await self._apply("update_subscription", snapshot, user_id)

    async def _apply(self, operation: str, snapshot: SubscriptionSnapshot, user_id: str) -> SubscriptionRecord:
        subscription_id = snapshot.provider_subscription_id
        async with self._session(operation) as session:
            for attempt in range(2):
                try:
                    row = await session.get(
                        StripeSubscription,
                        subscription_id,
                        with_for_update=True,
                        populate_existing=True,
                    )
                    existing = _subscription_record(row) if row is not None else None
                    record = reconcile(
                        existing, snapshot, user_id, creating=operation == "upsert_subscription"
                    )
                    if record is None:
                        logger.info("subscription_stale_event_ignored", subscription_id=subscription_id)
                        return existing

                    if row is None:
                        if operation == "update_subscription":
                            logger.info("subscription_update_before_create", subscription_id=subscription_id)
                        row = StripeSubscription(stripe_subscription_id=subscription_id, user_id=user_id)
                        session.add(row)

                    row.status = record.status.value
                    row.current_period_start = record.current_period_start
                    row.current_period_end = record.current_period_end
                    row.last_event_at = record.last_event_at
                    if snapshot.provider_customer_id:
                        row.stripe_customer_id = snapshot.provider_customer_id

                    await self._supersede_others(session, record)
                    await session.commit()
                    logger.info(
                        "subscription_upserted",
                        user_id=user_id,
                        subscription_id=subscription_id,
                        status=record.status.value,
                    )
                    return record
                except IntegrityError:
                    # Lost the insert race; the retry reads the winner's row
                    await session.rollback()
                    if attempt:
                        raise
        raise StoreError(f"{operation} failed")  # pragma: no cover

    async def _supersede_others(self, session: AsyncSession, record: SubscriptionRecord) -> None:
        result = await session.execute(
            select(StripeSubscription)
            .where(
                StripeSubscription.user_id == record.user_id,
                StripeSubscription.stripe_subscription_id != record.provider_subscription_id,
                StripeSubscription.status != SubscriptionStatus.CANCELED.value,
            )
            .with_for_update()
        )
        rows = {row.stripe_subscription_id: row for row in result.scalars()}
        for other in superseded_by(record, [_subscription_record(row) for row in rows.values()]):
            rows[other.provider_subscription_id].status = SubscriptionStatus.CANCELED.value
            logger.warning(
                "subscription_superseded",
                user_id=record.user_id,
                subscription_id=other.provider_subscription_id,
                superseded_by=record.provider_subscription_id,
            )

    async def get_subscription(self, provider_subscription_id: str) -> SubscriptionRecord | None:
        async with self._session("get_subscription") as session:
            row = await session.get(StripeSubscription, provider_subscription_id)
            return _subscription_record(row) if row is not None else None

    async def list_subscriptions_for_user(self, user_id: str) -> list[SubscriptionRecord]:
        async with self._session("list_subscriptions_for_user") as session:
            result = await session.execute(
                select(StripeSubscription)
                .where(StripeSubscription.user_id == user_id)
                .order_by(StripeSubscription.created_at)
            )
            return [_subscription_record(row) for row in result.scalars()]

    # ── Webhook event claims ────────────────────────────────────────

    async def claim_event(self, event_id: str, event_type: str | None = None) -> bool:
        async with self._session("claim_event") as session:
            try:
                session.add(StripeWebhookEvent(event_id=event_id, event_type=event_type))
                await session.commit()
                return True
            except IntegrityError:
                await session.rollback()
                return False

    async def release_event(self, event_id: str) -> None:
        async with self._session("release_event") as session:
            await session.execute(delete(StripeWebhookEvent).where(StripeWebhookEvent.event_id == event_id))
            await session.commit()

    async def ping(self) -> bool:
        async with self._session("ping") as session:
            await session.execute(text("SELECT 1"))
            return True
