"""StripeSubscription model: subscription state reconciled from webhooks."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String

from subscription_system.db.base import Base


class StripeSubscription(Base):
    __tablename__ = "stripe_subscriptions"

    stripe_subscription_id = Column(String(255), primary_key=True)
    user_id = Column(String(255), nullable=False, index=True)
    stripe_customer_id = Column(String(255), nullable=True, index=True)

    status = Column(String(50), nullable=False)  # active, past_due, canceled, ...
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    # created timestamp of the newest event applied to this row
    last_event_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
