"""StripeWebhookEvent model: webhook event ids claimed for processing."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String

from subscription_system.db.base import Base


class StripeWebhookEvent(Base):
    """One row per claimed event id.

    The row is inserted before the handler runs and deleted again if the
    handler fails, so only applied or in-flight events remain.
    """

    __tablename__ = "stripe_webhook_events"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(100), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
