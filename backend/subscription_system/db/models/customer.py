"""StripeCustomer model: one provider customer per internal user."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, Integer, String

from subscription_system.db.base import Base


class StripeCustomer(Base):
    __tablename__ = "stripe_customers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), unique=True, nullable=False, index=True)
    stripe_customer_id = Column(String(255), unique=True, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
