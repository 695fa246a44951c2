"""Re-export all models so Base.metadata sees them."""

from subscription_system.db.models.customer import StripeCustomer
from subscription_system.db.models.stripe_event import StripeWebhookEvent
from subscription_system.db.models.subscription import StripeSubscription

__all__ = [
    "StripeCustomer",
    "StripeSubscription",
    "StripeWebhookEvent",
]
