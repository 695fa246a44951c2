"""BillingService: request/response operations against the billing provider.

Every public method returns a ``Success`` or ``Failure``; provider and store
errors are logged here and handed back as values, never as strings posing as
URLs.
"""

from decimal import ROUND_HALF_UP, Decimal

import structlog

from subscription_system.billing.gateway import StripeGateway
from subscription_system.core.config import Settings
from subscription_system.core.exceptions import SubscriptionSystemError
from subscription_system.domain.result import Failure, Result, Success
from subscription_system.domain.subscriptions import (
    USER_ID_METADATA_KEY,
    ProductSummary,
    SubscriptionStatusDTO,
    product_summary,
    status_dto_from_subscription,
)
from subscription_system.store.base import SubscriptionStore

logger = structlog.get_logger(__name__)

FREE_PLAN_CURRENCY = "usd"


def _failure(operation: str, exc: SubscriptionSystemError, **context) -> Failure:
    logger.error(operation + "_failed", error=str(exc), error_code=exc.code, **context)
    return Failure(exc)


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to integer cents, rounding half up."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class BillingService:
    def __init__(self, gateway: StripeGateway, store: SubscriptionStore, settings: Settings):
        self.gateway = gateway
        self.store = store
        self.settings = settings

    async def get_all_products(self) -> Result[list[ProductSummary]]:
        try:
            products = await self.gateway.list_products()
        except SubscriptionSystemError as exc:
            return _failure("list_products", exc)
        return Success([product_summary(p) for p in products])

    async def create_customer(
        self,
        user_id: str,
        name: str | None = None,
        email: str | None = None,
    ) -> Result[str]:
        """Return the user's provider customer id, creating the customer once."""
        try:
            existing = await self.store.get_customer_by_user(user_id)
            if existing is not None:
                logger.info("customer_exists", user_id=user_id, customer_id=existing.provider_customer_id)
                return Success(existing.provider_customer_id)

            customer = await self.gateway.create_customer(user_id, name=name, email=email)
            # A concurrent request may have linked a different customer first
            record = await self.store.upsert_customer(customer["id"], user_id)
        except SubscriptionSystemError as exc:
            return _failure("create_customer", exc, user_id=user_id)

        logger.info("customer_created", user_id=user_id, customer_id=record.provider_customer_id)
        return Success(record.provider_customer_id)

    async def subscribe_product_plan(self, price_id: str, customer_id: str, user_id: str) -> Result[str]:
        """Start a subscription and return the URL the client should open.

        A zero-amount USD price is subscribed to directly (no payment method
        collected) and yields the fixed payment-success URL. Any other price
        goes through a hosted checkout session and yields its URL.
        """
        try:
            price = await self.gateway.retrieve_price(price_id)
            if price.get("unit_amount") == 0 and price.get("currency") == FREE_PLAN_CURRENCY:
                subscription = await self.gateway.create_subscription(customer_id, price_id, user_id)
                logger.info(
                    "free_plan_subscribed",
                    user_id=user_id,
                    price_id=price_id,
                    subscription_id=subscription.get("id"),
                )
                return Success(self.gateway.config.success_url)

            session = await self.gateway.create_checkout_session(
                mode="subscription",
                customer=customer_id,
                line_items=[{"price": price_id, "quantity": 1}],
                metadata={USER_ID_METADATA_KEY: user_id},
                subscription_data={"metadata": {USER_ID_METADATA_KEY: user_id}},
            )
        except SubscriptionSystemError as exc:
            return _failure("subscribe_product_plan", exc, user_id=user_id, price_id=price_id)

        logger.info("subscription_checkout_created", user_id=user_id, price_id=price_id)
        return Success(session["url"])

    async def customer_portal(self, customer_id: str) -> Result[str]:
        try:
            session = await self.gateway.create_portal_session(customer_id)
        except SubscriptionSystemError as exc:
            return _failure("customer_portal", exc, customer_id=customer_id)
        return Success(session["url"])

    async def get_subscription(self, customer_id: str) -> Result[SubscriptionStatusDTO]:
        """Status of the customer's first active subscription.

        No active subscription is a normal answer (the "not subscribed any
        plan" DTO); only provider failures come back as Failure.
        """
        try:
            subscriptions = await self.gateway.list_active_subscriptions(customer_id)
        except SubscriptionSystemError as exc:
            return _failure("get_subscription", exc, customer_id=customer_id)
        return Success(status_dto_from_subscription(subscriptions[0] if subscriptions else None))

    async def get_subscription_for_user(self, user_id: str) -> Result[SubscriptionStatusDTO]:
        try:
            customer = await self.store.get_customer_by_user(user_id)
        except SubscriptionSystemError as exc:
            return _failure("get_subscription", exc, user_id=user_id)
        if customer is None:
            return Success(status_dto_from_subscription(None))
        return await self.get_subscription(customer.provider_customer_id)

    async def payment_product(
        self,
        customer_id: str,
        price: Decimal,
        quantity: int,
        user_id: str,
    ) -> Result[str]:
        """Create a one-off payment checkout session and return its URL."""
        settings = self.settings
        total = price * quantity
        try:
            session = await self.gateway.create_checkout_session(
                mode="payment",
                customer=customer_id,
                line_items=[
                    {
                        "price_data": {
                            "unit_amount": to_minor_units(price),
                            "currency": settings.one_off_currency,
                            "product_data": {
                                "name": settings.one_off_product_name,
                                "description": (
                                    f"You will get {quantity} task in ${total} and you can add "
                                    f"maximum {settings.one_off_max_quantity} tasks"
                                ),
                            },
                        },
                        "quantity": quantity,
                    }
                ],
                metadata={USER_ID_METADATA_KEY: user_id},
            )
        except SubscriptionSystemError as exc:
            return _failure("payment_product", exc, customer_id=customer_id, user_id=user_id)

        logger.info("payment_checkout_created", user_id=user_id, customer_id=customer_id, quantity=quantity)
        return Success(session["url"])
