"""Shared test fixtures for all test groups."""

import os

# Settings are cached on first use; set the environment before app imports.
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_dummy")
os.environ.setdefault("FRONTEND_URL", "https://app.example.test")
os.environ.setdefault("DEBUG", "true")

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from subscription_system.billing.gateway import StripeGateway
from subscription_system.core.config import BillingClientConfig
from subscription_system.db.base import create_tables
from subscription_system.store.memory import InMemorySubscriptionStore
from subscription_system.store.sql import SqlSubscriptionStore


@pytest.fixture
def billing_config() -> BillingClientConfig:
    return BillingClientConfig(
        secret_key="sk_test_dummy",
        host="https://app.example.test",
        timeout_seconds=5.0,
        max_network_retries=0,
    )


@pytest.fixture
def memory_store() -> InMemorySubscriptionStore:
    """Fresh in-memory store per test."""
    return InMemorySubscriptionStore()


@pytest.fixture
async def sql_store():
    """SqlSubscriptionStore over an in-process SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    await create_tables(engine)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield SqlSubscriptionStore(factory)

    await engine.dispose()


@pytest.fixture
def fake_gateway(billing_config) -> MagicMock:
    """StripeGateway double: every provider call is an AsyncMock."""
    gateway = MagicMock(spec=StripeGateway)
    gateway.config = billing_config
    gateway.list_products = AsyncMock(return_value=[])
    gateway.retrieve_price = AsyncMock()
    gateway.create_customer = AsyncMock()
    gateway.create_subscription = AsyncMock()
    gateway.list_active_subscriptions = AsyncMock(return_value=[])
    gateway.create_checkout_session = AsyncMock()
    gateway.create_portal_session = AsyncMock()
    return gateway
