"""API-specific test fixtures."""

from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from subscription_system.api.deps import get_gateway
from subscription_system.api.routes import api_router
from subscription_system.main import install_exception_handlers
from subscription_system.store.memory import InMemorySubscriptionStore


@pytest.fixture
def api_store() -> InMemorySubscriptionStore:
    return InMemorySubscriptionStore()


@pytest.fixture
def api_app(api_store, fake_gateway) -> FastAPI:
    """Routes and error handlers of the real app, with the store and gateway swapped out.

    The production lifespan (Stripe validation, database init) is replaced by
    one that only installs the in-memory store.
    """

    @asynccontextmanager
    async def test_lifespan(app: FastAPI):
        app.state.store = api_store
        yield

    app = FastAPI(lifespan=test_lifespan)
    install_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    app.dependency_overrides[get_gateway] = lambda: fake_gateway
    return app


@pytest.fixture
def api_client(api_app: FastAPI):
    with TestClient(api_app) as client:
        yield client
