"""Shared fixtures: a seeded in-memory store and an API client wired to it."""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from src.config import get_settings
from src.core.firestore import get_firestore_client
from src.core.rate_limiter import limiter
from src.features.analytics.service import AnalyticsService

from tests.fakes import FakeFirestore

API_KEY = "cb_live_test_key"
OTHER_API_KEY = "cb_live_other_key"
ADMIN_TOKEN = "test-admin-token"

CUSTOMER_ID = "cust-1"
OTHER_CUSTOMER_ID = "cust-2"
CHATBOT_ID = "bot-1"
OTHER_CHATBOT_ID = "bot-2"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def settings_env(monkeypatch):
    """Fresh settings per test with an admin token configured."""
    monkeypatch.setenv("ADMIN_API_TOKEN", ADMIN_TOKEN)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store() -> FakeFirestore:
    store = FakeFirestore()
    store.add_customer(CUSTOMER_ID, email="owner@example.com")
    store.add_customer(OTHER_CUSTOMER_ID, email="other@example.com")
    store.add_api_key(API_KEY, CUSTOMER_ID)
    store.add_api_key(OTHER_API_KEY, OTHER_CUSTOMER_ID)
    store.add_chatbot(CHATBOT_ID, CUSTOMER_ID, name="Support Bot")
    store.add_chatbot(OTHER_CHATBOT_ID, OTHER_CUSTOMER_ID, name="Other Bot")
    return store


@pytest.fixture
def service(store) -> AnalyticsService:
    return AnalyticsService(firestore=store)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {API_KEY}"}


@pytest.fixture
def client(store):
    from src.main import app

    limiter.reset()
    app.dependency_overrides[get_firestore_client] = lambda: store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
