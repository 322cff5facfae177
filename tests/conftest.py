"""Shared fixtures for the storefront test suite.

The pymongo database handle is replaced with an in-memory mongomock database
for every test, so no MongoDB server is needed.
"""

from __future__ import annotations

import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.pop("DATABASE_URL", None)

from collections.abc import Callable, Iterator  # noqa: E402
from typing import Any  # noqa: E402

import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import database  # noqa: E402
import settings  # noqa: E402
from main import app  # noqa: E402
from store import products as product_store  # noqa: E402

ADMIN_EMAIL = "admin@example.com"


@pytest.fixture(autouse=True)
def mongo_db(monkeypatch: pytest.MonkeyPatch) -> Iterator[Any]:
    """Point the store at a fresh in-memory database."""
    db = mongomock.MongoClient()["storefront_test"]
    monkeypatch.setattr(database, "db", db)
    monkeypatch.setattr(settings, "ADMIN_EMAILS", {ADMIN_EMAIL})
    monkeypatch.setattr(settings, "WELCOME_BONUS", 100.0)
    monkeypatch.setattr(settings, "WALLET_DEBIT_POLICY", "clamp")
    database.ensure_indexes()
    yield db


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def register(client: TestClient) -> Callable[..., dict[str, Any]]:
    """Register a user through the API and return the response body."""

    def _register(email: str = "jane@example.com", name: str = "Jane Doe", password: str = "secret123") -> dict[str, Any]:
        res = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
        assert res.status_code == 201, res.text
        body = res.json()
        body["headers"] = auth_header(body["token"])
        return body

    return _register


@pytest.fixture
def user(register: Callable[..., dict[str, Any]]) -> dict[str, Any]:
    return register()


@pytest.fixture
def admin(register: Callable[..., dict[str, Any]]) -> dict[str, Any]:
    return register(email=ADMIN_EMAIL, name="Store Admin")


@pytest.fixture
def make_product() -> Callable[..., dict[str, Any]]:
    """Insert a product directly through the store layer."""
    counter = {"n": 0}

    def _make(**overrides: Any) -> dict[str, Any]:
        counter["n"] += 1
        data = {
            "title": f"Test Phone {counter['n']}",
            "description": "A perfectly ordinary test phone.",
            "price": 100.0,
            "category": "smartphones",
            "brand": "Acme",
            "stock": 10,
            "images": [{"url": "/img/phone.jpg", "alt": "phone", "is_primary": True}],
        }
        data.update(overrides)
        return product_store.create_product(data)

    return _make


@pytest.fixture
def shipping_address() -> dict[str, str]:
    return {
        "full_name": "Jane Doe",
        "street": "1 Main St",
        "city": "Springfield",
        "state": "IL",
        "zip_code": "62701",
        "country": "US",
    }
