"""Shared fixtures.

MongoDB is replaced by ``mongomock-motor`` both for the HTTP tests (through
the app's startup hook) and for the async service tests.
"""
import itertools
import os

os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from shared.utils import get_password_hash
from foodmarket import main
from foodmarket.models import (
    CategoryDB, CommerceDB, CommerceTypeDB, DeliveryStatus, ProductDB, Role, UserDB, to_document,
)
from foodmarket.routers.auth import insert_user

PASSWORD = "secret123"

_counter = itertools.count(1)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def mongo_client():
    return AsyncMongoMockClient()


@pytest.fixture
def db(mongo_client):
    return mongo_client["foodmarket_test"]


# --- Seeding helpers (async, usable from service tests or through ``run``) ---

async def seed_user(db, role: Role, username: str = None, is_active: bool = True) -> str:
    username = username or f"{role.value}{next(_counter)}"
    user = UserDB(
        first_name=username.title(),
        last_name="Test",
        phone="809-555-0100",
        email=f"{username}@test.com",
        username=username,
        password_hash=get_password_hash(PASSWORD),
        role=role,
        delivery_status=DeliveryStatus.AVAILABLE if role == Role.DELIVERY else None,
        is_active=is_active,
    )
    return str(await insert_user(db, user))


async def seed_commerce_type(db, name: str = "Restaurants") -> str:
    result = await db.commerce_types.insert_one(to_document(CommerceTypeDB(name=name)))
    return str(result.inserted_id)


async def seed_commerce(db, type_id: str, name: str = None) -> str:
    user_id = await seed_user(db, Role.COMMERCE)
    commerce = CommerceDB(
        name=name or f"Commerce {user_id[-4:]}",
        phone="809-555-0101",
        email=f"{user_id}@commerce.test",
        opens_at="08:00",
        closes_at="22:00",
        commerce_type_id=type_id,
        is_active=True,
    )
    doc = to_document(commerce)
    doc["_id"] = ObjectId(user_id)
    await db.commerces.insert_one(doc)
    return user_id


async def seed_product(db, commerce_id: str, name: str, price: str, category: str = None) -> str:
    category_id = None
    if category:
        result = await db.categories.insert_one(to_document(CategoryDB(name=category, commerce_id=commerce_id)))
        category_id = str(result.inserted_id)
    product = ProductDB(name=name, price=price, commerce_id=commerce_id, category_id=category_id)
    result = await db.products.insert_one(to_document(product))
    return str(result.inserted_id)


# --- HTTP fixtures ---

@pytest.fixture
def client(monkeypatch, mongo_client):
    monkeypatch.setattr(main, "get_db_client", lambda *args, **kwargs: mongo_client)
    with TestClient(main.app) as test_client:
        yield test_client


@pytest.fixture
def app_db(client):
    return main.app.mongodb


@pytest.fixture
def run(client):
    """Run an async helper on the test client's event loop."""
    def _run(fn, *args, **kwargs):
        return client.portal.call(lambda: fn(*args, **kwargs))
    return _run


@pytest.fixture
def login(client):
    def _login(username: str, password: str = PASSWORD) -> dict:
        resp = client.post("/auth/login", json={"identifier": username, "password": password})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['data']['access_token']}"}
    return _login


@pytest.fixture
def make_user(run, app_db, login):
    """Create an active account and return ``(user_id, auth_headers)``."""
    def _make(role: Role):
        username = f"{role.value}{next(_counter)}"
        user_id = run(seed_user, app_db, role, username)
        return user_id, login(username)
    return _make


@pytest.fixture
def make_commerce(run, app_db, login):
    """Create an active commerce and return ``(commerce_id, auth_headers)``."""
    def _make(type_id: str, name: str = None):
        commerce_id = run(seed_commerce, app_db, type_id, name)
        user = run(app_db.users.find_one, {"_id": ObjectId(commerce_id)})
        return commerce_id, login(user["username"])
    return _make
