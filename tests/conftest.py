import mongomock
import pytest
from fastapi.testclient import TestClient
from jose import jwt

import auth
import inventory
from database import create_document, get_db
from fakes import FakeEmailSender
from main import app
from notifications import get_notifier


@pytest.fixture()
def db():
    return mongomock.MongoClient()["storefront_test"]


@pytest.fixture()
def email_sender():
    return FakeEmailSender()


@pytest.fixture()
def client(db, email_sender):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_notifier] = lambda: email_sender
    yield TestClient(app)
    app.dependency_overrides.clear()


def _make_user(db, name, email, role="user"):
    return create_document(db, "user", {
        "name": name,
        "email": email,
        "password_hash": "not-a-real-hash",
        "phone": "01700000000",
        "role": role,
    })


@pytest.fixture()
def customer(db):
    return _make_user(db, "Nadia Rahman", "nadia@example.com")


@pytest.fixture()
def other_customer(db):
    return _make_user(db, "Karim Ahmed", "karim@example.com")


@pytest.fixture()
def admin(db):
    return _make_user(db, "Store Admin", "admin@example.com", role="admin")


@pytest.fixture()
def headers_for():
    """Bearer headers for a user, signed the way the identity service signs them."""
    def _headers(user):
        token = jwt.encode({"sub": str(user["_id"])}, auth.SECRET_KEY, algorithm=auth.ALGORITHM)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture()
def make_product(db):
    def _make(**overrides):
        data = {
            "name": "Ring-A",
            "description": "Sterling silver ring",
            "price": 250.0,
            "category": "rings",
            "images": [{"url": "https://cdn.example.com/ring-a.jpg", "public_id": "ring-a"}],
            "stock": 5,
            "sizes": [],
            "colors": [],
            "is_active": True,
            "featured": False,
            "is_new_arrival": False,
            "is_combo": False,
            "tags": [],
            "rating": 0,
            "version": 0,
        }
        data.update(overrides)
        if "inventory_kind" not in data:
            data["inventory_kind"] = inventory.inventory_kind(data)
        return create_document(db, "product", data)
    return _make


@pytest.fixture()
def bangle(make_product):
    return make_product(
        name="Bangle-B",
        category="bangles",
        price=480.0,
        stock=0,
        sizes=[
            {"size": "S", "measurement": "2.4", "stock": 2, "available": True},
            {"size": "M", "measurement": "2.6", "stock": 0, "available": True},
        ],
    )


@pytest.fixture()
def earrings(make_product):
    return make_product(
        name="Pearl Drops",
        category="earrings",
        price=320.0,
        stock=0,
        colors=[
            {"name": "White", "code": "#ffffff", "stock": 1, "available": True},
            {"name": "Gold", "code": "#d4af37", "stock": 3, "available": True},
        ],
    )
