from datetime import datetime

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import database
import main
from database import create_document
from notifications import NotificationDispatcher
from order_status import OrderStatus
from realtime import RoomHub
from schemas import Order as OrderSchema
from security import get_password_hash, token_for

PASSWORD = "secret123"
HASHED_PASSWORD = get_password_hash(PASSWORD)


class RecordingMailer:
    def __init__(self):
        self.sent = []

    def send(self, to, subject, html_body):
        self.sent.append({"to": to, "subject": subject, "html": html_body})


class FailingMailer:
    def __init__(self):
        self.calls = 0

    def send(self, to, subject, html_body):
        self.calls += 1
        raise ConnectionError("SMTP server unreachable")


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["marketplace_test"]
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def dispatcher(mailer, monkeypatch):
    d = NotificationDispatcher(mailer, max_attempts=1, retry_delay=0)
    monkeypatch.setattr(main.app.state, "notifications", d)
    yield d
    d.stop()


@pytest.fixture
def hub(monkeypatch):
    h = RoomHub()
    monkeypatch.setattr(main.app.state, "hub", h)
    return h


@pytest.fixture
def client(db, dispatcher, hub):
    return TestClient(main.app)


def auth_headers(user):
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role="buyer", email=None, name=None, **extra):
        counter["n"] += 1
        user = {
            "name": name or f"{role.title()} {counter['n']}",
            "email": email or f"{role}{counter['n']}@example.com",
            "hashed_password": HASHED_PASSWORD,
            "role": role,
            "phone": "0901234567",
            "address": "12 Nguyen Hue, District 1",
            "avatar": "",
            "brand_id": None,
            "is_active": True,
        }
        user.update(extra)
        user_id = create_document("user", user)
        return db["user"].find_one({"_id": ObjectId(user_id)})

    return _make


@pytest.fixture
def make_seller(db, make_user):
    def _make(brand_name=None, **extra):
        seller = make_user("seller", **extra)
        brand_id = create_document("brand", {
            "name": brand_name or f"Brand of {seller['name']}",
            "country": "Vietnam",
            "description": "",
            "logo_url": "",
            "seller_id": str(seller["_id"]),
        })
        db["user"].update_one({"_id": seller["_id"]}, {"$set": {"brand_id": brand_id}})
        return db["user"].find_one({"_id": seller["_id"]})

    return _make


@pytest.fixture
def make_product(db):
    def _make(seller, name="Linen Shirt", price=250000.0, stock=10, **extra):
        product = {
            "name": name,
            "description": f"{name} description",
            "price": price,
            "images": [{"url": f"https://cdn.example.com/{name}.jpg", "alt": name, "is_primary": True}],
            "seller_id": str(seller["_id"]),
            "brand_id": seller.get("brand_id"),
            "category_id": None,
            "stock": stock,
            "is_active": True,
            "is_featured": False,
            "views": 0,
        }
        product.update(extra)
        return db["product"].find_one({"_id": ObjectId(create_document("product", product))})

    return _make


@pytest.fixture
def make_order(db):
    counter = {"n": 1000}

    def _make(buyer, seller, status=OrderStatus.WAITING_APPROVAL, price=300000.0, quantity=1,
              is_paid=False, paid_at=None, created_at=None, order_number=None):
        counter["n"] += 1
        order = OrderSchema(
            order_number=order_number or f"ORD-{counter['n']}",
            user_id=str(buyer["_id"]),
            seller_id=str(seller["_id"]),
            items=[{"product_id": str(ObjectId()), "name": "Linen Shirt", "quantity": quantity, "price": price}],
            total_price=price * quantity,
            status=status,
            payment_method="COD",
            shipping_address="12 Nguyen Hue, District 1",
            is_paid=is_paid,
            paid_at=paid_at,
        )
        order_id = create_document("order", order)
        if created_at is not None:
            db["order"].update_one({"_id": ObjectId(order_id)}, {"$set": {"created_at": created_at}})
        return db["order"].find_one({"_id": ObjectId(order_id)})

    return _make


def parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)
