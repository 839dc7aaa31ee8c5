from datetime import datetime
from types import SimpleNamespace

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import notifications
import payments
import storage
from main import app
from schemas import utcnow
from security import create_access_token, hash_password

PASSWORD = "secret123"
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture
def db():
    return mongomock.MongoClient().staybook_test


@pytest.fixture
def client(db):
    app.dependency_overrides[database.get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Captures email and SMS instead of sending them."""
    sent = SimpleNamespace(emails=[], sms=[])

    def fake_email(to, subject, html):
        sent.emails.append({"to": to, "subject": subject, "html": html})

    def fake_sms(to, body):
        sent.sms.append({"to": to, "body": body})
        return {"sid": "SM%d" % len(sent.sms)}

    monkeypatch.setattr(notifications, "send_email", fake_email)
    monkeypatch.setattr(notifications, "send_sms", fake_sms)
    return sent


@pytest.fixture(autouse=True)
def gateway(monkeypatch):
    """Stand-in payment gateway; set ``gateway.status`` to steer confirmations."""
    state = SimpleNamespace(status="succeeded", intents=[], refunds=[])

    def create(amount, currency="usd", metadata=None):
        intent = SimpleNamespace(
            id="pi_%d" % (len(state.intents) + 1),
            client_secret="pi_secret_%d" % (len(state.intents) + 1),
            amount=amount,
            status="requires_payment_method",
        )
        state.intents.append(intent)
        return intent

    def retrieve(payment_intent_id):
        return SimpleNamespace(id=payment_intent_id, status=state.status)

    def refund(payment_intent_id, amount):
        state.refunds.append((payment_intent_id, amount))
        return SimpleNamespace(id="re_%d" % len(state.refunds))

    monkeypatch.setattr(payments, "create_payment_intent", create)
    monkeypatch.setattr(payments, "retrieve_payment_intent", retrieve)
    monkeypatch.setattr(payments, "refund_payment", refund)
    return state


@pytest.fixture(autouse=True)
def uploads(monkeypatch):
    stored = []

    def fake_upload(upload, folder):
        url = f"https://cdn.test/{folder}/{upload.filename}"
        stored.append(url)
        return url

    monkeypatch.setattr(storage, "upload_file", fake_upload)
    return stored


# Factories

def make_user(db, role="guest", email=None, phone="+15550000001", **extra):
    doc = {
        "first_name": "Test",
        "last_name": role.title(),
        "email": email or f"{role}{db['user'].count_documents({})}@example.com",
        "phone": phone,
        "password_hash": PASSWORD_HASH,
        "role": role,
        "is_verified": True,
        "created_at": utcnow(),
    }
    doc.update(extra)
    doc["_id"] = db["user"].insert_one(doc).inserted_id
    return doc


def token_for(user):
    return create_access_token(str(user["_id"]), user["role"])


def auth(user):
    return {"Authorization": f"Bearer {token_for(user)}"}


def make_host(db, user=None, earnings=0.0, **extra):
    user = user or make_user(db, role="host")
    doc = {
        "user_id": str(user["_id"]),
        "government_id": {"type": "passport", "number": "P1234567", "images": []},
        "is_verified": False,
        "host_since": utcnow(),
        "earnings": earnings,
        "total_bookings": 0,
        "host_tag": None,
    }
    doc.update(extra)
    doc["_id"] = db["host"].insert_one(doc).inserted_id
    return doc


def make_property(db, host, **extra):
    doc = {
        "host_id": str(host["_id"]),
        "title": "Seaside cottage",
        "description": "Two bedrooms by the beach",
        "type": "cottage",
        "address": {"city": "Lisbon", "country": "Portugal"},
        "amenities": ["wifi", "kitchen"],
        "price_per_night": 100.0,
        "max_guests": 4,
        "bedrooms": 2,
        "bathrooms": 1,
        "images": [],
        "availability": [],
        "discounts": [],
        "is_active": True,
        "created_at": utcnow(),
    }
    doc.update(extra)
    doc["_id"] = db["property"].insert_one(doc).inserted_id
    return doc


def make_booking(db, guest, prop, check_in=datetime(2030, 6, 1), check_out=datetime(2030, 6, 5), **extra):
    doc = {
        "guest_id": str(guest["_id"]),
        "property_id": str(prop["_id"]),
        "check_in": check_in,
        "check_out": check_out,
        "guests_count": 2,
        "total_amount": 400.0,
        "discount_amount": 0.0,
        "status": "pending",
        "payment_status": "pending",
        "payment_intent_id": "pi_existing",
        "created_at": utcnow(),
    }
    doc.update(extra)
    doc["_id"] = db["booking"].insert_one(doc).inserted_id
    return doc
