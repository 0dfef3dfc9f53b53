from contextlib import contextmanager

import mongomock
import pytest
from bson import ObjectId

import database


def rollback_transaction(db):
    """Stand-in for a server transaction: drops custom orders inserted by a failed block."""
    @contextmanager
    def transaction():
        before = [d["_id"] for d in db["customorder"].find({}, {"_id": 1})]
        try:
            yield None
        except Exception:
            db["customorder"].delete_many({"_id": {"$nin": before}})
            raise
    return transaction


@pytest.fixture
def mongo(monkeypatch):
    client = mongomock.MongoClient()
    db = client["pakstyle_test"]
    monkeypatch.setattr(database, "client", client)
    monkeypatch.setattr(database, "db", db)
    monkeypatch.setattr(database, "transaction", rollback_transaction(db))
    database.ensure_indexes()
    return db


@pytest.fixture
def make_user(mongo):
    def _make(name, **extra):
        doc = {"name": name, "email": f"{name.lower()}@example.com", "profile_picture": f"{name}.png",
               "conversations": [], "unread_messages": 0}
        doc.update(extra)
        return str(mongo["user"].insert_one(doc).inserted_id)
    return _make


@pytest.fixture
def refs(mongo, make_user):
    return {
        "designer_id": str(mongo["designer"].insert_one(
            {"name": "Hamza Tailors", "email": "hamza@example.com", "profile_picture": "hamza.png"}).inserted_id),
        "user_id": make_user("Ayesha"),
        "brand_id": str(mongo["brand"].insert_one(
            {"name": "Khaadi", "email": "hello@khaadi.example.com", "logo": "khaadi.png"}).inserted_id),
        "product_id": str(mongo["product"].insert_one(
            {"name": "Eid Kurta", "images": ["kurta.png"], "price": 5400.0}).inserted_id),
    }


@pytest.fixture
def order_payload(refs):
    return dict(
        refs,
        full_name="Ayesha Khan",
        phone="+92 300 1234567",
        email="ayesha@example.com",
        address="12 Mall Road, Lahore",
        garment_type="kurtaPajama",
        occasion="eid",
        fabric="cotton",
        color="ivory",
        pattern="solid",
        fitting="regular",
        measurements={
            "chest": "38.5",
            "shoulder": 17,
            "waist": "32",
            "inseam": 30.25,
            "arm_length": "24",
            "leg_length": "40",
        },
        delivery_preference="homeDelivery",
        payment_method="cod",
        consultation_date="2026-11-02T15:00:00",
    )


@pytest.fixture
def missing_id():
    return str(ObjectId())
