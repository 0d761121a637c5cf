"""
Pytest configuration and shared fixtures.

The API runs against an in-memory mongomock database patched over the
module-level ``db`` handles.
"""

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main


@pytest.fixture
def mongo(monkeypatch):
    mock_db = mongomock.MongoClient()["vendorbook_test"]
    database.ensure_indexes(mock_db)
    monkeypatch.setattr(database, "db", mock_db)
    monkeypatch.setattr(main, "db", mock_db)
    return mock_db


@pytest.fixture
def anon_client(mongo):
    return TestClient(main.app)


@pytest.fixture
def client(anon_client):
    res = anon_client.post("/api/auth/register", json={"username": "owner", "password": "secret123"})
    assert res.status_code == 201
    anon_client.headers.update({"Authorization": f"Bearer {res.json()['data']['token']}"})
    return anon_client


@pytest.fixture
def make_customer(client):
    def _make(unique_id="CUST1", full_name="Ramesh Kumar", phone="9876543210"):
        res = client.post("/api/customers", json={"fullName": full_name, "phone": phone, "uniqueId": unique_id})
        assert res.status_code == 201, res.json()
        return res.json()["data"]

    return _make


@pytest.fixture
def customer(make_customer):
    return make_customer()


@pytest.fixture
def make_order(client, customer):
    def _make(prices=(100, 50), total_paid=0, unique_id=None, date=None):
        body = {
            "customerDetails": {"uniqueId": unique_id or customer["uniqueId"]},
            "items": [{"name": f"Item {i}", "quantity": 2, "price": p} for i, p in enumerate(prices)],
            "totalPaid": total_paid,
        }
        if date:
            body["date"] = date
        res = client.post("/api/orders", json=body)
        assert res.status_code == 201, res.json()
        return res.json()["data"]

    return _make
