import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

import assistant
import database
import emails
import storage
from main import app


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def mongo(monkeypatch):
    client = AsyncMongoMockClient()
    db = client["waste_to_wish_test"]
    monkeypatch.setattr(database, "_client", client)
    monkeypatch.setattr(database, "_db", db)
    return db


@pytest.fixture
def sent_emails(monkeypatch):
    outbox = []

    def fake_send(to, subject, html):
        outbox.append({"to": to, "subject": subject, "html": html})

    monkeypatch.setattr(emails, "SENDGRID_API_KEY", "test-key")
    monkeypatch.setattr(emails, "_send", fake_send)
    return outbox


@pytest.fixture(autouse=True)
def no_vendor_clients(monkeypatch):
    monkeypatch.setattr(storage, "STORAGE_BUCKET", None)
    monkeypatch.setattr(storage, "_bucket", None)
    monkeypatch.setattr(emails, "SENDGRID_API_KEY", None)
    monkeypatch.setattr(assistant, "GEMINI_API_KEY", None)
    monkeypatch.setattr(assistant, "_client", None)


@pytest.fixture
def client(mongo):
    return TestClient(app)


def register(client, name="Alice", email=None, password="secret1"):
    email = email or f"{name.lower()}@example.com"
    res = client.post("/auth/register", data={"name": name, "email": email, "password": password})
    assert res.status_code == 200, res.text
    body = res.json()
    return {"id": body["user"]["id"], "token": body["access_token"], "headers": {"Authorization": f"Bearer {body['access_token']}"}}


def add_item(client, user, title="Bookshelf", **fields):
    data = {"title": title, "description": "Solid oak", "category": "Furniture", "condition": "Good"}
    data.update(fields)
    res = client.post("/items", data=data, headers=user["headers"])
    assert res.status_code == 200, res.text
    return res.json()


@pytest.fixture
def alice(client):
    return register(client, "Alice")


@pytest.fixture
def bob(client):
    return register(client, "Bob")
