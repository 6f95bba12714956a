from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import database
import main
import settings_store

T0 = datetime(2026, 3, 10, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    client = mongomock.MongoClient(tz_aware=True)
    mock_db = client["hubly_test"]
    database.ensure_indexes(mock_db)
    settings_store.ensure_default_settings(mock_db)
    return mock_db


@pytest.fixture
def admin(db):
    return auth.register(db, "Ada", "Admin", "ada@hubly.io", "secret-1", "secret-1")


@pytest.fixture
def member_a(db, admin):
    return auth.register(db, "Alice", "Agent", "alice@hubly.io", "secret-a", "secret-a")


@pytest.fixture
def member_b(db, admin):
    return auth.register(db, "Bob", "Agent", "bob@hubly.io", "secret-b", "secret-b")


@pytest.fixture
def set_timer(db):
    def _set(hour=0, minute=0, second=0):
        db["chatbotsettings"].update_one(
            {}, {"$set": {"missed_chat_timer": {"hour": hour, "minute": minute, "second": second}}}
        )
    return _set


@pytest.fixture
def make_client(db, monkeypatch):
    monkeypatch.setattr(main, "COOKIE_SECURE", False)
    main.app.dependency_overrides[database.get_db] = lambda: db

    def _make(email=None, password=None):
        client = TestClient(main.app)
        if email:
            res = client.post("/auth/login", json={"email": email, "password": password})
            assert res.status_code == 200, res.text
        return client

    yield _make
    main.app.dependency_overrides.clear()
