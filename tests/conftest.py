import os
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Cheap hashes for tests; must be set before config is imported
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import users
from realtime import PresenceRegistry, TopicRegistry, gateway


class Recorder:
    """Stands in for sio.emit and remembers every delivery."""

    def __init__(self):
        self.sent = []

    async def __call__(self, event, data=None, to=None):
        self.sent.append((to, event, data))

    def events(self, event):
        return [(to, data) for to, e, data in self.sent if e == event]


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient().db
    database.ensure_indexes(mock_db)
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture
def recorder(monkeypatch):
    rec = Recorder()
    monkeypatch.setattr(gateway, "_emit", rec)
    monkeypatch.setattr(gateway, "presence", PresenceRegistry())
    monkeypatch.setattr(gateway, "topics", TopicRegistry())
    return rec


@pytest.fixture
def client(db, recorder):
    from main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(db):
    """Create a user through the service layer; returns id, token and auth headers."""
    counter = {"n": 0}

    def _make(name=None, school="Springfield High", **profile):
        counter["n"] += 1
        name = name or f"User {counter['n']}"
        email = f"{name.lower().replace(' ', '.')}.{counter['n']}@example.com"
        out = users.signup(db, name, email, "secret123", school)
        if profile:
            db["user"].update_one({"email": email}, {"$set": profile})
        return {
            "id": out["user_id"],
            "token": out["token"],
            "email": email,
            "headers": {"Authorization": f"Bearer {out['token']}"},
        }

    return _make


@pytest.fixture
def load_user(db):
    def _load(user_id):
        return db["user"].find_one({"_id": database.parse_object_id(user_id)})

    return _load
