"""
Pytest configuration and fixtures for testing.

Settings are read once at import, so the environment is prepared before any
internmatch module is imported.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["EMAIL_HOST"] = ""
os.environ["MONGODB_TIMEOUT_MS"] = "50"
os.environ["PUBLIC_HOST"] = "https://app.example.com"

import pytest
from fastapi.testclient import TestClient

from factories import FakeAI, FakeMailer, FakeMongo, FakePayWay, FakeStorage
from internmatch.db.models import Base
from internmatch.db.postgres import init_engine
from internmatch.main import app
from internmatch.services import ai_client
from internmatch.services.ai_client import get_ai_client
from internmatch.services.email import get_mailer
from internmatch.services.payway import get_payway_client
from internmatch.services.storage import get_storage


@pytest.fixture(autouse=True)
def database():
    """Fresh in-memory database per test: create all tables, drop them afterwards."""
    engine = init_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def payway():
    return FakePayWay()


@pytest.fixture
def ai():
    return FakeAI()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def mongo():
    return FakeMongo()


@pytest.fixture
def client(mailer, payway, ai, storage, mongo, monkeypatch):
    """TestClient with every outbound provider replaced by a fake."""
    monkeypatch.setattr(ai_client, "get_collection", mongo.get_collection)
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_payway_client] = lambda: payway
    app.dependency_overrides[get_ai_client] = lambda: ai
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()
