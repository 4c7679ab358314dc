import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from regdesk import services
from regdesk.api import app, limiter
from regdesk.config import settings
from regdesk.database import Base
from regdesk.models import user  # noqa: F401

OWNER_PASSWORD = "Str0ng!Pw"
OWNER = {
    "name": "owner",
    "email": "owner@example.com",
    "phone": "555-010-0000",
    "emergency_contact": "5550100001",
    "address": "1 Main Street",
    "date_of_birth": "1980-01-01",
    "gender": "F",
    "blood_group": "O+",
    "password": OWNER_PASSWORD,
}


def profile(name: str, **overrides):
    """Complete profile fields for a user or participant called ``name``."""
    data = {
        "name": name,
        "email": f"{name}@example.com",
        "phone": "(555) 200-1000",
        "emergency_contact": "5552001001",
        "address": f"{len(name)} Side Road",
        "date_of_birth": "1995-06-15",
        "gender": "M",
        "blood_group": "A+",
    }
    data.update(overrides)
    return data


@pytest.fixture
def session_local(monkeypatch):
    """Provide an isolated in-memory database for each test."""
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr(services, "SessionLocal", TestingSessionLocal)
    monkeypatch.setattr(settings, "bcrypt_rounds", 4)
    monkeypatch.setattr(settings, "promotion_requires_owner", True)
    monkeypatch.setattr(settings, "refresh_session_role", False)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture
def owner_id(session_local):
    return services.provision_owner(OWNER)


@pytest.fixture
def owner_session(owner_id):
    return services.login("owner", OWNER_PASSWORD)


@pytest.fixture
def make_user(owner_session):
    """Create an OPERATOR as the owner and return its id."""

    def _make(name: str, password: str = "Op3rator!", **overrides):
        data = profile(name, password=password, **overrides)
        return services.create_user(owner_session, data)

    return _make


@pytest.fixture
def client(session_local, monkeypatch):
    monkeypatch.setattr(limiter, "enabled", False)
    limiter.reset()
    return TestClient(app)
