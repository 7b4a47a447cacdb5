"""Shared fixtures.

The settings singleton is built at import time, so the environment is pointed
at a throwaway SQLite file before anything from `letschat` is imported.
"""

import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="letschat-tests-")
os.environ["DB_DRIVER_NAME"] = "sqlite"
os.environ["DB_DATABASE_NAME"] = os.path.join(_DB_DIR, "letschat-test.db")
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SECRET_KEY"] = "test-signing-secret"
os.environ["KEY_ENCRYPTION_SECRET"] = "test-key-encryption-secret"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from fastapi.testclient import TestClient

import letschat.database.entities  # noqa: F401
from letschat.api.realtime import manager
from letschat.database.config.connection_engine import connection_engine, metadata
from letschat.database.core import auth as auth_service

PASSWORD = "Secr3t!pass"


@pytest.fixture(autouse=True)
def database():
    """Fresh schema for every test."""
    metadata.drop_all(connection_engine)
    metadata.create_all(connection_engine)
    yield


@pytest.fixture(autouse=True)
def realtime_state():
    manager.reset()
    yield
    manager.reset()


@pytest.fixture
def client():
    from letschat.main import app

    with TestClient(app) as test_client:
        yield test_client


def register_user(username: str, display_name: str | None = None) -> dict:
    """Register through the service layer; returns {'user', 'token'}."""
    return auth_service.register(username=username, password=PASSWORD, display_name=display_name)


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def alice():
    return register_user("alice", "Alice")


@pytest.fixture
def bob():
    return register_user("bob", "Bob")


@pytest.fixture
def carol():
    return register_user("carol", "Carol")
