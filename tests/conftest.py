"""Pytest fixtures for canteen tests."""

import pytest
from fastapi.testclient import TestClient

from database import get_repository, seed_defaults
from repository import MemoryRepository
from schemas import Actor, CartLine, Role


@pytest.fixture
def repo():
    """A seeded in-memory repository (demo users and the five-item menu)."""
    r = MemoryRepository()
    seed_defaults(r)
    return r


@pytest.fixture
def student():
    return Actor(user_id="u-student", role=Role.STUDENT, name="Demo Student")


@pytest.fixture
def other_student():
    return Actor(user_id="u-other", role=Role.STUDENT, name="Other Student")


@pytest.fixture
def vendor():
    return Actor(user_id="u-vendor", role=Role.VENDOR, name="Stock Vendor")


@pytest.fixture
def admin():
    return Actor(user_id="u-admin", role=Role.ADMIN, name="Canteen Admin")


@pytest.fixture
def cart():
    """Build cart lines from (item_id, qty) pairs."""
    def _cart(*lines):
        return [CartLine(item_id=item_id, qty=qty) for item_id, qty in lines]
    return _cart


@pytest.fixture
def client(repo):
    """Test client whose requests run against the fixture repository."""
    from main import app

    app.dependency_overrides[get_repository] = lambda: repo
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(client):
    """Log in as one of the seeded users and return the Authorization header."""
    def _login(email, password):
        response = client.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200
        return {"Authorization": f"Bearer {response.json()['token']}"}
    return _login
