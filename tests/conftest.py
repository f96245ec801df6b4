"""
Shared fixtures: an application backed by in-memory SQLite, plus helpers for
creating users, categories and products.
"""
import itertools
import os
from decimal import Decimal

# Importing app builds a module-level application; keep it off PostgreSQL
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient

from app import create_app
from config import Settings
from database import Database
from models import Category, Product, User

_counter = itertools.count(1)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url="sqlite://",
        jwt_secret_key="test-secret",
        upload_dir=str(tmp_path / "uploads"),
        log_level="WARNING",
    )


@pytest.fixture
def database(settings):
    db = Database(settings.database_url)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def app(settings, database):
    return create_app(settings, database)


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def register(client):
    """Register a user through the API; returns (user dict, auth headers)."""

    def _register(username=None, password="secret123", **extra):
        n = next(_counter)
        username = username or f"user{n}"
        payload = {
            "username": username,
            "email": f"{username}@example.com",
            "phone": f"0712{n:06d}",
            "password": password,
            **extra,
        }
        response = client.post("/api/auth/register", json=payload)
        assert response.status_code == 201, response.text
        body = response.json()
        return body["user"], auth_header(body["token"])

    return _register


@pytest.fixture
def admin(register, database):
    user, headers = register("admin")
    with database.session() as s:
        s.get(User, user["id"]).role = "admin"
        s.commit()
    return user, headers


@pytest.fixture
def make_category(database):
    def _make(name=None, **fields):
        with database.session() as s:
            category = Category(name=name or f"Category {next(_counter)}", **fields)
            s.add(category)
            s.commit()
            return category.id

    return _make


@pytest.fixture
def make_product(database):
    """Insert a product row directly and return its id."""

    def _make(owner_id, **fields):
        values = {
            "title": "Used phone",
            "description": "Works fine",
            "price": Decimal("100.00"),
            "condition": "good",
            "location": "Dar es Salaam",
        }
        values.update(fields)
        with database.session() as s:
            product = Product(user_id=owner_id, **values)
            s.add(product)
            s.commit()
            return product.id

    return _make
