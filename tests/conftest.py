"""
Pytest configuration and shared fixtures.

Each test gets a fresh app over an in-memory SQLite database and an
in-memory asset store, so no network or disk is touched.
"""

import pytest
from fastapi.testclient import TestClient

from adboard.assets import AssetStore, ImageUpload
from adboard.config import Settings, get_settings
from adboard.main import create_app

# Clear settings cache so tests never reuse settings read at import time
get_settings.cache_clear()

PNG_HEADER = b"\x89PNG\r\n\x1a\n"


class InMemoryAssetStore(AssetStore):
    """Records saved uploads and hands out predictable URLs."""

    def __init__(self):
        self.saved = []

    def save(self, upload: ImageUpload) -> str:
        self.saved.append(upload)
        return f"https://assets.example.test/ads/{len(self.saved)}{upload.extension}"


def make_settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": "sqlite:///:memory:",
        "LOG_LEVEL": "WARNING",
    }
    values.update(overrides)
    return Settings(**values)


def submit_ad(client, phone="+12015550123", city="NYC", group="food", address=None, image=None):
    """Post the submission form; `image` is a (filename, bytes, content_type) tuple."""
    data = {"phone": phone, "city": city, "group": group}
    if address is not None:
        data["address"] = address
    files = {"image": image} if image is not None else None
    return client.post("/submit", data=data, files=files)


def png_file(size: int = 1024, name: str = "photo.png"):
    return (name, PNG_HEADER + b"\0" * (size - len(PNG_HEADER)), "image/png")


@pytest.fixture
def asset_store():
    return InMemoryAssetStore()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def app(settings, asset_store):
    return create_app(settings, asset_store=asset_store)


@pytest.fixture
def client(app):
    """Test client; entering it runs startup, which creates the tables."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def db(app, client):
    """A session on the same database the client's app uses."""
    session = app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def ads_in_db(db):
    """Every stored ad, re-queried on each call."""
    from adboard.models import Ad

    def query():
        db.expire_all()
        return db.query(Ad).order_by(Ad.id).all()

    return query
