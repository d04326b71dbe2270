from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from golfimprover import create_app
from golfimprover.config import Settings


@pytest.fixture
def make_app(tmp_path, monkeypatch):
    """Build an app backed by a temporary local store and session database."""

    monkeypatch.setenv("LOCAL_DATABASE_URI", f"sqlite:///{tmp_path / 'sessions.db'}")
    monkeypatch.setenv("FLASK_SECRET_KEY", "testing-secret")
    monkeypatch.setenv("FLASK_ENV", "development")
    monkeypatch.delenv("SUPABASE_DB_POOL_URL", raising=False)
    monkeypatch.delenv("VERCEL", raising=False)
    monkeypatch.delenv("VERCEL_ENV", raising=False)

    def factory(**overrides):
        settings = replace(Settings(data_dir=Path(tmp_path) / "data"), **overrides)
        app = create_app({"TESTING": True, "GOLF_SETTINGS": settings})
        return app

    return factory


@pytest.fixture
def app(make_app):
    return make_app(admin_api_key="admin-key", cron_secret="cron-key")


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client, app):
    """Sign a user into the test client's session and create their profile."""

    def _login(user_id="user-123", email="pat@example.com", **profile):
        app.storage_service.create_user_profile(user_id, {"email": email, **profile})
        with client.session_transaction() as flask_session:
            flask_session["user"] = {"id": user_id, "email": email, "name": profile.get("name")}
        return user_id

    return _login
