from __future__ import annotations

import json

import pytest

from app import create_app
from cache_layer import cache_clear
from config import Config
from services.backend import build_backend

SUPERUSER_EMAIL = "root@example.com"
SUPERUSER_PASSWORD = "rootpass12345"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"


@pytest.fixture()
def cfg(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("FILE_STORAGE_MODE", "local")
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("SUPERUSER_EMAIL", SUPERUSER_EMAIL)
    monkeypatch.setenv("SUPERUSER_PASSWORD", SUPERUSER_PASSWORD)
    monkeypatch.setenv("RATE_LIMIT_GLOBAL", "100000")
    monkeypatch.setenv("RATE_LIMIT_DEFAULT", "100000")
    monkeypatch.setenv("RATE_LIMIT_LOGIN", "100000")
    monkeypatch.setenv("RATE_LIMIT_APPLY", "100000")
    monkeypatch.setenv("FORM_GENERATOR_URL", "https://forms.example.test/generate")
    monkeypatch.setenv("ENABLE_COMPRESSION", "0")
    return Config()


@pytest.fixture()
def backend(cfg):
    be = build_backend(cfg)
    yield be
    be.close()


@pytest.fixture()
def app_client(cfg, backend):
    cache_clear()
    app = create_app(cfg, backend)
    app.config["TESTING"] = True
    yield app, app.test_client()
    cache_clear()


def api(client, payload: dict):
    return client.post("/api", data=json.dumps(payload), content_type="text/plain; charset=utf-8")


def login(client, email: str, password: str) -> str:
    res = api(client, {"action": "LOGIN", "token": None, "data": {"email": email, "password": password}})
    assert res.status_code == 200, res.get_json()
    token = res.get_json()["data"]["token"]
    assert token.startswith("ST-")
    return token


@pytest.fixture()
def superuser_token(app_client):
    _app, client = app_client
    return login(client, SUPERUSER_EMAIL, SUPERUSER_PASSWORD)


@pytest.fixture()
def admin_token(app_client, superuser_token):
    _app, client = app_client
    res = api(
        client,
        {
            "action": "ADMIN_USER_CREATE",
            "token": superuser_token,
            "data": {"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD, "companyId": ""},
        },
    )
    assert res.status_code == 200, res.get_json()
    return login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
