from __future__ import annotations

import gzip
import json
from unittest.mock import patch

from app import create_app
from cache_layer import _ViewCache, cache_clear, cache_get_or_set, cache_stats, candidate_view_key, invalidate_candidate_views
from config import Config
from services.record_store import CANDIDATES, USERS


def _api(client, payload: dict, **kw):
    return client.post("/api", data=json.dumps(payload), content_type="text/plain; charset=utf-8", **kw)


def _apply(client, first: str, email: str) -> str:
    res = _api(client, {"action": "SUBMIT_APPLICATION", "data": {"firstName": first, "lastName": "Doe", "email": email}})
    assert res.status_code == 200, res.get_json()
    return res.get_json()["data"]["id"]


def test_health_and_version(app_client):
    _app, client = app_client
    res = client.get("/health")
    assert res.status_code == 200
    body = res.get_json()
    assert body["success"] is True
    assert body["data"]["checks"]["db"] == "ok"
    assert "hits" in body["data"]["cache"]

    res = client.get("/version")
    assert res.status_code == 200
    assert res.get_json()["env"] == "test"


def test_health_degraded_when_db_unreachable(app_client):
    _app, client = app_client
    with patch("app.routes.core._ping_db", return_value=False):
        res = client.get("/health")
    assert res.status_code == 503
    assert res.get_json()["data"]["status"] == "degraded"


def test_request_id_and_security_headers(app_client):
    _app, client = app_client
    res = client.get("/")
    assert len(res.headers["X-Request-ID"]) == 16
    assert res.headers["X-Content-Type-Options"] == "nosniff"
    assert res.headers["X-Frame-Options"] == "DENY"
    assert res.headers["Cache-Control"] == "no-store"


def test_malformed_requests(app_client):
    _app, client = app_client
    res = client.post("/api", data="{not json", content_type="text/plain")
    assert res.status_code == 400
    assert res.get_json()["code"] == "BAD_REQUEST"

    res = client.post("/api", data="[1, 2]", content_type="text/plain")
    assert res.status_code == 400

    res = _api(client, {"data": {}})
    assert res.status_code == 400
    assert res.get_json()["error"] == "Missing action"


def test_bearer_header_is_accepted(app_client, admin_token):
    _app, client = app_client
    res = _api(client, {"action": "SESSION_VALIDATE", "data": {}}, headers={"Authorization": f"Bearer {admin_token}"})
    assert res.status_code == 200
    assert res.get_json()["data"]["valid"] is True


def test_public_action_ignores_bad_token(app_client):
    _app, client = app_client
    res = _api(client, {"action": "ACTIVE_APPLICATION_GET", "token": "ST-expired", "data": {}})
    assert res.status_code == 200


def test_candidate_views_are_cached_and_invalidated(app_client, admin_token):
    _app, client = app_client
    cid = _apply(client, "Ada", "ada@example.com")

    list_req = {"action": "CANDIDATES_LIST", "token": admin_token, "data": {"view": "candidates"}}
    assert [c["id"] for c in _api(client, list_req).get_json()["data"]["items"]] == [cid]
    hits = cache_stats()["hits"]
    assert _api(client, list_req).get_json()["data"]["total"] == 1
    assert cache_stats()["hits"] == hits + 1

    res = _api(client, {"action": "ADVANCE_TO_INTERVIEW", "token": admin_token, "data": {"id": cid}})
    assert res.status_code == 200

    assert _api(client, list_req).get_json()["data"]["items"] == []
    res = _api(client, {"action": "CANDIDATES_LIST", "token": admin_token, "data": {"view": "interviews"}})
    assert [c["id"] for c in res.get_json()["data"]["items"]] == [cid]


def test_unknown_candidate_view(app_client, admin_token):
    _app, client = app_client
    res = _api(client, {"action": "CANDIDATES_LIST", "token": admin_token, "data": {"view": "everyone"}})
    assert res.status_code == 400


def test_unexpected_failure_is_backend_error(app_client, backend, admin_token):
    _app, client = app_client
    with patch.object(backend.records, "list", side_effect=RuntimeError("boom")):
        res = _api(client, {"action": "CANDIDATES_LIST", "token": admin_token, "data": {"view": "newHires"}})
    assert res.status_code == 500
    body = res.get_json()
    assert body == {"success": False, "error": "Unexpected backend error", "code": "BACKEND_ERROR"}


def test_login_rate_limit(cfg, backend, monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_LOGIN", "2")
    app = create_app(Config(), backend)
    client = app.test_client()
    payload = {"action": "LOGIN", "data": {"email": "nobody@example.com", "password": "whatever123"}}

    assert _api(client, payload).status_code == 401
    assert _api(client, payload).status_code == 401
    res = _api(client, payload)
    assert res.status_code == 429
    assert res.get_json()["code"] == "RATE_LIMITED"


def test_large_json_responses_are_gzipped(cfg, backend, monkeypatch):
    monkeypatch.setenv("ENABLE_COMPRESSION", "1")
    cache_clear()
    app = create_app(Config(), backend)
    client = app.test_client()
    for i in range(10):
        backend.records.create(CANDIDATES, {"firstName": f"Person{i}", "lastName": "Doe", "status": "candidate"})

    res = _api(client, {"action": "LOGIN", "data": {"email": "root@example.com", "password": "rootpass12345"}})
    token = res.get_json()["data"]["token"]

    res = _api(
        client,
        {"action": "CANDIDATES_LIST", "token": token, "data": {}},
        headers={"Accept-Encoding": "gzip"},
    )
    assert res.status_code == 200
    assert res.headers["Content-Encoding"] == "gzip"
    assert json.loads(gzip.decompress(res.data))["data"]["total"] == 10

    res = _api(client, {"action": "CANDIDATES_LIST", "token": token, "data": {}})
    assert "Content-Encoding" not in res.headers


def test_view_computed_across_invalidation_is_not_stored(app_client):
    _app, client = app_client
    key = candidate_view_key("candidates")

    def _stale():
        # A write lands while the list is being computed.
        invalidate_candidate_views()
        return ["stale"]

    assert cache_get_or_set(key, _stale) == ["stale"]
    assert cache_get_or_set(key, lambda: ["fresh"]) == ["fresh"]
    assert cache_get_or_set(key, lambda: ["other"]) == ["fresh"]


def test_zero_ttl_disables_view_cache():
    cache = _ViewCache(ttl=0)
    assert cache.get_or_set("k", lambda: 1) == 1
    assert cache.get_or_set("k", lambda: 2) == 2
    assert cache.stats()["enabled"] is False
    assert cache.stats()["size"] == 0


def test_public_actions_work_with_an_expired_subscription_token(app_client, backend, admin_token):
    _app, client = app_client
    uid = backend.identities.find_by_email("admin@example.com")["uid"]
    backend.records.merge(USERS, uid, {"subscriptionEndDate": "2000-01-01T00:00:00.000Z"})

    res = _api(client, {"action": "ACTIVE_APPLICATION_GET", "token": admin_token, "data": {}})
    assert res.status_code == 200
    res = _api(
        client,
        {"action": "SUBMIT_APPLICATION", "token": admin_token, "data": {"firstName": "Ada", "lastName": "Doe", "email": "ada@example.com"}},
    )
    assert res.status_code == 200, res.get_json()

    res = _api(client, {"action": "COMPANIES_GET", "token": admin_token, "data": {}})
    assert res.status_code == 403
