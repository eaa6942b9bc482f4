from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from services.form_generator import CORE_FIELDS, FormGenerator, build_generation_request, validate_form_fields
from services.record_store import COMPANIES
from utils import BackendError, ValidationError


def _api(client, payload: dict):
    return client.post("/api", data=json.dumps(payload), content_type="text/plain; charset=utf-8")


GENERATED = {
    "name": "Caregiver Application",
    "fields": [
        {"id": "fullName", "label": "Full Legal Name", "type": "text", "required": True},
        {"id": "email", "label": "Email Address", "type": "email", "required": True},
        {"id": "shift", "label": "Preferred Shift", "type": "select", "required": False, "options": ["Day", "Night"]},
    ],
}


def _ok_response(body):
    resp = MagicMock()
    resp.raise_for_status.return_value = None
    resp.json.return_value = body
    return resp


def test_generation_request_defaults():
    req = build_generation_request({}, company_name="Acme")
    ids = [f["id"] for f in req["fields"]]

    assert ids[: len(CORE_FIELDS)] == [f["id"] for f in CORE_FIELDS]
    assert "address" in ids and "resumeUpload" in ids
    assert "cnaLicense" not in ids and "references" not in ids
    assert all(f["required"] for f in req["fields"])
    assert req["companyName"] == "Acme"


def test_generation_request_selections():
    req = build_generation_request(
        {
            "fields": {"address": {"included": False}, "cprCert": {"included": True, "required": False}, "references": True},
            "instructions": "Keep it short",
        }
    )
    by_id = {f["id"]: f for f in req["fields"]}
    assert "address" not in by_id
    assert by_id["cprCert"]["required"] is False
    assert by_id["references"]["required"] is False
    assert req["instructions"] == "Keep it short"


def test_field_validation():
    with pytest.raises(ValidationError):
        validate_form_fields([{"id": "shift", "label": "Shift", "type": "radio"}])
    with pytest.raises(ValidationError):
        validate_form_fields([{"id": "a", "label": "A", "type": "video"}])
    with pytest.raises(ValidationError):
        validate_form_fields([{"id": "a", "label": "A", "type": "text"}, {"id": "a", "label": "B", "type": "text"}])
    with pytest.raises(ValidationError):
        validate_form_fields([])


def test_generator_posts_and_parses():
    session = MagicMock()
    session.post.return_value = _ok_response(GENERATED)
    gen = FormGenerator("https://forms.example.test/generate", api_key="k", session=session)

    out = gen.generate({"companyName": "Acme", "fields": [], "instructions": ""})
    assert out["name"] == "Caregiver Application"
    assert [f["id"] for f in out["fields"]] == ["fullName", "email", "shift"]
    assert session.post.call_args[1]["headers"]["Authorization"] == "Bearer k"


def test_generator_failures_are_backend_errors():
    with pytest.raises(BackendError) as exc:
        FormGenerator("").generate({})
    assert exc.value.code == "NOT_CONFIGURED"

    session = MagicMock()
    session.post.side_effect = requests.Timeout("slow")
    with pytest.raises(BackendError):
        FormGenerator("https://x.test", session=session).generate({})

    session = MagicMock()
    session.post.return_value = _ok_response({"name": "Bad", "fields": [{"id": "x", "label": "X", "type": "select"}]})
    with pytest.raises(BackendError):
        FormGenerator("https://x.test", session=session).generate({})


def test_generate_action_creates_process_with_generated_form(app_client, backend, admin_token):
    _app, client = app_client
    res = _api(client, {"action": "COMPANY_SAVE", "token": admin_token, "data": {"name": "Acme Care"}})
    company_id = res.get_json()["data"]["id"]

    with patch.object(backend.forms._session, "post", return_value=_ok_response(GENERATED)) as post:
        res = _api(
            client,
            {
                "action": "APPLICATION_FORM_GENERATE",
                "token": admin_token,
                "data": {"companyId": company_id, "options": {"instructions": "friendly"}},
            },
        )
    assert res.status_code == 200, res.get_json()
    assert post.call_args[1]["json"]["companyName"] == "Acme Care"

    proc = res.get_json()["data"]
    assert proc["name"] == "Caregiver Application"
    assert proc["applicationForm"]["type"] == "custom"
    assert proc["applicationForm"]["images"] == []
    assert len(proc["applicationForm"]["fields"]) == 3

    stored = backend.records.get(COMPANIES, company_id)["onboardingProcesses"]
    assert [p["id"] for p in stored] == [proc["id"]]


def test_generate_action_reports_backend_failure(app_client, backend, admin_token):
    _app, client = app_client
    res = _api(client, {"action": "COMPANY_SAVE", "token": admin_token, "data": {"name": "Acme Care"}})
    company_id = res.get_json()["data"]["id"]

    with patch.object(backend.forms._session, "post", side_effect=requests.ConnectionError("down")):
        res = _api(
            client,
            {"action": "APPLICATION_FORM_GENERATE", "token": admin_token, "data": {"companyId": company_id}},
        )
    assert res.status_code == 502
    assert res.get_json()["code"] == "BACKEND_ERROR"
    assert backend.records.get(COMPANIES, company_id)["onboardingProcesses"] == []
