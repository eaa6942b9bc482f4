from __future__ import annotations

import json

import pytest

from actions.company_repo import active_application, create_or_update_company
from actions.workflow import add_process, add_required_doc, remove_process, remove_required_doc, set_application_form_type
from services.record_store import COMPANIES
from utils import ConflictError, NotFoundError, ValidationError
from workflow_types import GeneratedForm, ImageForm, TemplateForm, stored_process


def _api(client, payload: dict):
    return client.post("/api", data=json.dumps(payload), content_type="text/plain; charset=utf-8")


def _company(client, token: str, name: str = "Acme Care") -> dict:
    res = _api(client, {"action": "COMPANY_SAVE", "token": token, "data": {"name": name, "phone": "555-0101"}})
    assert res.status_code == 200, res.get_json()
    return res.get_json()["data"]


def _add_process(client, token: str, company_id: str, name: str, **extra) -> dict:
    process = {"name": name}
    process.update(extra)
    res = _api(client, {"action": "PROCESS_ADD", "token": token, "data": {"companyId": company_id, "process": process}})
    assert res.status_code == 200, res.get_json()
    return res.get_json()["data"]


def _processes(client, token: str, company_id: str) -> list:
    res = _api(client, {"action": "COMPANY_GET", "token": token, "data": {"id": company_id}})
    assert res.status_code == 200
    return res.get_json()["data"]["onboardingProcesses"]


def test_company_merge_save_keeps_unspecified_fields(app_client, admin_token):
    _app, client = app_client
    company = _company(client, admin_token)

    res = _api(client, {"action": "COMPANY_SAVE", "token": admin_token, "data": {"id": company["id"], "fax": "555-0199"}})
    assert res.status_code == 200
    data = res.get_json()["data"]
    assert data["name"] == "Acme Care"
    assert data["phone"] == "555-0101"
    assert data["fax"] == "555-0199"


def test_company_name_is_required(app_client, admin_token):
    _app, client = app_client
    res = _api(client, {"action": "COMPANY_SAVE", "token": admin_token, "data": {"address": "1 Main St"}})
    assert res.status_code == 400
    assert res.get_json()["code"] == "VALIDATION_ERROR"


def test_add_then_remove_process_restores_length(app_client, admin_token):
    _app, client = app_client
    company = _company(client, admin_token)
    _add_process(client, admin_token, company["id"], "Caregiver")
    before = len(_processes(client, admin_token, company["id"]))

    proc = _add_process(client, admin_token, company["id"], "Driver")
    assert len(_processes(client, admin_token, company["id"])) == before + 1
    assert proc["applicationForm"]["type"] == "template"
    assert proc["interviewScreen"] == {"type": "template", "imageUrl": None}

    res = _api(
        client,
        {"action": "PROCESS_REMOVE", "token": admin_token, "data": {"companyId": company["id"], "processId": proc["id"]}},
    )
    assert res.status_code == 200
    assert res.get_json()["success"] is True
    assert len(_processes(client, admin_token, company["id"])) == before


def test_remove_unknown_process_reports_failure(app_client, backend, admin_token):
    _app, client = app_client
    company = _company(client, admin_token)

    result = remove_process(backend.records, company["id"], "no-such-process")
    assert result["success"] is False
    assert result["error"]

    res = _api(
        client,
        {"action": "PROCESS_REMOVE", "token": admin_token, "data": {"companyId": company["id"], "processId": "nope"}},
    )
    assert res.status_code == 404
    assert res.get_json()["success"] is False


def test_add_process_to_unknown_company(backend):
    with pytest.raises(NotFoundError):
        add_process(backend.records, "missing", {"name": "Caregiver"})


def test_duplicate_process_id_is_rejected(backend):
    company = create_or_update_company(backend.records, {"name": "Acme"})
    add_process(backend.records, company["id"], {"id": "p1", "name": "Caregiver"})
    with pytest.raises(ValidationError):
        add_process(backend.records, company["id"], {"id": "p1", "name": "Other"})
    assert len(backend.records.get(COMPANIES, company["id"])["onboardingProcesses"]) == 1


def test_required_docs_add_and_remove_are_idempotent(app_client, admin_token):
    _app, client = app_client
    company = _company(client, admin_token)
    proc = _add_process(client, admin_token, company["id"], "Caregiver")

    for _ in range(2):
        res = _api(
            client,
            {"action": "REQUIRED_DOC_ADD", "token": admin_token, "data": {"processId": proc["id"], "doc": {"id": "i9"}}},
        )
        assert res.status_code == 200
    docs = res.get_json()["data"]["requiredDocs"]
    assert docs == [{"id": "i9", "label": "I-9 Form", "type": "standard"}]

    for _ in range(2):
        res = _api(
            client,
            {"action": "REQUIRED_DOC_REMOVE", "token": admin_token, "data": {"processId": proc["id"], "docId": "i9"}},
        )
        assert res.status_code == 200
        assert res.get_json()["data"]["requiredDocs"] == []


def test_custom_required_doc_needs_label(backend):
    company = create_or_update_company(backend.records, {"name": "Acme"})
    proc = add_process(backend.records, company["id"], {"name": "Caregiver"})

    with pytest.raises(ValidationError):
        add_required_doc(backend.records, proc.id, {"id": "tbTest"})
    updated = add_required_doc(backend.records, proc.id, {"id": "tbTest", "label": "TB Test Result"})
    assert updated.required_docs[-1].type == "custom"
    assert remove_required_doc(backend.records, proc.id, "tbTest").required_docs == ()


def test_custom_image_list_round_trips_in_order(app_client, admin_token):
    _app, client = app_client
    company = _company(client, admin_token)
    proc = _add_process(client, admin_token, company["id"], "Caregiver")
    images = [f"{company['id']}/application-forms/3-page3.png", f"{company['id']}/application-forms/1-page1.png"]

    res = _api(
        client,
        {
            "action": "APPLICATION_FORM_TYPE_SET",
            "token": admin_token,
            "data": {"processId": proc["id"], "type": "custom", "payload": {"images": images}},
        },
    )
    assert res.status_code == 200, res.get_json()

    stored = _processes(client, admin_token, company["id"])[0]
    assert stored["applicationForm"]["type"] == "custom"
    assert stored["applicationForm"]["images"] == images
    assert isinstance(stored_process(stored).application_form, ImageForm)


def test_custom_form_needs_exactly_one_representation(backend):
    company = create_or_update_company(backend.records, {"name": "Acme"})
    proc = add_process(backend.records, company["id"], {"name": "Caregiver"})
    fields = [{"id": "fullName", "label": "Full Name", "type": "text", "required": True}]

    with pytest.raises(ValidationError):
        set_application_form_type(backend.records, proc.id, "custom", {"images": ["a/b/1.png"], "fields": fields})
    with pytest.raises(ValidationError):
        set_application_form_type(backend.records, proc.id, "custom", {})

    updated = set_application_form_type(backend.records, proc.id, "custom", {"fields": fields})
    assert isinstance(updated.application_form, GeneratedForm)
    reverted = set_application_form_type(backend.records, proc.id, "template", company_id=company["id"])
    assert isinstance(reverted.application_form, TemplateForm)
    assert reverted.application_form.id == proc.application_form.id


def test_interview_screen_custom_requires_image(app_client, admin_token):
    _app, client = app_client
    company = _company(client, admin_token)
    proc = _add_process(client, admin_token, company["id"], "Caregiver")

    res = _api(
        client,
        {"action": "INTERVIEW_SCREEN_TYPE_SET", "token": admin_token, "data": {"processId": proc["id"], "type": "custom"}},
    )
    assert res.status_code == 400

    res = _api(
        client,
        {
            "action": "INTERVIEW_SCREEN_TYPE_SET",
            "token": admin_token,
            "data": {"processId": proc["id"], "type": "custom", "imageUrl": "c1/interview-screens/1-bg.png"},
        },
    )
    assert res.status_code == 200
    assert res.get_json()["data"]["interviewScreen"] == {"type": "custom", "imageUrl": "c1/interview-screens/1-bg.png"}


def test_active_application_defaults_without_processes(app_client, backend, admin_token):
    _app, client = app_client

    res = _api(client, {"action": "ACTIVE_APPLICATION_GET", "token": None, "data": {}})
    assert res.status_code == 200
    assert res.get_json()["data"]["isDefault"] is True

    company = _company(client, admin_token)
    assert active_application(backend.records)["isDefault"] is True

    proc = _add_process(client, admin_token, company["id"], "Caregiver")
    res = _api(client, {"action": "ACTIVE_APPLICATION_GET", "data": {}})
    data = res.get_json()["data"]
    assert data["isDefault"] is False
    assert data["processId"] == proc["id"]
    assert data["companyId"] == company["id"]


def test_stale_version_merge_save_conflicts(app_client, backend, admin_token):
    _app, client = app_client
    company = _company(client, admin_token)

    res = _api(client, {"action": "COMPANY_GET", "token": admin_token, "data": {"id": company["id"]}})
    version = res.get_json()["data"]["version"]

    _add_process(client, admin_token, company["id"], "Caregiver")

    res = _api(
        client,
        {"action": "COMPANY_SAVE", "token": admin_token, "data": {"id": company["id"], "name": "Renamed", "version": version}},
    )
    assert res.status_code == 409
    assert res.get_json()["code"] == "CONFLICT"
    assert backend.records.get(COMPANIES, company["id"])["name"] == "Acme Care"

    with pytest.raises(ConflictError):
        create_or_update_company(backend.records, {"id": company["id"], "name": "Again", "version": version})

    _doc, current = backend.records.get_versioned(COMPANIES, company["id"])
    saved = create_or_update_company(backend.records, {"id": company["id"], "name": "Renamed", "version": current})
    assert saved["name"] == "Renamed"
    assert len(saved["onboardingProcesses"]) == 1


def test_process_operations_find_company_by_scan(backend):
    create_or_update_company(backend.records, {"name": "First"})
    second = create_or_update_company(backend.records, {"name": "Second"})
    proc = add_process(backend.records, second["id"], {"name": "Nurse"})

    updated = add_required_doc(backend.records, proc.id, {"id": "w4"})
    assert [d.id for d in updated.required_docs] == ["w4"]
    assert backend.records.get(COMPANIES, second["id"])["onboardingProcesses"][0]["requiredDocs"][0]["id"] == "w4"

    with pytest.raises(NotFoundError):
        remove_required_doc(backend.records, "unknown-process", "w4")


def test_delete_company_and_superuser_delete_all(app_client, admin_token, superuser_token):
    _app, client = app_client
    first = _company(client, admin_token, "One")
    _company(client, admin_token, "Two")

    res = _api(client, {"action": "COMPANY_DELETE", "token": admin_token, "data": {"id": first["id"]}})
    assert res.status_code == 200
    res = _api(client, {"action": "COMPANY_DELETE", "token": admin_token, "data": {"id": first["id"]}})
    assert res.status_code == 404

    res = _api(client, {"action": "COMPANIES_DELETE_ALL", "token": admin_token, "data": {}})
    assert res.status_code == 403
    res = _api(client, {"action": "COMPANIES_DELETE_ALL", "token": superuser_token, "data": {}})
    assert res.status_code == 200
    assert res.get_json()["data"]["deleted"] == 1

    res = _api(client, {"action": "COMPANIES_GET", "token": admin_token, "data": {}})
    assert res.get_json()["data"]["total"] == 0


def test_updating_one_process_leaves_siblings_as_stored(backend):
    company = create_or_update_company(backend.records, {"name": "Acme"})
    target = add_process(backend.records, company["id"], {"name": "Nurse"})
    sibling = add_process(backend.records, company["id"], {"name": "Caregiver"})

    def _annotate(doc):
        for p in doc["onboardingProcesses"]:
            if p["id"] == sibling.id:
                p["customNote"] = "keep me"
                p["applicationForm"] = {"type": "custom", "images": ["a.png"]}

    backend.records.mutate(COMPANIES, company["id"], _annotate)
    before = [p for p in backend.records.get(COMPANIES, company["id"])["onboardingProcesses"] if p["id"] == sibling.id][0]

    add_required_doc(backend.records, target.id, {"id": "w4"}, company_id=company["id"])

    after = backend.records.get(COMPANIES, company["id"])["onboardingProcesses"]
    assert [p for p in after if p["id"] == sibling.id][0] == before
    assert [d["id"] for d in [p for p in after if p["id"] == target.id][0]["requiredDocs"]] == ["w4"]
