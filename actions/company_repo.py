from __future__ import annotations

import logging
from typing import Any, Optional

from actions.helpers import as_dict, require_str, require_upload
from services.blob_store import BlobStore, FileUpload
from services.record_store import COMPANIES, RecordStore
from utils import AuthContext, NotFoundError, ValidationError, iso_utc_now, new_doc_id
from workflow_types import OnboardingProcess, TemplateForm, stored_process


log = logging.getLogger("workflow")

COMPANY_FIELDS = ("name", "address", "phone", "fax", "email")

DEFAULT_APPLICATION = {"id": "default", "name": "Default Application", "isDefault": True}


def get_companies(records: RecordStore) -> list[dict[str, Any]]:
    """Oldest first; the first entry is the active company."""
    return records.list(COMPANIES)


def get_company(records: RecordStore, company_id: str) -> Optional[dict[str, Any]]:
    cid = str(company_id or "").strip()
    if not cid:
        return None
    return records.get(COMPANIES, cid)


def require_company(records: RecordStore, company_id: str) -> dict[str, Any]:
    doc = get_company(records, company_id)
    if not doc:
        raise NotFoundError("Company not found")
    return doc


def active_company(records: RecordStore) -> Optional[dict[str, Any]]:
    companies = get_companies(records)
    return companies[0] if companies else None


def _clean_company_fields(data: dict[str, Any]) -> dict[str, Any]:
    out = {}
    for k in COMPANY_FIELDS:
        if k in data:
            out[k] = str(data.get(k) or "").strip()[:500]
    return out


def create_or_update_company(records: RecordStore, data: Any) -> dict[str, Any]:
    """
    Merge-save from the settings screen.

    Unspecified fields are kept. When the caller sends the `version` it loaded, a
    concurrent edit in between raises ConflictError instead of being overwritten.
    """
    if not isinstance(data, dict):
        raise ValidationError("Company data must be an object")

    cid = str(data.get("id") or "").strip()
    fields = _clean_company_fields(data)

    if not cid:
        name = fields.get("name", "")
        if not name:
            raise ValidationError("Company name is required")
        doc = {
            "name": name,
            "address": fields.get("address", ""),
            "phone": fields.get("phone", ""),
            "fax": fields.get("fax", ""),
            "email": fields.get("email", ""),
            "logo": None,
            "onboardingProcesses": [],
            "created_at": iso_utc_now(),
        }
        created = records.create(COMPANIES, doc, doc_id=new_doc_id())
        log.info("company=%s created", created["id"])
        return created

    if "name" in fields and not fields["name"]:
        raise ValidationError("Company name is required")

    if data.get("version") is None:
        return records.merge(COMPANIES, cid, fields)
    try:
        version = int(data["version"])
    except (TypeError, ValueError):
        raise ValidationError("version must be an integer")

    current, current_version = records.get_versioned(COMPANIES, cid)
    if current is None:
        raise NotFoundError("Company not found")
    current.update(fields)
    # put() compares against the version the caller read, not the one just loaded.
    new_version = records.put(COMPANIES, cid, current, expected_version=version)
    log.info("company=%s saved version %d -> %d", cid, current_version, new_version)
    out = dict(current)
    out["version"] = new_version
    return out


def get_company_versioned(records: RecordStore, company_id: str) -> dict[str, Any]:
    doc, version = records.get_versioned(COMPANIES, str(company_id or "").strip())
    if doc is None:
        raise NotFoundError("Company not found")
    out = dict(doc)
    out["version"] = version
    return out


def delete_company(records: RecordStore, company_id: str) -> None:
    cid = str(company_id or "").strip()
    doc = get_company(records, cid)
    if not doc or not records.delete(COMPANIES, cid):
        raise NotFoundError("Company not found")
    if doc.get("logo"):
        log.warning("company=%s deleted; logo left in storage: %s", cid, doc["logo"])


def delete_all_companies(records: RecordStore) -> int:
    removed = records.delete_all(COMPANIES)
    log.warning("removed %d company record(s)", removed)
    return removed


def upload_company_logo(records: RecordStore, blobs: BlobStore, company_id: str, upload: FileUpload) -> dict[str, Any]:
    if not upload.data:
        raise ValidationError("Empty file")
    cid = str(company_id or "").strip()
    require_company(records, cid)

    locator = blobs.upload(cid, "logo", upload.filename, upload.data, upload.content_type)
    previous: dict[str, Any] = {}

    def _apply(doc: dict[str, Any]) -> None:
        previous["logo"] = doc.get("logo")
        doc["logo"] = locator

    doc = records.mutate(COMPANIES, cid, _apply)
    old = previous.get("logo")
    if old and old != locator:
        blobs.delete_quietly(old)
    return doc


def company_processes(company: dict[str, Any]) -> list[OnboardingProcess]:
    return [stored_process(p) for p in (company.get("onboardingProcesses") or []) if isinstance(p, dict)]


def active_process(company: Optional[dict[str, Any]]) -> Optional[OnboardingProcess]:
    if not company:
        return None
    processes = company_processes(company)
    return processes[0] if processes else None


def active_application(records: RecordStore) -> dict[str, Any]:
    """
    What the public application link points at.

    With no processes the built-in default application is active; otherwise the
    first process of the active company is.
    """
    company = active_company(records)
    process = active_process(company)
    if process is None:
        default_form = TemplateForm(id=DEFAULT_APPLICATION["id"], name=DEFAULT_APPLICATION["name"])
        return {
            "companyId": (company or {}).get("id"),
            "companyName": (company or {}).get("name", ""),
            "isDefault": True,
            "processId": None,
            "processName": DEFAULT_APPLICATION["name"],
            "applicationForm": default_form.to_dict(),
        }
    return {
        "companyId": company["id"],
        "companyName": company.get("name", ""),
        "isDefault": False,
        "processId": process.id,
        "processName": process.name,
        "applicationForm": process.application_form.to_dict(),
    }


def handle_companies_get(data, auth: AuthContext | None, backend, cfg):
    items = get_companies(backend.records)
    return {"items": items, "total": len(items), "activeCompanyId": items[0]["id"] if items else None}


def handle_company_get(data, auth: AuthContext | None, backend, cfg):
    return get_company_versioned(backend.records, require_str(as_dict(data), "id", "company id"))


def handle_company_save(data, auth: AuthContext | None, backend, cfg):
    return create_or_update_company(backend.records, as_dict(data))


def handle_company_delete(data, auth: AuthContext | None, backend, cfg):
    cid = require_str(as_dict(data), "id", "company id")
    delete_company(backend.records, cid)
    return {"id": cid, "deleted": True}


def handle_companies_delete_all(data, auth: AuthContext | None, backend, cfg):
    return {"deleted": delete_all_companies(backend.records)}


def handle_logo_upload(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    return upload_company_logo(
        backend.records, backend.blobs, require_str(d, "companyId", "company id"), require_upload(d, "file")
    )


def handle_active_application(data, auth: AuthContext | None, backend, cfg):
    return active_application(backend.records)
