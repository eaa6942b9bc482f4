from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from actions.company_repo import active_company, active_process
from actions.helpers import as_dict, optional_str, optional_upload, require_str, require_upload
from actions.lifecycle_service import STATUS_CANDIDATE, STATUS_EMPLOYEE, STATUS_INACTIVE, STATUS_INTERVIEW, STATUS_NEW_HIRE
from actions.workflow import find_process
from cache_layer import cache_get_or_set, candidate_view_key
from services.blob_store import BlobNotFoundError, BlobStore, FileUpload
from services.record_store import CANDIDATES, RecordStore, newest_first
from utils import AuthContext, BackendError, NotFoundError, ValidationError, iso_utc_now, new_doc_id, parse_datetime_maybe, to_iso_utc
from workflow_types import OnboardingProcess


log = logging.getLogger("lifecycle")

REQUIRED_APPLICATION_FIELDS = ("firstName", "lastName", "email")
REQUIRED_LEGACY_FIELDS = ("firstName", "lastName")

# Keys owned by the lifecycle and upload operations; never taken from form input.
_SYSTEM_KEYS = {
    "id",
    "created_at",
    "status",
    "documents",
    "miscDocuments",
    "resume",
    "driversLicense",
    "driversLicenseExpiration",
    "interviewReview",
    "inactiveInfo",
}

DOC_KIND_REQUIRED = "required"
DOC_KIND_MISC = "misc"
_DOC_LIST_KEY = {DOC_KIND_REQUIRED: "documents", DOC_KIND_MISC: "miscDocuments"}

CANDIDATE_VIEWS: dict[str, tuple[str, ...]] = {
    "candidates": (STATUS_CANDIDATE,),
    "interviews": (STATUS_INTERVIEW,),
    "newHires": (STATUS_NEW_HIRE,),
    "employees": (STATUS_EMPLOYEE, STATUS_INACTIVE),
    "personnel": (STATUS_NEW_HIRE, STATUS_EMPLOYEE, STATUS_INACTIVE),
    "combined": (STATUS_CANDIDATE, STATUS_INTERVIEW),
}


def _clean_form_data(data: Any, required: tuple[str, ...]) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValidationError("Application data must be an object")

    out = {str(k): v for k, v in data.items() if str(k) not in _SYSTEM_KEYS}
    missing = [f for f in required if not str(out.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    for f in required:
        out[f] = str(out[f]).strip()
    if "email" in out and out["email"]:
        email = str(out["email"]).strip().lower()
        if "@" not in email or len(email) < 5:
            raise ValidationError("Invalid email format")
        out["email"] = email

    applying_for = out.get("applyingFor") or []
    if isinstance(applying_for, str):
        applying_for = [applying_for]
    if not isinstance(applying_for, list):
        raise ValidationError("applyingFor must be a list of process names")
    out["applyingFor"] = [str(x).strip() for x in applying_for if str(x or "").strip()]
    return out


def create_candidate(
    records: RecordStore,
    blobs: BlobStore,
    data: Any,
    *,
    resume: Optional[FileUpload] = None,
    drivers_license: Optional[FileUpload] = None,
) -> dict[str, Any]:
    """Public application submission. Validation happens before anything is written."""
    fields = _clean_form_data(data, REQUIRED_APPLICATION_FIELDS)
    cid = new_doc_id()

    doc = dict(fields)
    doc.update(
        {
            "id": cid,
            "created_at": iso_utc_now(),
            "status": STATUS_CANDIDATE,
            "documents": [],
            "miscDocuments": [],
            "resume": None,
            "driversLicense": None,
        }
    )

    uploaded: list[str] = []
    if resume is not None:
        doc["resume"] = blobs.upload(cid, "resume", resume.filename, resume.data, resume.content_type)
        uploaded.append(doc["resume"])
    if drivers_license is not None:
        doc["driversLicense"] = blobs.upload(
            cid, "drivers-license", drivers_license.filename, drivers_license.data, drivers_license.content_type
        )
        uploaded.append(doc["driversLicense"])

    try:
        return records.create(CANDIDATES, doc, doc_id=cid)
    except BackendError:
        if uploaded:
            log.warning("candidate create failed; orphaned blobs: %s", ", ".join(uploaded))
        raise


def create_legacy_employee(records: RecordStore, data: Any) -> dict[str, Any]:
    fields = _clean_form_data(data, REQUIRED_LEGACY_FIELDS)
    doc = dict(fields)
    doc.update(
        {
            "created_at": iso_utc_now(),
            "status": STATUS_EMPLOYEE,
            "documents": [],
            "miscDocuments": [],
        }
    )
    return records.create(CANDIDATES, doc)


def get_candidate(records: RecordStore, candidate_id: str) -> Optional[dict[str, Any]]:
    cid = str(candidate_id or "").strip()
    if not cid:
        return None
    return records.get(CANDIDATES, cid)


def require_candidate(records: RecordStore, candidate_id: str) -> dict[str, Any]:
    doc = get_candidate(records, candidate_id)
    if not doc:
        raise NotFoundError("Candidate not found")
    return doc


def list_candidate_view(records: RecordStore, view: str) -> list[dict[str, Any]]:
    statuses = CANDIDATE_VIEWS.get(str(view or ""))
    if statuses is None:
        raise ValidationError(f"Unknown candidate view: {view!r}")
    return newest_first(records.list(CANDIDATES, filters={"status": list(statuses)}))


def attach_document(
    records: RecordStore,
    blobs: BlobStore,
    candidate_id: str,
    upload: FileUpload,
    *,
    title: str,
    kind: str = DOC_KIND_REQUIRED,
) -> dict[str, Any]:
    list_key = _DOC_LIST_KEY.get(str(kind or "").lower())
    if not list_key:
        raise ValidationError("Document kind must be 'required' or 'misc'")
    t = str(title or "").strip()
    if not t:
        raise ValidationError("Document title is required")
    if not upload.data:
        raise ValidationError("Empty file")

    cid = str(candidate_id or "").strip()
    require_candidate(records, cid)

    locator = blobs.upload(cid, str(kind).lower(), upload.filename, upload.data, upload.content_type)
    entry = {"id": new_doc_id(), "title": t[:200], "url": locator}

    def _apply(doc: dict[str, Any]) -> None:
        current = list(doc.get(list_key) or [])
        if any(d.get("url") == locator for d in current):
            raise ValidationError("Document already attached")
        current.append(entry)
        doc[list_key] = current

    try:
        records.mutate(CANDIDATES, cid, _apply)
    except (BackendError, NotFoundError):
        log.warning("candidate=%s document update failed; orphaned blob %s", cid, locator)
        raise
    return entry


def delete_candidate_file(records: RecordStore, blobs: BlobStore, candidate_id: str, locator: str) -> dict[str, Any]:
    cid = str(candidate_id or "").strip()
    loc = str(locator or "").strip()
    if not loc:
        raise ValidationError("Missing file locator")

    doc = require_candidate(records, cid)
    attached = [d for d in (doc.get("documents") or []) + (doc.get("miscDocuments") or []) if d.get("url") == loc]
    if not attached:
        raise NotFoundError("File is not attached to this record")

    try:
        blobs.delete(loc)
    except BlobNotFoundError:
        log.info("candidate=%s blob already gone: %s", cid, loc)

    def _apply(d: dict[str, Any]) -> None:
        d["documents"] = [x for x in (d.get("documents") or []) if x.get("url") != loc]
        d["miscDocuments"] = [x for x in (d.get("miscDocuments") or []) if x.get("url") != loc]

    return records.mutate(CANDIDATES, cid, _apply)


def update_license(
    records: RecordStore, blobs: BlobStore, candidate_id: str, upload: FileUpload, *, expiration: Any
) -> dict[str, Any]:
    exp = parse_datetime_maybe(expiration)
    if exp is None:
        raise ValidationError("A valid license expiration date is required")
    if not upload.data:
        raise ValidationError("Empty file")

    cid = str(candidate_id or "").strip()
    require_candidate(records, cid)

    locator = blobs.upload(cid, "drivers-license", upload.filename, upload.data, upload.content_type)
    try:
        return records.merge(CANDIDATES, cid, {"driversLicense": locator, "driversLicenseExpiration": to_iso_utc(exp)})
    except (BackendError, NotFoundError):
        log.warning("candidate=%s license update failed; orphaned blob %s", cid, locator)
        raise


def expiring_licenses(records: RecordStore, *, within_days: int = 30, now: Optional[datetime] = None) -> list[dict[str, Any]]:
    """Hired staff whose driver's license expires inside the window (already expired included)."""
    days = int(within_days)
    if days < 0 or days > 3650:
        raise ValidationError("withinDays must be between 0 and 3650")
    ref = now or datetime.now(timezone.utc)
    horizon = ref + timedelta(days=days)

    items = []
    for doc in records.list(CANDIDATES, filters={"status": [STATUS_NEW_HIRE, STATUS_EMPLOYEE]}):
        exp = parse_datetime_maybe(doc.get("driversLicenseExpiration"))
        if exp is None or exp > horizon:
            continue
        items.append(
            {
                "id": doc.get("id"),
                "firstName": doc.get("firstName") or "",
                "lastName": doc.get("lastName") or "",
                "status": doc.get("status"),
                "document": "Driver's License",
                "expiresAt": to_iso_utc(exp),
                "expired": exp <= ref,
                "daysLeft": (exp - ref).days,
            }
        )
    items.sort(key=lambda x: x["expiresAt"])
    return items


def _submitted_labels(candidate: dict[str, Any]) -> set[str]:
    labels = set()
    if candidate.get("resume"):
        labels.update({"resume", "resume/cv"})
    if candidate.get("driversLicense"):
        labels.update({"driverslicense", "driver's license"})
    for d in (candidate.get("documents") or []) + (candidate.get("miscDocuments") or []):
        title = str(d.get("title") or "").strip().lower()
        if title:
            labels.add(title)
    return labels


def missing_documents(candidate: dict[str, Any], process: Optional[OnboardingProcess]) -> list[dict[str, Any]]:
    """Required docs of the process with no matching upload (matched by doc id or title)."""
    if process is None:
        return []
    have = _submitted_labels(candidate)
    missing = []
    for doc in process.required_docs:
        if doc.id.lower() in have or doc.label.strip().lower() in have:
            continue
        missing.append(doc.to_dict())
    return missing


def reset_candidates(records: RecordStore) -> int:
    removed = records.delete_all(CANDIDATES)
    log.warning("demo reset removed %d candidate record(s)", removed)
    return removed


def handle_submit_application(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    doc = create_candidate(
        backend.records,
        backend.blobs,
        d,
        resume=optional_upload(d, "resume"),
        drivers_license=optional_upload(d, "driversLicense"),
    )
    return {"id": doc["id"], "status": doc["status"], "created_at": doc["created_at"]}


def handle_legacy_employee_create(data, auth: AuthContext | None, backend, cfg):
    return create_legacy_employee(backend.records, as_dict(data))


def handle_candidate_get(data, auth: AuthContext | None, backend, cfg):
    return get_candidate(backend.records, require_str(as_dict(data), "id", "candidate id"))


def handle_candidates_list(data, auth: AuthContext | None, backend, cfg):
    view = optional_str(as_dict(data), "view") or "candidates"
    if view not in CANDIDATE_VIEWS:
        raise ValidationError(f"Unknown candidate view: {view!r}")
    items = cache_get_or_set(candidate_view_key(view), lambda: list_candidate_view(backend.records, view))
    return {"view": view, "items": items, "total": len(items)}


def handle_document_attach(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    return attach_document(
        backend.records,
        backend.blobs,
        require_str(d, "id", "candidate id"),
        require_upload(d, "file"),
        title=optional_str(d, "title"),
        kind=optional_str(d, "kind") or DOC_KIND_REQUIRED,
    )


def handle_file_delete(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    return delete_candidate_file(
        backend.records, backend.blobs, require_str(d, "id", "candidate id"), require_str(d, "url", "file locator")
    )


def handle_license_update(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    return update_license(
        backend.records,
        backend.blobs,
        require_str(d, "id", "candidate id"),
        require_upload(d, "file"),
        expiration=d.get("expirationDate"),
    )


def handle_expiring_licenses(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    try:
        days = int(d.get("withinDays", 30))
    except (TypeError, ValueError):
        raise ValidationError("withinDays must be a number")
    items = expiring_licenses(backend.records, within_days=days)
    return {"withinDays": days, "items": items, "total": len(items)}


def handle_missing_documents(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    candidate = require_candidate(backend.records, require_str(d, "id", "candidate id"))
    pid = optional_str(d, "processId")
    if pid:
        process = find_process(backend.records, pid, company_id=optional_str(d, "companyId") or None)
    else:
        process = active_process(active_company(backend.records))
    return {
        "id": candidate["id"],
        "processId": process.id if process else None,
        "missing": missing_documents(candidate, process),
    }


def handle_demo_reset(data, auth: AuthContext | None, backend, cfg):
    return {"deleted": reset_candidates(backend.records)}
