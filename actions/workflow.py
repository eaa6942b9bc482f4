from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from actions.company_repo import require_company
from actions.helpers import as_dict, optional_str, require_str, require_upload, require_uploads
from services.blob_store import BlobStore, FileUpload
from services.record_store import COMPANIES, RecordStore
from utils import AuthContext, NotFoundError, ValidationError, err, ok
from workflow_types import (
    CUSTOM,
    ImageForm,
    OnboardingProcess,
    make_application_form,
    make_interview_screen,
    make_required_doc,
    process_from_dict,
    stored_process,
)


log = logging.getLogger("workflow")


def _processes_of(doc: dict[str, Any]) -> list[OnboardingProcess]:
    return [stored_process(p) for p in (doc.get("onboardingProcesses") or []) if isinstance(p, dict)]


def _find_company_for_process(records: RecordStore, process_id: str) -> str:
    for company in records.list(COMPANIES):
        if any(str(p.get("id") or "") == process_id for p in (company.get("onboardingProcesses") or [])):
            return str(company["id"])
    raise NotFoundError("Onboarding process not found")


def _update_process(
    records: RecordStore,
    process_id: str,
    fn: Callable[[OnboardingProcess], OnboardingProcess],
    *,
    company_id: Optional[str] = None,
) -> OnboardingProcess:
    """Apply `fn` to one process inside an atomic mutation of its company."""
    pid = str(process_id or "").strip()
    if not pid:
        raise ValidationError("Missing process id")
    cid = str(company_id or "").strip() or _find_company_for_process(records, pid)
    result: dict[str, OnboardingProcess] = {}

    def _apply(doc: dict[str, Any]) -> None:
        updated = []
        for raw in doc.get("onboardingProcesses") or []:
            if isinstance(raw, dict) and str(raw.get("id") or "") == pid and "process" not in result:
                proc = fn(stored_process(raw))
                result["process"] = proc
                raw = proc.to_dict()
            updated.append(raw)
        if "process" not in result:
            raise NotFoundError("Onboarding process not found")
        doc["onboardingProcesses"] = updated

    records.mutate(COMPANIES, cid, _apply)
    return result["process"]


def add_process(records: RecordStore, company_id: str, process: Any) -> OnboardingProcess:
    cid = str(company_id or "").strip()
    if not cid:
        raise ValidationError("Missing company id")
    proc = process if isinstance(process, OnboardingProcess) else process_from_dict(process)

    def _apply(doc: dict[str, Any]) -> None:
        existing = doc.get("onboardingProcesses") or []
        if any(str(p.get("id") or "") == proc.id for p in existing):
            raise ValidationError(f"Onboarding process already exists: {proc.id}")
        doc["onboardingProcesses"] = list(existing) + [proc.to_dict()]

    records.mutate(COMPANIES, cid, _apply)
    log.info("company=%s process=%s added", cid, proc.id)
    return proc


def remove_process(records: RecordStore, company_id: str, process_id: str) -> dict[str, Any]:
    """Result-shaped: an unknown process id is reported, not raised."""
    cid = str(company_id or "").strip()
    pid = str(process_id or "").strip()
    found: dict[str, bool] = {}

    def _apply(doc: dict[str, Any]) -> None:
        existing = doc.get("onboardingProcesses") or []
        kept = [p for p in existing if str(p.get("id") or "") != pid]
        found["removed"] = len(kept) != len(existing)
        doc["onboardingProcesses"] = kept

    try:
        records.mutate(COMPANIES, cid, _apply)
    except NotFoundError as e:
        return err(e.code, e.message)
    if not found.get("removed"):
        return err("NOT_FOUND", "Onboarding process not found")
    log.info("company=%s process=%s removed", cid, pid)
    return ok({"companyId": cid, "processId": pid})


def set_application_form_type(
    records: RecordStore,
    process_id: str,
    kind: str,
    payload: Optional[dict[str, Any]] = None,
    *,
    company_id: Optional[str] = None,
) -> OnboardingProcess:
    def _swap(proc: OnboardingProcess) -> OnboardingProcess:
        form = make_application_form(kind, payload, form_id=proc.application_form.id, name=proc.application_form.name)
        return proc.with_form(form)

    return _update_process(records, process_id, _swap, company_id=company_id)


def set_interview_screen_type(
    records: RecordStore,
    process_id: str,
    kind: str,
    image_url: Optional[str] = None,
    *,
    company_id: Optional[str] = None,
) -> OnboardingProcess:
    screen = make_interview_screen(kind, image_url)
    return _update_process(records, process_id, lambda p: p.with_screen(screen), company_id=company_id)


def add_required_doc(
    records: RecordStore, process_id: str, doc: Any, *, company_id: Optional[str] = None
) -> OnboardingProcess:
    required = make_required_doc(doc)

    def _add(proc: OnboardingProcess) -> OnboardingProcess:
        if any(d.id == required.id for d in proc.required_docs):
            return proc
        return proc.with_docs(list(proc.required_docs) + [required])

    return _update_process(records, process_id, _add, company_id=company_id)


def remove_required_doc(
    records: RecordStore, process_id: str, doc_id: str, *, company_id: Optional[str] = None
) -> OnboardingProcess:
    did = str(doc_id or "").strip()
    return _update_process(
        records,
        process_id,
        lambda p: p.with_docs([d for d in p.required_docs if d.id != did]),
        company_id=company_id,
    )


def upload_form_images(
    records: RecordStore, blobs: BlobStore, company_id: str, process_id: str, uploads: list[FileUpload]
) -> OnboardingProcess:
    files = [u for u in (uploads or []) if u.data]
    if not files:
        raise ValidationError("At least one form image is required")
    cid = str(company_id or "").strip()
    require_company(records, cid)

    locators = [blobs.upload(cid, "application-forms", f.filename, f.data, f.content_type) for f in files]
    previous: list[str] = []

    def _swap(proc: OnboardingProcess) -> OnboardingProcess:
        if isinstance(proc.application_form, ImageForm):
            previous.extend(proc.application_form.images)
        form = make_application_form(
            CUSTOM, {"images": locators}, form_id=proc.application_form.id, name=proc.application_form.name
        )
        return proc.with_form(form)

    try:
        proc = _update_process(records, process_id, _swap, company_id=cid)
    except (NotFoundError, ValidationError):
        log.warning("process=%s form image update failed; orphaned blobs: %s", process_id, ", ".join(locators))
        raise
    for old in previous:
        if old not in locators:
            blobs.delete_quietly(old)
    return proc


def upload_interview_image(
    records: RecordStore, blobs: BlobStore, company_id: str, process_id: str, upload: FileUpload
) -> OnboardingProcess:
    if not upload.data:
        raise ValidationError("Empty file")
    cid = str(company_id or "").strip()
    require_company(records, cid)

    locator = blobs.upload(cid, "interview-screens", upload.filename, upload.data, upload.content_type)
    previous: dict[str, Any] = {}

    def _swap(proc: OnboardingProcess) -> OnboardingProcess:
        previous["url"] = getattr(proc.interview_screen, "image_url", None)
        return proc.with_screen(make_interview_screen(CUSTOM, locator))

    try:
        proc = _update_process(records, process_id, _swap, company_id=cid)
    except NotFoundError:
        log.warning("process=%s interview image update failed; orphaned blob %s", process_id, locator)
        raise
    old = previous.get("url")
    if old and old != locator:
        blobs.delete_quietly(old)
    return proc


def find_process(records: RecordStore, process_id: str, *, company_id: Optional[str] = None) -> OnboardingProcess:
    pid = str(process_id or "").strip()
    cid = str(company_id or "").strip() or _find_company_for_process(records, pid)
    company = require_company(records, cid)
    for proc in _processes_of(company):
        if proc.id == pid:
            return proc
    raise NotFoundError("Onboarding process not found")


def _company_arg(d: dict[str, Any]) -> Optional[str]:
    return optional_str(d, "companyId") or None


def handle_process_add(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    proc = add_process(backend.records, require_str(d, "companyId", "company id"), d.get("process"))
    return proc.to_dict()


def handle_process_remove(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    return remove_process(backend.records, require_str(d, "companyId", "company id"), require_str(d, "processId", "process id"))


def handle_application_form_type_set(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    payload = d.get("payload")
    if payload is not None and not isinstance(payload, dict):
        raise ValidationError("payload must be an object")
    proc = set_application_form_type(
        backend.records, require_str(d, "processId", "process id"), require_str(d, "type"), payload, company_id=_company_arg(d)
    )
    return proc.to_dict()


def handle_interview_screen_type_set(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    proc = set_interview_screen_type(
        backend.records,
        require_str(d, "processId", "process id"),
        require_str(d, "type"),
        optional_str(d, "imageUrl") or None,
        company_id=_company_arg(d),
    )
    return proc.to_dict()


def handle_required_doc_add(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    proc = add_required_doc(backend.records, require_str(d, "processId", "process id"), d.get("doc"), company_id=_company_arg(d))
    return proc.to_dict()


def handle_required_doc_remove(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    proc = remove_required_doc(
        backend.records, require_str(d, "processId", "process id"), require_str(d, "docId", "document id"), company_id=_company_arg(d)
    )
    return proc.to_dict()


def handle_form_images_upload(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    proc = upload_form_images(
        backend.records,
        backend.blobs,
        require_str(d, "companyId", "company id"),
        require_str(d, "processId", "process id"),
        require_uploads(d, "files"),
    )
    return proc.to_dict()


def handle_interview_image_upload(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    proc = upload_interview_image(
        backend.records,
        backend.blobs,
        require_str(d, "companyId", "company id"),
        require_str(d, "processId", "process id"),
        require_upload(d, "file"),
    )
    return proc.to_dict()
