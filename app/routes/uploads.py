from __future__ import annotations

from typing import Any, Optional

from flask import Blueprint, current_app, jsonify, request
from werkzeug.datastructures import FileStorage

from app.routes.api import execute, request_token
from services.blob_store import FileUpload
from utils import ApiError, err

uploads_bp = Blueprint("uploads", __name__, url_prefix="/api")

ALLOWED_EXTENSIONS = {".pdf", ".png", ".jpg", ".jpeg"}


def _read_upload(storage: Optional[FileStorage]) -> Optional[FileUpload]:
    if storage is None or not storage.filename:
        return None
    name = str(storage.filename)
    ext = ("." + name.rsplit(".", 1)[-1].lower()) if "." in name else ""
    if ext not in ALLOWED_EXTENSIONS:
        raise ApiError("VALIDATION_ERROR", f"Unsupported file type: {ext or 'none'}")

    max_bytes = current_app.config["CFG"].MAX_UPLOAD_MB * 1024 * 1024
    data = storage.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ApiError("VALIDATION_ERROR", "File is too large", http_status=413)
    if not data:
        raise ApiError("VALIDATION_ERROR", "Empty file")
    return FileUpload(filename=name, data=data, content_type=str(storage.mimetype or ""))


def _form_fields() -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in request.form.keys():
        values = request.form.getlist(key)
        if key.endswith("[]"):
            out[key[:-2]] = values
        else:
            out[key] = values[-1] if values else ""
    return out


def _run(action: str, data: dict[str, Any]):
    return execute(action, data, request_token())


def _bad(e: ApiError):
    return jsonify(err(e.code, e.message)), e.http_status


@uploads_bp.post("/applications")
def submit_application():
    try:
        data = _form_fields()
        data["resume"] = _read_upload(request.files.get("resume"))
        data["driversLicense"] = _read_upload(request.files.get("driversLicense"))
    except ApiError as e:
        return _bad(e)
    return _run("SUBMIT_APPLICATION", data)


@uploads_bp.post("/candidates/<candidate_id>/documents")
def attach_document(candidate_id: str):
    try:
        data = _form_fields()
        data["id"] = candidate_id
        data["file"] = _read_upload(request.files.get("file"))
    except ApiError as e:
        return _bad(e)
    return _run("CANDIDATE_DOCUMENT_ATTACH", data)


@uploads_bp.post("/candidates/<candidate_id>/license")
def update_license(candidate_id: str):
    try:
        data = _form_fields()
        data["id"] = candidate_id
        data["file"] = _read_upload(request.files.get("file"))
    except ApiError as e:
        return _bad(e)
    return _run("LICENSE_UPDATE", data)


@uploads_bp.post("/companies/<company_id>/logo")
def upload_logo(company_id: str):
    try:
        data = {"companyId": company_id, "file": _read_upload(request.files.get("file"))}
    except ApiError as e:
        return _bad(e)
    return _run("COMPANY_LOGO_UPLOAD", data)


@uploads_bp.post("/companies/<company_id>/processes/<process_id>/form-images")
def upload_form_images(company_id: str, process_id: str):
    try:
        files = [_read_upload(f) for f in request.files.getlist("files")]
    except ApiError as e:
        return _bad(e)
    data = {"companyId": company_id, "processId": process_id, "files": [f for f in files if f is not None]}
    return _run("FORM_IMAGES_UPLOAD", data)


@uploads_bp.post("/companies/<company_id>/processes/<process_id>/interview-image")
def upload_interview_image(company_id: str, process_id: str):
    try:
        data = {"companyId": company_id, "processId": process_id, "file": _read_upload(request.files.get("file"))}
    except ApiError as e:
        return _bad(e)
    return _run("INTERVIEW_IMAGE_UPLOAD", data)
