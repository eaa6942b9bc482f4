from __future__ import annotations

from typing import Any

from services.blob_store import FileUpload
from utils import ValidationError


def as_dict(data: Any) -> dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("data must be an object")
    return data


def require_str(data: dict[str, Any], key: str, label: str = "") -> str:
    value = str(data.get(key) or "").strip()
    if not value:
        raise ValidationError(f"Missing {label or key}")
    return value


def optional_str(data: dict[str, Any], key: str) -> str:
    return str(data.get(key) or "").strip()


def require_upload(data: dict[str, Any], key: str) -> FileUpload:
    """File arguments only arrive through the multipart routes."""
    upload = data.get(key)
    if not isinstance(upload, FileUpload):
        raise ValidationError(f"Missing file: {key}")
    return upload


def optional_upload(data: dict[str, Any], key: str):
    upload = data.get(key)
    return upload if isinstance(upload, FileUpload) else None


def require_uploads(data: dict[str, Any], key: str) -> list[FileUpload]:
    uploads = [u for u in (data.get(key) or []) if isinstance(u, FileUpload)]
    if not uploads:
        raise ValidationError(f"Missing file: {key}")
    return uploads
