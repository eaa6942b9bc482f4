from __future__ import annotations

import json
import re
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional


class ApiError(Exception):
    def __init__(self, code: str, message: str, http_status: int = 400):
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status


class ValidationError(ApiError):
    def __init__(self, message: str):
        super().__init__("VALIDATION_ERROR", message, http_status=400)


class NotFoundError(ApiError):
    def __init__(self, message: str):
        super().__init__("NOT_FOUND", message, http_status=404)


class InvalidTransitionError(ApiError):
    def __init__(self, message: str, *, from_status: str = "", to_status: str = ""):
        super().__init__("INVALID_TRANSITION", message, http_status=409)
        self.from_status = from_status
        self.to_status = to_status


class BackendError(ApiError):
    def __init__(self, message: str, code: str = "BACKEND_ERROR", http_status: int = 502):
        super().__init__(code, message, http_status=http_status)


class ConflictError(BackendError):
    def __init__(self, message: str):
        super().__init__(message, code="CONFLICT", http_status=409)


@dataclass
class AuthContext:
    valid: bool
    userId: str
    email: str
    role: str
    expiresAt: str
    companyId: str = ""


def ok(data: Any = None) -> dict[str, Any]:
    return {"success": True, "data": data}


def err(code: str, message: str) -> dict[str, Any]:
    return {"success": False, "error": message, "code": code}


def iso_utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_datetime_maybe(value: Any) -> Optional[datetime]:
    s = str(value or "").strip()
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso_utc(value: Any) -> str:
    dt = value if isinstance(value, datetime) else parse_datetime_maybe(value)
    if dt is None:
        return ""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_uuid() -> str:
    return str(uuid.uuid4())


def new_doc_id() -> str:
    return uuid.uuid4().hex


def now_monotonic() -> float:
    return time.monotonic()


def normalize_role(role: Any) -> str:
    return str(role or "").upper().strip()


_FILENAME_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_filename(name: Any) -> str:
    base = str(name or "").replace("\\", "/").split("/")[-1].strip()
    base = _FILENAME_UNSAFE.sub("_", base).strip("._")
    if not base:
        return "file"
    return base[:120]


def parse_json_body(raw: str) -> dict[str, Any]:
    s = str(raw or "").strip()
    if not s:
        raise ApiError("BAD_REQUEST", "Empty request body")
    try:
        body = json.loads(s)
    except json.JSONDecodeError:
        raise ApiError("BAD_REQUEST", "Invalid JSON body")
    if not isinstance(body, dict):
        raise ApiError("BAD_REQUEST", "Request body must be an object")
    return body


_REDACT_KEYS = {"password", "token", "sessiontoken", "apikey"}


def redact_for_audit(data: Any) -> Any:
    if isinstance(data, dict):
        out = {}
        for k, v in data.items():
            if str(k).lower() in _REDACT_KEYS:
                out[k] = "***"
            else:
                out[k] = redact_for_audit(v)
        return out
    if isinstance(data, list):
        return [redact_for_audit(x) for x in data]
    if data is None or isinstance(data, (str, int, float, bool)):
        return data
    # Uploads and other objects are summarised by type.
    return f"<{type(data).__name__}>"


class SimpleRateLimiter:
    """Fixed one-minute window counter per key."""

    def __init__(self):
        self._lock = threading.Lock()
        self._hits: dict[str, tuple[int, int]] = {}

    def check(self, key: str, limit_per_minute: int) -> None:
        if limit_per_minute <= 0:
            return
        window = int(time.time() // 60)
        with self._lock:
            w, n = self._hits.get(key, (window, 0))
            if w != window:
                w, n = window, 0
            n += 1
            self._hits[key] = (w, n)
            if len(self._hits) > 10_000:
                self._hits = {k: v for k, v in self._hits.items() if v[0] == window}
        if n > limit_per_minute:
            raise ApiError("RATE_LIMITED", "Too many requests", http_status=429)
