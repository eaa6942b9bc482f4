"""
AI application-form generation client.

The model service is an opaque HTTP function:

    POST {FORM_GENERATOR_URL}
    {
        "companyName": "Acme Care",
        "fields": [{"id": "email", "label": "Email Address", "required": true}, ...],
        "instructions": "Friendly tone, ask about preferred schedule"
    }

    -> {"name": "Caregiver Application", "fields": [{"id", "label", "type", "required", "options"?}, ...]}
"""
from __future__ import annotations

import logging
import re
from typing import Any, Optional

import requests

from utils import BackendError, ValidationError


log = logging.getLogger("forms")


CORE_FIELDS = [
    {"id": "fullName", "label": "Full Legal Name"},
    {"id": "email", "label": "Email Address"},
    {"id": "phone", "label": "Phone Number"},
    {"id": "authToWork", "label": "Authorization to Work in the U.S."},
    {"id": "backgroundCheck", "label": "Background Check Consent"},
]

RECOMMENDED_FIELDS = [
    {"id": "address", "label": "Address"},
    {"id": "availability", "label": "Work Availability"},
    {"id": "workHistory", "label": "Previous Work Experience"},
    {"id": "licenseInfo", "label": "Driver's License Information"},
    {"id": "resumeUpload", "label": "Upload Resume"},
]

JOB_SPECIFIC_FIELDS = [
    {"id": "cnaLicense", "label": "CNA Certification / License Number"},
    {"id": "cprCert", "label": "CPR Certification Status"},
    {"id": "tbTest", "label": "TB Test Status"},
    {"id": "liftAbility", "label": "Physical Ability (e.g., can lift 50 lbs)"},
]

OPTIONAL_FIELDS = [
    {"id": "emergencyContact", "label": "Emergency Contact"},
    {"id": "references", "label": "References"},
    {"id": "additionalQuestions", "label": "Additional Questions (short answers)"},
    {"id": "skillsChecklist", "label": "Skills Checklist Basic Questions"},
    {"id": "coverLetter", "label": "Cover Letter or Description field"},
]

FIELD_TYPES = {"text", "textarea", "email", "tel", "number", "date", "select", "radio", "checkbox", "file"}
_TYPES_WITH_OPTIONS = {"select", "radio"}
_FIELD_ID = re.compile(r"^[A-Za-z][A-Za-z0-9_-]{0,63}$")


def build_generation_request(options: dict[str, Any], *, company_name: str = "") -> dict[str, Any]:
    """
    Turn the wizard selections into the generator request.

    `options["fields"]` maps a catalogue field id to `{"included": bool, "required": bool}`.
    Core fields are always present and required; recommended fields default to included
    and required, everything else defaults to excluded.
    """
    selections = (options or {}).get("fields") or {}
    if not isinstance(selections, dict):
        raise ValidationError("fields must be an object keyed by field id")

    out = [{"id": f["id"], "label": f["label"], "required": True} for f in CORE_FIELDS]

    def _pick(catalogue: list[dict[str, str]], default_included: bool) -> None:
        for f in catalogue:
            sel = selections.get(f["id"])
            if sel is None:
                included, required = default_included, default_included
            elif isinstance(sel, dict):
                included = bool(sel.get("included", default_included))
                required = bool(sel.get("required", False))
            else:
                included, required = bool(sel), False
            if included:
                out.append({"id": f["id"], "label": f["label"], "required": required})

    _pick(RECOMMENDED_FIELDS, True)
    _pick(JOB_SPECIFIC_FIELDS, False)
    _pick(OPTIONAL_FIELDS, False)

    instructions = str((options or {}).get("instructions") or "").strip()
    if len(instructions) > 4000:
        raise ValidationError("Instructions are too long")

    return {"companyName": str(company_name or ""), "fields": out, "instructions": instructions}


def validate_form_field(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise ValidationError("Form field must be an object")
    fid = str(raw.get("id") or "").strip()
    label = str(raw.get("label") or "").strip()
    ftype = str(raw.get("type") or "").strip().lower()
    if not _FIELD_ID.match(fid):
        raise ValidationError(f"Invalid form field id: {fid!r}")
    if not label:
        raise ValidationError(f"Form field {fid} is missing a label")
    if ftype not in FIELD_TYPES:
        raise ValidationError(f"Form field {fid} has unsupported type {ftype!r}")

    field: dict[str, Any] = {"id": fid, "label": label, "type": ftype, "required": bool(raw.get("required", False))}
    options = raw.get("options")
    if ftype in _TYPES_WITH_OPTIONS:
        if not isinstance(options, list) or not options:
            raise ValidationError(f"Form field {fid} needs options")
        field["options"] = [str(o) for o in options]
    elif isinstance(options, list) and options:
        field["options"] = [str(o) for o in options]
    return field


def validate_form_fields(raw_fields: Any) -> list[dict[str, Any]]:
    if not isinstance(raw_fields, list) or not raw_fields:
        raise ValidationError("A generated form needs at least one field")
    fields = [validate_form_field(f) for f in raw_fields]
    seen: set[str] = set()
    for f in fields:
        if f["id"] in seen:
            raise ValidationError(f"Duplicate form field id: {f['id']}")
        seen.add(f["id"])
    return fields


class FormGenerator:
    def __init__(self, url: str, *, api_key: str = "", timeout: int = 60, session: Optional[requests.Session] = None):
        self.url = str(url or "").strip()
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def generate(self, request_payload: dict[str, Any]) -> dict[str, Any]:
        if not self.configured:
            raise BackendError("AI form generation is not configured", code="NOT_CONFIGURED", http_status=503)

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            resp = self._session.post(self.url, json=request_payload, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except requests.RequestException as e:
            log.warning("form generation request failed: %s", e)
            raise BackendError(f"Form generation failed: {type(e).__name__}")
        except ValueError:
            raise BackendError("Form generation returned invalid JSON")

        if not isinstance(body, dict):
            raise BackendError("Form generation returned an unexpected payload")

        name = str(body.get("name") or "").strip() or "Generated Application"
        try:
            fields = validate_form_fields(body.get("fields"))
        except ValidationError as e:
            raise BackendError(f"Form generation returned an invalid form: {e.message}")
        return {"name": name[:200], "fields": fields}
