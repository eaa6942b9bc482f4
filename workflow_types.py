"""
Onboarding process configuration.

A process bundles three phases. The application form and the interview screen are
tagged variants; the stored JSON keeps the `type: "template" | "custom"` tag the
settings screen reads, and the variant classes decide which sibling keys are written.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Optional, Union

from services.form_generator import validate_form_fields
from utils import ValidationError, new_doc_id


TEMPLATE = "template"
CUSTOM = "custom"

STANDARD_DOCS = [
    {"id": "resume", "label": "Resume/CV"},
    {"id": "applicationForm", "label": "Application Form"},
    {"id": "driversLicense", "label": "Driver's License"},
    {"id": "idCard", "label": "Proof of Identity / ID Card"},
    {"id": "proofOfAddress", "label": "Proof of Address"},
    {"id": "i9", "label": "I-9 Form"},
    {"id": "w4", "label": "W-4 Form"},
    {"id": "educationalDiplomas", "label": "Educational Diplomas"},
]
_STANDARD_DOC_IDS = {d["id"] for d in STANDARD_DOCS}


@dataclass(frozen=True)
class TemplateForm:
    id: str
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "type": TEMPLATE, "fields": [], "images": []}


@dataclass(frozen=True)
class ImageForm:
    id: str
    name: str
    images: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "type": CUSTOM, "fields": [], "images": list(self.images)}


@dataclass(frozen=True)
class GeneratedForm:
    id: str
    name: str
    fields: tuple[dict[str, Any], ...]

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "type": CUSTOM, "fields": [dict(f) for f in self.fields], "images": []}


ApplicationForm = Union[TemplateForm, ImageForm, GeneratedForm]


@dataclass(frozen=True)
class TemplateScreen:
    def to_dict(self) -> dict[str, Any]:
        return {"type": TEMPLATE, "imageUrl": None}


@dataclass(frozen=True)
class CustomScreen:
    image_url: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": CUSTOM, "imageUrl": self.image_url}


InterviewScreen = Union[TemplateScreen, CustomScreen]


@dataclass(frozen=True)
class RequiredDoc:
    id: str
    label: str
    type: str = "custom"

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "label": self.label, "type": self.type}


@dataclass(frozen=True)
class OnboardingProcess:
    id: str
    name: str
    application_form: ApplicationForm
    interview_screen: InterviewScreen = field(default_factory=TemplateScreen)
    required_docs: tuple[RequiredDoc, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "applicationForm": self.application_form.to_dict(),
            "interviewScreen": self.interview_screen.to_dict(),
            "requiredDocs": [d.to_dict() for d in self.required_docs],
        }

    def with_form(self, form: ApplicationForm) -> "OnboardingProcess":
        return replace(self, application_form=form)

    def with_screen(self, screen: InterviewScreen) -> "OnboardingProcess":
        return replace(self, interview_screen=screen)

    def with_docs(self, docs: list[RequiredDoc]) -> "OnboardingProcess":
        return replace(self, required_docs=tuple(docs))


def _clean_locators(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("images must be a list of file locators")
    out = []
    for x in raw:
        s = str(x or "").strip()
        if not s:
            raise ValidationError("Empty image locator")
        if s in out:
            raise ValidationError(f"Duplicate image locator: {s}")
        out.append(s)
    return tuple(out)


def make_application_form(
    kind: str, payload: Optional[dict[str, Any]] = None, *, form_id: str = "", name: str = ""
) -> ApplicationForm:
    """
    Build a form variant from the tag and payload.

    For `custom`, the payload carries exactly one of `images` (uploaded page images)
    or `fields` (AI-generated definitions).
    """
    k = str(kind or "").strip().lower()
    fid = str(form_id or "").strip() or new_doc_id()
    nm = str(name or "").strip() or ("Default" if k == TEMPLATE else "Custom")
    body = payload or {}

    if k == TEMPLATE:
        return TemplateForm(id=fid, name=nm)
    if k != CUSTOM:
        raise ValidationError(f"Unknown application form type: {kind!r}")

    has_images = bool(body.get("images"))
    has_fields = bool(body.get("fields"))
    if has_images == has_fields:
        raise ValidationError("A custom application form needs either images or fields, not both")
    if has_images:
        return ImageForm(id=fid, name=nm, images=_clean_locators(body["images"]))
    return GeneratedForm(id=fid, name=nm, fields=tuple(validate_form_fields(body["fields"])))


def make_interview_screen(kind: str, image_url: Optional[str] = None) -> InterviewScreen:
    k = str(kind or "").strip().lower()
    if k == TEMPLATE:
        return TemplateScreen()
    if k != CUSTOM:
        raise ValidationError(f"Unknown interview screen type: {kind!r}")
    url = str(image_url or "").strip()
    if not url:
        raise ValidationError("A custom interview screen needs a background image")
    return CustomScreen(image_url=url)


def make_required_doc(raw: Any) -> RequiredDoc:
    if not isinstance(raw, dict):
        raise ValidationError("Required document must be an object")
    did = str(raw.get("id") or "").strip()
    label = str(raw.get("label") or "").strip()
    if not did:
        raise ValidationError("Required document id is missing")
    if did in _STANDARD_DOC_IDS:
        std = next(d for d in STANDARD_DOCS if d["id"] == did)
        return RequiredDoc(id=did, label=label or std["label"], type="standard")
    if not label:
        raise ValidationError("Required document label is missing")
    return RequiredDoc(id=did, label=label[:200], type="custom")


def application_form_from_dict(raw: Any) -> ApplicationForm:
    if not isinstance(raw, dict):
        return TemplateForm(id=new_doc_id(), name="Default")
    kind = str(raw.get("type") or TEMPLATE).lower()
    fid = str(raw.get("id") or "") or new_doc_id()
    name = str(raw.get("name") or "")
    if kind != CUSTOM:
        return TemplateForm(id=fid, name=name or "Default")
    # Stored documents may carry both keys as empty lists; fields win when present.
    fields = raw.get("fields") or []
    if fields:
        return GeneratedForm(id=fid, name=name or "Custom", fields=tuple(dict(f) for f in fields if isinstance(f, dict)))
    images = raw.get("images") or []
    return ImageForm(id=fid, name=name or "Custom", images=tuple(str(x) for x in images if x))


def interview_screen_from_dict(raw: Any) -> InterviewScreen:
    if isinstance(raw, dict) and str(raw.get("type") or "").lower() == CUSTOM and raw.get("imageUrl"):
        return CustomScreen(image_url=str(raw["imageUrl"]))
    return TemplateScreen()


def process_from_dict(raw: Any) -> OnboardingProcess:
    if not isinstance(raw, dict):
        raise ValidationError("Onboarding process must be an object")
    pid = str(raw.get("id") or "").strip() or new_doc_id()
    name = str(raw.get("name") or "").strip()
    if not name:
        raise ValidationError("Onboarding process name is required")

    docs = []
    for d in raw.get("requiredDocs") or []:
        if isinstance(d, dict) and d.get("type") in {"standard", "custom"} and d.get("id") and d.get("label"):
            docs.append(RequiredDoc(id=str(d["id"]), label=str(d["label"]), type=str(d["type"])))
        else:
            docs.append(make_required_doc(d))

    form_raw = raw.get("applicationForm")
    if isinstance(form_raw, dict) and str(form_raw.get("type") or "").lower() == CUSTOM:
        # New processes are validated; stored ones are read leniently below.
        form = make_application_form(
            CUSTOM,
            {"images": form_raw.get("images") or [], "fields": form_raw.get("fields") or []},
            form_id=str(form_raw.get("id") or ""),
            name=str(form_raw.get("name") or name),
        )
    else:
        form = application_form_from_dict(form_raw or {"type": TEMPLATE, "name": name})

    return OnboardingProcess(
        id=pid,
        name=name[:200],
        application_form=form,
        interview_screen=interview_screen_from_dict(raw.get("interviewScreen")),
        required_docs=tuple(docs),
    )


def stored_process(raw: dict[str, Any]) -> OnboardingProcess:
    """Lenient read of a process already persisted inside a company document."""
    docs = tuple(
        RequiredDoc(id=str(d.get("id") or ""), label=str(d.get("label") or ""), type=str(d.get("type") or "custom"))
        for d in (raw.get("requiredDocs") or [])
        if isinstance(d, dict)
    )
    return OnboardingProcess(
        id=str(raw.get("id") or ""),
        name=str(raw.get("name") or ""),
        application_form=application_form_from_dict(raw.get("applicationForm")),
        interview_screen=interview_screen_from_dict(raw.get("interviewScreen")),
        required_docs=docs,
    )
