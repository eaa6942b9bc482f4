from __future__ import annotations

import logging
from typing import Any, Optional

from actions.helpers import as_dict, require_str
from services.record_store import CANDIDATES, RecordStore
from utils import AuthContext, InvalidTransitionError, NotFoundError, ValidationError, iso_utc_now


log = logging.getLogger("lifecycle")

STATUS_CANDIDATE = "candidate"
STATUS_INTERVIEW = "interview"
STATUS_NEW_HIRE = "new-hire"
STATUS_EMPLOYEE = "employee"
STATUS_INACTIVE = "inactive"

CANDIDATE_STATUSES = (STATUS_CANDIDATE, STATUS_INTERVIEW, STATUS_NEW_HIRE, STATUS_EMPLOYEE, STATUS_INACTIVE)

# target status -> statuses it may be entered from
ALLOWED_FROM: dict[str, frozenset[str]] = {
    STATUS_INTERVIEW: frozenset({STATUS_CANDIDATE}),
    STATUS_NEW_HIRE: frozenset({STATUS_INTERVIEW}),
    STATUS_EMPLOYEE: frozenset({STATUS_NEW_HIRE}),
    STATUS_INACTIVE: frozenset({STATUS_EMPLOYEE}),
}

REJECTABLE_STATUSES = frozenset({STATUS_CANDIDATE, STATUS_INTERVIEW})
REVIEWABLE_STATUSES = frozenset({STATUS_INTERVIEW})


def transition_candidate_status(
    records: RecordStore,
    *,
    candidate_id: str,
    to_status: str,
    patch: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """
    Move a record one step along the lifecycle graph.

    The status check and the write happen inside one atomic document mutation, so a
    rejected transition leaves the stored record exactly as it was.
    """
    cid = str(candidate_id or "").strip()
    if not cid:
        raise ValidationError("Missing candidate id")
    to_s = str(to_status or "").strip().lower()
    allowed = ALLOWED_FROM.get(to_s)
    if allowed is None:
        raise InvalidTransitionError(f"Status {to_status!r} cannot be set by a transition", to_status=to_s)

    seen: dict[str, str] = {}

    def _apply(doc: dict[str, Any]) -> None:
        from_s = str(doc.get("status") or "").strip().lower()
        seen["from"] = from_s
        if from_s not in allowed:
            raise InvalidTransitionError(
                f"Cannot move from {from_s or 'unknown'} to {to_s}", from_status=from_s, to_status=to_s
            )
        doc.update(patch or {})
        doc["status"] = to_s

    doc = records.mutate(CANDIDATES, cid, _apply)
    log.info("candidate=%s status %s -> %s", cid, seen.get("from", ""), to_s)
    return doc


def advance_to_interview(records: RecordStore, candidate_id: str) -> dict[str, Any]:
    return transition_candidate_status(records, candidate_id=candidate_id, to_status=STATUS_INTERVIEW)


def approve_for_hire(records: RecordStore, candidate_id: str) -> dict[str, Any]:
    return transition_candidate_status(records, candidate_id=candidate_id, to_status=STATUS_NEW_HIRE)


def mark_as_employee(records: RecordStore, candidate_id: str) -> dict[str, Any]:
    return transition_candidate_status(records, candidate_id=candidate_id, to_status=STATUS_EMPLOYEE)


def _normalize_inactive_info(reason: Any) -> dict[str, Any]:
    if isinstance(reason, dict):
        info = {str(k): v for k, v in reason.items()}
        text = str(info.get("reason") or "").strip()
    else:
        text = str(reason or "").strip()
        info = {}
    if not text:
        raise ValidationError("A reason is required to deactivate an employee")
    info["reason"] = text[:2000]
    info.setdefault("deactivatedAt", iso_utc_now())
    return info


def deactivate(records: RecordStore, candidate_id: str, reason: Any) -> dict[str, Any]:
    info = _normalize_inactive_info(reason)
    return transition_candidate_status(
        records, candidate_id=candidate_id, to_status=STATUS_INACTIVE, patch={"inactiveInfo": info}
    )


def reject(records: RecordStore, candidate_id: str) -> None:
    """
    Hard delete of an applicant. Attached blobs are left in storage.
    """
    cid = str(candidate_id or "").strip()
    if not cid:
        raise NotFoundError("Candidate not found")

    def _check(d: dict[str, Any]) -> None:
        s = str(d.get("status") or "").strip().lower()
        if s not in REJECTABLE_STATUSES:
            raise InvalidTransitionError(f"Cannot reject a record with status {s}", from_status=s)

    doc = records.delete_if(CANDIDATES, cid, _check)
    status = str(doc.get("status") or "").strip().lower()

    leftovers = [d.get("url") for d in (doc.get("documents") or []) + (doc.get("miscDocuments") or []) if d.get("url")]
    leftovers += [x for x in (doc.get("resume"), doc.get("driversLicense")) if x]
    if leftovers:
        log.warning("candidate=%s rejected; %d attachment(s) left in storage", cid, len(leftovers))
    log.info("candidate=%s rejected from %s", cid, status)


def attach_review(records: RecordStore, candidate_id: str, review: Any) -> dict[str, Any]:
    """Store the interview review. Status is not changed; hiring stays a separate step."""
    if not isinstance(review, dict) or not review:
        raise ValidationError("Interview review must be a non-empty object")
    payload = dict(review)
    payload.setdefault("submittedAt", iso_utc_now())

    cid = str(candidate_id or "").strip()
    if not cid:
        raise ValidationError("Missing candidate id")

    def _apply(doc: dict[str, Any]) -> None:
        status = str(doc.get("status") or "").strip().lower()
        if status not in REVIEWABLE_STATUSES:
            raise InvalidTransitionError(f"Reviews can only be attached during the interview phase, not {status}", from_status=status)
        doc["interviewReview"] = payload

    return records.mutate(CANDIDATES, cid, _apply)


def handle_advance_to_interview(data, auth: AuthContext | None, backend, cfg):
    return advance_to_interview(backend.records, require_str(as_dict(data), "id", "candidate id"))


def handle_approve_for_hire(data, auth: AuthContext | None, backend, cfg):
    return approve_for_hire(backend.records, require_str(as_dict(data), "id", "candidate id"))


def handle_mark_as_employee(data, auth: AuthContext | None, backend, cfg):
    return mark_as_employee(backend.records, require_str(as_dict(data), "id", "candidate id"))


def handle_deactivate(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    return deactivate(backend.records, require_str(d, "id", "candidate id"), d.get("reason"))


def handle_reject(data, auth: AuthContext | None, backend, cfg):
    cid = require_str(as_dict(data), "id", "candidate id")
    reject(backend.records, cid)
    return {"id": cid, "deleted": True}


def handle_attach_review(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    return attach_review(backend.records, require_str(d, "id", "candidate id"), d.get("review"))
