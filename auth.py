from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from services.identity_provider import IdentityProvider
from services.record_store import USERS, RecordStore
from utils import ApiError, AuthContext, normalize_role, parse_datetime_maybe


PUBLIC_ACTIONS = {
    "LOGIN",
    "SUBMIT_APPLICATION",
    "ACTIVE_APPLICATION_GET",
}

_ADMIN = ["ADMIN", "SUPERUSER"]
_SUPERUSER = ["SUPERUSER"]

STATIC_RBAC_PERMISSIONS: dict[str, list[str]] = {
    "LOGIN": ["PUBLIC"],
    "SUBMIT_APPLICATION": ["PUBLIC"],
    "ACTIVE_APPLICATION_GET": ["PUBLIC"],
    "SESSION_VALIDATE": _ADMIN,
    "LOGOUT": _ADMIN,
    # Candidate lifecycle
    "CANDIDATE_GET": _ADMIN,
    "CANDIDATES_LIST": _ADMIN,
    "ADVANCE_TO_INTERVIEW": _ADMIN,
    "APPROVE_FOR_HIRE": _ADMIN,
    "MARK_AS_EMPLOYEE": _ADMIN,
    "DEACTIVATE_EMPLOYEE": _ADMIN,
    "REJECT_CANDIDATE": _ADMIN,
    "ATTACH_REVIEW": _ADMIN,
    "LEGACY_EMPLOYEE_CREATE": _ADMIN,
    "CANDIDATE_DOCUMENT_ATTACH": _ADMIN,
    "CANDIDATE_FILE_DELETE": _ADMIN,
    "LICENSE_UPDATE": _ADMIN,
    "EXPIRING_LICENSES": _ADMIN,
    "MISSING_DOCUMENTS": _ADMIN,
    # Companies and onboarding processes
    "COMPANIES_GET": _ADMIN,
    "COMPANY_GET": _ADMIN,
    "COMPANY_SAVE": _ADMIN,
    "COMPANY_DELETE": _ADMIN,
    "COMPANY_LOGO_UPLOAD": _ADMIN,
    "PROCESS_ADD": _ADMIN,
    "PROCESS_REMOVE": _ADMIN,
    "APPLICATION_FORM_TYPE_SET": _ADMIN,
    "INTERVIEW_SCREEN_TYPE_SET": _ADMIN,
    "REQUIRED_DOC_ADD": _ADMIN,
    "REQUIRED_DOC_REMOVE": _ADMIN,
    "FORM_IMAGES_UPLOAD": _ADMIN,
    "INTERVIEW_IMAGE_UPLOAD": _ADMIN,
    "APPLICATION_FORM_GENERATE": _ADMIN,
    # Superuser console
    "ADMIN_USER_CREATE": _SUPERUSER,
    "USER_DELETE": _SUPERUSER,
    "SUPERUSER_CLAIM_SET": _SUPERUSER,
    "AUTH_USERS_LIST": _SUPERUSER,
    "COMPANIES_DELETE_ALL": _SUPERUSER,
    "DEMO_RESET": _SUPERUSER,
}


def is_public_action(action: str) -> bool:
    return str(action or "").upper() in PUBLIC_ACTIONS


def _invalid() -> AuthContext:
    return AuthContext(valid=False, userId="", email="", role="", expiresAt="")


def validate_session_token(identities: IdentityProvider, records: RecordStore, token: Any) -> AuthContext:
    """
    Resolve a session token to a role.

    SUPERUSER comes from the identity's custom claim; ADMIN requires a `users` profile
    whose subscription has not ended.
    """
    if not token or not isinstance(token, str):
        return _invalid()

    ident = identities.resolve_session(token)
    if not ident:
        return _invalid()

    uid = str(ident.get("uid") or "")
    email = str(ident.get("email") or "")
    expires_at = str(ident.get("expiresAt") or "")

    if (ident.get("customClaims") or {}).get("superuser"):
        return AuthContext(valid=True, userId=uid, email=email, role="SUPERUSER", expiresAt=expires_at)

    profile = records.get(USERS, uid)
    if not profile:
        return _invalid()

    end = parse_datetime_maybe(profile.get("subscriptionEndDate"))
    if end and end < datetime.now(timezone.utc):
        raise ApiError("FORBIDDEN", "Subscription has expired", http_status=403)

    return AuthContext(
        valid=True,
        userId=uid,
        email=email,
        role=normalize_role(profile.get("role") or "admin"),
        expiresAt=expires_at,
        companyId=str(profile.get("companyId") or ""),
    )


def assert_permission(role: str, action: str) -> None:
    role_u = normalize_role(role) or ""
    action_u = str(action or "").upper().strip()

    if is_public_action(action_u):
        return

    allowed = STATIC_RBAC_PERMISSIONS.get(action_u)
    if not allowed:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")
    if not role_u or role_u == "PUBLIC":
        raise ApiError("AUTH_INVALID", "Login required", http_status=401)
    if role_u not in allowed:
        raise ApiError("FORBIDDEN", f"Not allowed for role: {role_u}", http_status=403)


def serialize_auth(auth: AuthContext) -> dict[str, Any]:
    return {
        "valid": bool(auth.valid),
        "expiresAt": auth.expiresAt,
        "me": {"uid": auth.userId, "email": auth.email, "role": role_or_public(auth), "companyId": auth.companyId},
    }


def role_or_public(auth: Optional[AuthContext]) -> str:
    if not auth or not auth.valid:
        return "PUBLIC"
    return normalize_role(auth.role) or "PUBLIC"
