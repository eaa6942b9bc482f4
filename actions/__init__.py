from __future__ import annotations

import logging
from typing import Any, Callable

from actions import admin_users, candidate_repo, company_repo, forms, lifecycle_service, workflow
from auth import assert_permission, role_or_public
from cache_layer import invalidate_candidate_views
from utils import ApiError, AuthContext, err, ok


log = logging.getLogger("api")

Handler = Callable[[Any, "AuthContext | None", Any, Any], Any]

ACTION_HANDLERS: dict[str, Handler] = {
    "LOGIN": admin_users.handle_login,
    "LOGOUT": admin_users.handle_logout,
    "SESSION_VALIDATE": admin_users.handle_session_validate,
    "SUBMIT_APPLICATION": candidate_repo.handle_submit_application,
    "ACTIVE_APPLICATION_GET": company_repo.handle_active_application,
    "CANDIDATE_GET": candidate_repo.handle_candidate_get,
    "CANDIDATES_LIST": candidate_repo.handle_candidates_list,
    "ADVANCE_TO_INTERVIEW": lifecycle_service.handle_advance_to_interview,
    "APPROVE_FOR_HIRE": lifecycle_service.handle_approve_for_hire,
    "MARK_AS_EMPLOYEE": lifecycle_service.handle_mark_as_employee,
    "DEACTIVATE_EMPLOYEE": lifecycle_service.handle_deactivate,
    "REJECT_CANDIDATE": lifecycle_service.handle_reject,
    "ATTACH_REVIEW": lifecycle_service.handle_attach_review,
    "LEGACY_EMPLOYEE_CREATE": candidate_repo.handle_legacy_employee_create,
    "CANDIDATE_DOCUMENT_ATTACH": candidate_repo.handle_document_attach,
    "CANDIDATE_FILE_DELETE": candidate_repo.handle_file_delete,
    "LICENSE_UPDATE": candidate_repo.handle_license_update,
    "EXPIRING_LICENSES": candidate_repo.handle_expiring_licenses,
    "MISSING_DOCUMENTS": candidate_repo.handle_missing_documents,
    "DEMO_RESET": candidate_repo.handle_demo_reset,
    "COMPANIES_GET": company_repo.handle_companies_get,
    "COMPANY_GET": company_repo.handle_company_get,
    "COMPANY_SAVE": company_repo.handle_company_save,
    "COMPANY_DELETE": company_repo.handle_company_delete,
    "COMPANIES_DELETE_ALL": company_repo.handle_companies_delete_all,
    "COMPANY_LOGO_UPLOAD": company_repo.handle_logo_upload,
    "PROCESS_ADD": workflow.handle_process_add,
    "PROCESS_REMOVE": workflow.handle_process_remove,
    "APPLICATION_FORM_TYPE_SET": workflow.handle_application_form_type_set,
    "INTERVIEW_SCREEN_TYPE_SET": workflow.handle_interview_screen_type_set,
    "REQUIRED_DOC_ADD": workflow.handle_required_doc_add,
    "REQUIRED_DOC_REMOVE": workflow.handle_required_doc_remove,
    "FORM_IMAGES_UPLOAD": workflow.handle_form_images_upload,
    "INTERVIEW_IMAGE_UPLOAD": workflow.handle_interview_image_upload,
    "APPLICATION_FORM_GENERATE": forms.handle_application_form_generate,
    "ADMIN_USER_CREATE": admin_users.handle_admin_user_create,
    "USER_DELETE": admin_users.handle_user_delete,
    "SUPERUSER_CLAIM_SET": admin_users.handle_superuser_claim_set,
    "AUTH_USERS_LIST": admin_users.handle_auth_users_list,
}

# Actions after which cached candidate list views are stale.
CANDIDATE_MUTATIONS = {
    "SUBMIT_APPLICATION",
    "ADVANCE_TO_INTERVIEW",
    "APPROVE_FOR_HIRE",
    "MARK_AS_EMPLOYEE",
    "DEACTIVATE_EMPLOYEE",
    "REJECT_CANDIDATE",
    "ATTACH_REVIEW",
    "LEGACY_EMPLOYEE_CREATE",
    "CANDIDATE_DOCUMENT_ATTACH",
    "CANDIDATE_FILE_DELETE",
    "LICENSE_UPDATE",
    "DEMO_RESET",
}

# Handlers that already return a `{success, ...}` result instead of raising.
RESULT_SHAPED = {"PROCESS_REMOVE"}


def dispatch(action: str, data: Any, auth: AuthContext | None, backend, cfg) -> Any:
    action_u = str(action or "").upper().strip()
    handler = ACTION_HANDLERS.get(action_u)
    if handler is None:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")
    out = handler(data, auth, backend, cfg)
    if action_u in CANDIDATE_MUTATIONS:
        invalidate_candidate_views()
    return out


def run_action(action: str, data: Any, auth: AuthContext | None, backend, cfg) -> tuple[dict[str, Any], int]:
    """
    Request -> result boundary shared by every route.

    Domain errors become `{success: false, error, code}` with their HTTP status;
    anything unexpected is logged with its stack trace and reported as BACKEND_ERROR.
    """
    action_u = str(action or "").upper().strip()
    try:
        assert_permission(role_or_public(auth), action_u)
        out = dispatch(action_u, data, auth, backend, cfg)
    except ApiError as e:
        if e.http_status >= 500:
            log.warning("action=%s code=%s error=%s", action_u, e.code, e.message)
        return err(e.code, e.message), e.http_status
    except Exception:
        log.exception("action=%s failed", action_u)
        return err("BACKEND_ERROR", "Unexpected backend error"), 500

    if action_u in RESULT_SHAPED:
        if out.get("success"):
            return out, 200
        return out, 404 if out.get("code") == "NOT_FOUND" else 400
    return ok(out), 200
