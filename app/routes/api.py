from __future__ import annotations

import logging
from typing import Any, Optional

from flask import Blueprint, current_app, g, jsonify, request

from actions import run_action
from auth import is_public_action, validate_session_token
from utils import ApiError, AuthContext, err, now_monotonic, parse_json_body, redact_for_audit

api_bp = Blueprint("api", __name__)

log = logging.getLogger("api")

LOGIN_ACTIONS = {"LOGIN"}


def request_token(body: Optional[dict[str, Any]] = None) -> str:
    token = str((body or {}).get("token") or "").strip()
    if token:
        return token
    authz = str(request.headers.get("Authorization") or "").strip()
    if authz.lower().startswith("bearer "):
        return authz.split(" ", 1)[1].strip()
    return str(request.headers.get("X-Session-Token") or "").strip()


def client_ip() -> str:
    return str(request.headers.get("X-Forwarded-For", request.remote_addr or "") or "").split(",")[0].strip()


def resolve_auth(action_u: str, token: str) -> Optional[AuthContext]:
    """Public actions tolerate a bad token; everything else requires a valid session."""
    backend = current_app.extensions["backend"]
    public = is_public_action(action_u)
    try:
        auth_ctx = validate_session_token(backend.identities, backend.records, token)
    except ApiError as e:
        if public and e.http_status in (401, 403):
            return None
        raise
    if auth_ctx.valid:
        return auth_ctx
    if public:
        return None
    raise ApiError("AUTH_INVALID", "Invalid or expired session", http_status=401)


def check_rate_limit(action_u: str) -> None:
    cfg = current_app.config["CFG"]
    limiter = current_app.extensions["rate_limiter"]
    ip = client_ip()
    if action_u in LOGIN_ACTIONS:
        limiter.check(f"{ip}:LOGIN", cfg.RATE_LIMIT_LOGIN)
    elif action_u == "SUBMIT_APPLICATION":
        limiter.check(f"{ip}:APPLY", cfg.RATE_LIMIT_APPLY)
    else:
        limiter.check(f"{ip}:GLOBAL", cfg.RATE_LIMIT_GLOBAL)
        limiter.check(f"{ip}:API:{action_u}", cfg.RATE_LIMIT_DEFAULT)


def execute(action_u: str, data: Any, token: str):
    """Shared by POST /api and the multipart routes."""
    cfg = current_app.config["CFG"]
    backend = current_app.extensions["backend"]
    auth_ctx = None
    try:
        check_rate_limit(action_u)
        auth_ctx = resolve_auth(action_u, token)
    except ApiError as e:
        return jsonify(err(e.code, e.message)), e.http_status

    result, status = run_action(action_u, data, auth_ctx, backend, cfg)

    latency_ms = int((now_monotonic() - g.start_ts) * 1000)
    log.info(
        "request_id=%s action=%s user=%s role=%s status=%s latency_ms=%s",
        g.request_id,
        action_u,
        (auth_ctx.userId if auth_ctx else "PUBLIC"),
        (auth_ctx.role if auth_ctx else "PUBLIC"),
        status,
        latency_ms,
    )
    if status >= 400:
        log.debug("request_id=%s action=%s rejected data=%s", g.request_id, action_u, redact_for_audit(data))
    return jsonify(result), status


@api_bp.post("/api")
def api_route():
    try:
        body = parse_json_body(request.get_data(as_text=True))
    except ApiError as e:
        return jsonify(err(e.code, e.message)), e.http_status

    action_u = str(body.get("action") or "").upper().strip()
    if not action_u:
        return jsonify(err("BAD_REQUEST", "Missing action")), 400

    token = request_token(body)
    data = body.get("data")
    if data is None:
        data = {}
    if action_u == "LOGOUT" and isinstance(data, dict):
        data = dict(data, sessionToken=token)
    return execute(action_u, data, token)
