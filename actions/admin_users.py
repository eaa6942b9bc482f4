from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from actions.helpers import as_dict, optional_str, require_str
from auth import serialize_auth
from config import Config
from services.identity_provider import IdentityProvider, normalize_email
from services.record_store import USERS, RecordStore
from utils import ApiError, AuthContext, BackendError, NotFoundError, ValidationError, iso_utc_now, parse_datetime_maybe, to_iso_utc


log = logging.getLogger("auth")

ROLE_ADMIN = "admin"
SUPERUSER_CLAIM = "superuser"
DEFAULT_SUBSCRIPTION_DAYS = 365


def _subscription_window(start: Any, end: Any) -> tuple[str, str]:
    start_dt = parse_datetime_maybe(start) if start else datetime.now(timezone.utc)
    if start_dt is None:
        raise ValidationError("Invalid subscription start date")
    end_dt = parse_datetime_maybe(end) if end else start_dt + timedelta(days=DEFAULT_SUBSCRIPTION_DAYS)
    if end_dt is None:
        raise ValidationError("Invalid subscription end date")
    if end_dt <= start_dt:
        raise ValidationError("Subscription end date must be after the start date")
    return to_iso_utc(start_dt), to_iso_utc(end_dt)


def create_admin_user(
    records: RecordStore,
    identities: IdentityProvider,
    *,
    email: str,
    password: str,
    company_id: str = "",
    subscription_start: Any = None,
    subscription_end: Any = None,
) -> dict[str, Any]:
    e = normalize_email(email)
    start, end = _subscription_window(subscription_start, subscription_end)

    identity = identities.create_identity(e, password)
    profile = {
        "uid": identity["uid"],
        "email": e,
        "companyId": str(company_id or "").strip(),
        "role": ROLE_ADMIN,
        "subscriptionStartDate": start,
        "subscriptionEndDate": end,
        "created_at": iso_utc_now(),
    }
    try:
        records.create(USERS, profile, doc_id=identity["uid"])
    except BackendError:
        log.error("profile write failed; removing identity uid=%s", identity["uid"])
        identities.delete_identity(identity["uid"])
        raise
    log.info("admin user created uid=%s", identity["uid"])
    return dict(profile, id=identity["uid"])


def delete_user(records: RecordStore, identities: IdentityProvider, uid: str) -> None:
    u = str(uid or "").strip()
    if not u:
        raise ValidationError("Missing user id")
    had_profile = records.delete(USERS, u)
    try:
        identities.delete_identity(u)
    except NotFoundError:
        if not had_profile:
            raise
    log.info("user deleted uid=%s", u)


def set_superuser_claim(identities: IdentityProvider, uid: str) -> dict[str, Any]:
    u = str(uid or "").strip()
    ident = identities.get_identity(u)
    if not ident:
        raise NotFoundError("User not found")
    claims = dict(ident.get("customClaims") or {})
    claims[SUPERUSER_CLAIM] = True
    identities.set_custom_claims(u, claims)
    log.warning("superuser claim granted uid=%s", u)
    return {"uid": u, "customClaims": claims}


def list_auth_users(records: RecordStore, identities: IdentityProvider) -> list[dict[str, Any]]:
    profiles = {str(p.get("uid") or p.get("id")): p for p in records.list(USERS)}
    out = []
    for ident in identities.list_identities():
        profile = profiles.get(ident["uid"]) or {}
        out.append(
            {
                "uid": ident["uid"],
                "email": ident["email"],
                "disabled": ident["disabled"],
                "superuser": bool((ident.get("customClaims") or {}).get(SUPERUSER_CLAIM)),
                "createdAt": ident["createdAt"],
                "lastLoginAt": ident["lastLoginAt"],
                "companyId": profile.get("companyId", ""),
                "role": profile.get("role", ""),
                "subscriptionStartDate": profile.get("subscriptionStartDate"),
                "subscriptionEndDate": profile.get("subscriptionEndDate"),
            }
        )
    return out


def login(identities: IdentityProvider, email: str, password: str, *, ttl_minutes: int) -> dict[str, Any]:
    if not str(email or "").strip() or not password:
        raise ValidationError("Email and password are required")
    out = identities.sign_in(email, password, ttl_minutes=ttl_minutes)
    if not out:
        raise ApiError("AUTH_INVALID", "Invalid email or password", http_status=401)
    claims = out.get("customClaims") or {}
    return {
        "token": out["sessionToken"],
        "expiresAt": out["expiresAt"],
        "me": {"uid": out["uid"], "email": out["email"], "superuser": bool(claims.get(SUPERUSER_CLAIM))},
    }


def seed_superuser(cfg: Config, identities: IdentityProvider) -> Optional[str]:
    """Bootstrap account from SUPERUSER_EMAIL / SUPERUSER_PASSWORD; idempotent."""
    if not cfg.SUPERUSER_EMAIL or not cfg.SUPERUSER_PASSWORD:
        return None
    ident = identities.find_by_email(cfg.SUPERUSER_EMAIL)
    if ident is None:
        ident = identities.create_identity(cfg.SUPERUSER_EMAIL, cfg.SUPERUSER_PASSWORD)
        log.info("bootstrap superuser created uid=%s", ident["uid"])
    if not (ident.get("customClaims") or {}).get(SUPERUSER_CLAIM):
        set_superuser_claim(identities, ident["uid"])
    return ident["uid"]


def handle_login(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    return login(backend.identities, optional_str(d, "email"), d.get("password") or "", ttl_minutes=cfg.SESSION_TTL_MINUTES)


def handle_logout(data, auth: AuthContext | None, backend, cfg):
    token = optional_str(as_dict(data), "sessionToken")
    return {"revoked": backend.identities.revoke_session(token) if token else False}


def handle_session_validate(data, auth: AuthContext | None, backend, cfg):
    return serialize_auth(auth)


def handle_admin_user_create(data, auth: AuthContext | None, backend, cfg):
    d = as_dict(data)
    return create_admin_user(
        backend.records,
        backend.identities,
        email=require_str(d, "email"),
        password=d.get("password") or "",
        company_id=optional_str(d, "companyId"),
        subscription_start=d.get("subscriptionStartDate"),
        subscription_end=d.get("subscriptionEndDate"),
    )


def handle_user_delete(data, auth: AuthContext | None, backend, cfg):
    uid = require_str(as_dict(data), "uid", "user id")
    if auth and uid == auth.userId:
        raise ValidationError("You cannot delete your own account")
    delete_user(backend.records, backend.identities, uid)
    return {"uid": uid, "deleted": True}


def handle_superuser_claim_set(data, auth: AuthContext | None, backend, cfg):
    return set_superuser_claim(backend.identities, require_str(as_dict(data), "uid", "user id"))


def handle_auth_users_list(data, auth: AuthContext | None, backend, cfg):
    items = list_auth_users(backend.records, backend.identities)
    return {"items": items, "total": len(items)}
