from __future__ import annotations

import hashlib
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from models import AuthIdentity, AuthSession
from passwords import hash_password, verify_password
from utils import BackendError, NotFoundError, ValidationError, iso_utc_now, new_uuid, parse_datetime_maybe


log = logging.getLogger("auth")


def sha256_hex(value: str) -> str:
    return hashlib.sha256(str(value or "").encode("utf-8")).hexdigest()


def normalize_email(email: Any) -> str:
    e = str(email or "").strip().lower()
    if not e:
        raise ValidationError("Email is required")
    if "@" not in e or len(e) < 5 or len(e) > 254:
        raise ValidationError("Invalid email format")
    return e


def _identity_view(row: AuthIdentity) -> dict[str, Any]:
    try:
        claims = json.loads(row.claimsJson or "{}")
    except json.JSONDecodeError:
        claims = {}
    return {
        "uid": row.uid,
        "email": row.email,
        "customClaims": claims if isinstance(claims, dict) else {},
        "disabled": bool(row.disabled),
        "createdAt": row.createdAt or "",
        "lastLoginAt": row.lastLoginAt or "",
    }


class IdentityProvider:
    """Authentication capability: identities, custom claims and login sessions."""

    def create_identity(self, email: str, password: str) -> dict[str, Any]:
        raise NotImplementedError

    def delete_identity(self, uid: str) -> None:
        raise NotImplementedError

    def get_identity(self, uid: str) -> Optional[dict[str, Any]]:
        raise NotImplementedError

    def find_by_email(self, email: str) -> Optional[dict[str, Any]]:
        raise NotImplementedError

    def set_custom_claims(self, uid: str, claims: dict[str, Any]) -> None:
        raise NotImplementedError

    def list_identities(self) -> list[dict[str, Any]]:
        raise NotImplementedError

    def sign_in(self, email: str, password: str, *, ttl_minutes: int) -> dict[str, Any]:
        raise NotImplementedError

    def resolve_session(self, token: str) -> Optional[dict[str, Any]]:
        raise NotImplementedError

    def revoke_session(self, token: str) -> bool:
        raise NotImplementedError


class LocalIdentityProvider(IdentityProvider):
    """Identities and sessions kept in the application database."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create_identity(self, email: str, password: str) -> dict[str, Any]:
        e = normalize_email(email)
        pwd_hash = hash_password(password)
        uid = "UID-" + os.urandom(10).hex()
        row = AuthIdentity(
            uid=uid,
            email=e,
            passwordHash=pwd_hash,
            claimsJson="{}",
            disabled=False,
            createdAt=iso_utc_now(),
            lastLoginAt="",
        )
        try:
            with self._session_factory() as db:
                db.add(row)
                db.commit()
        except IntegrityError:
            raise ValidationError("A user with this email already exists.")
        except SQLAlchemyError as ex:
            log.exception("create identity failed")
            raise BackendError(f"Failed to create identity: {type(ex).__name__}")
        return _identity_view(row)

    def delete_identity(self, uid: str) -> None:
        try:
            with self._session_factory() as db:
                res = db.execute(delete(AuthIdentity).where(AuthIdentity.uid == str(uid or "")))
                db.execute(
                    update(AuthSession)
                    .where(AuthSession.uid == str(uid or ""))
                    .where(AuthSession.revokedAt == "")
                    .values(revokedAt=iso_utc_now())
                )
                db.commit()
        except SQLAlchemyError as ex:
            log.exception("delete identity failed uid=%s", uid)
            raise BackendError(f"Failed to delete identity: {type(ex).__name__}")
        if not res.rowcount:
            raise NotFoundError("User not found")

    def get_identity(self, uid: str) -> Optional[dict[str, Any]]:
        try:
            with self._session_factory() as db:
                row = db.execute(select(AuthIdentity).where(AuthIdentity.uid == str(uid or ""))).scalar_one_or_none()
                return _identity_view(row) if row else None
        except SQLAlchemyError as ex:
            raise BackendError(f"Failed to read identity: {type(ex).__name__}")

    def find_by_email(self, email: str) -> Optional[dict[str, Any]]:
        e = str(email or "").strip().lower()
        try:
            with self._session_factory() as db:
                row = db.execute(select(AuthIdentity).where(AuthIdentity.email == e)).scalar_one_or_none()
                return _identity_view(row) if row else None
        except SQLAlchemyError as ex:
            raise BackendError(f"Failed to read identity: {type(ex).__name__}")

    def set_custom_claims(self, uid: str, claims: dict[str, Any]) -> None:
        try:
            with self._session_factory() as db:
                row = db.execute(select(AuthIdentity).where(AuthIdentity.uid == str(uid or ""))).scalar_one_or_none()
                if not row:
                    raise NotFoundError("User not found")
                row.claimsJson = json.dumps(dict(claims or {}))
                db.commit()
        except SQLAlchemyError as ex:
            log.exception("set claims failed uid=%s", uid)
            raise BackendError(f"Failed to set claims: {type(ex).__name__}")

    def list_identities(self) -> list[dict[str, Any]]:
        try:
            with self._session_factory() as db:
                rows = db.execute(select(AuthIdentity).order_by(AuthIdentity.createdAt.asc())).scalars().all()
                return [_identity_view(r) for r in rows]
        except SQLAlchemyError as ex:
            raise BackendError(f"Failed to list identities: {type(ex).__name__}")

    def sign_in(self, email: str, password: str, *, ttl_minutes: int) -> dict[str, Any]:
        e = str(email or "").strip().lower()
        try:
            with self._session_factory() as db:
                row = db.execute(select(AuthIdentity).where(AuthIdentity.email == e)).scalar_one_or_none()
                if not row or row.disabled or not verify_password(password, row.passwordHash):
                    return {}

                token = "ST-" + os.urandom(32).hex()
                now = datetime.now(timezone.utc)
                expires_at = (now + timedelta(minutes=ttl_minutes)).isoformat(timespec="milliseconds").replace("+00:00", "Z")
                issued_at = iso_utc_now()
                db.add(
                    AuthSession(
                        sessionId="SES-" + new_uuid(),
                        tokenHash=sha256_hex(token),
                        tokenPrefix=token[:12],
                        uid=row.uid,
                        email=row.email,
                        issuedAt=issued_at,
                        expiresAt=expires_at,
                        revokedAt="",
                    )
                )
                row.lastLoginAt = issued_at
                db.commit()
                view = _identity_view(row)
        except SQLAlchemyError as ex:
            log.exception("sign in failed")
            raise BackendError(f"Failed to sign in: {type(ex).__name__}")

        view["sessionToken"] = token
        view["expiresAt"] = expires_at
        return view

    def resolve_session(self, token: str) -> Optional[dict[str, Any]]:
        if not token or not isinstance(token, str):
            return None
        try:
            with self._session_factory() as db:
                ses = db.execute(select(AuthSession).where(AuthSession.tokenHash == sha256_hex(token))).scalar_one_or_none()
                if not ses or ses.revokedAt:
                    return None
                exp = parse_datetime_maybe(ses.expiresAt)
                if exp and exp < datetime.now(timezone.utc):
                    return None
                row = db.execute(select(AuthIdentity).where(AuthIdentity.uid == ses.uid)).scalar_one_or_none()
                if not row or row.disabled:
                    return None
                view = _identity_view(row)
                view["expiresAt"] = ses.expiresAt
                return view
        except SQLAlchemyError as ex:
            raise BackendError(f"Failed to validate session: {type(ex).__name__}")

    def revoke_session(self, token: str) -> bool:
        if not token or not isinstance(token, str):
            return False
        try:
            with self._session_factory() as db:
                res = db.execute(
                    update(AuthSession)
                    .where(AuthSession.tokenHash == sha256_hex(token))
                    .where(AuthSession.revokedAt == "")
                    .values(revokedAt=iso_utc_now())
                )
                db.commit()
                return bool(res.rowcount)
        except SQLAlchemyError as ex:
            raise BackendError(f"Failed to revoke session: {type(ex).__name__}")
