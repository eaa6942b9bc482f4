from __future__ import annotations

import copy
import json
import logging
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from models import StoredDocument
from utils import BackendError, ConflictError, NotFoundError, iso_utc_now, new_doc_id


log = logging.getLogger("storage")

CANDIDATES = "candidates"
COMPANIES = "companies"
USERS = "users"


class RecordStore:
    """
    Document-store contract used by every action.

    Documents are JSON-like mappings keyed by an opaque id inside a named collection.
    Implementations raise `BackendError` for infrastructure failures and never leak
    driver exceptions.
    """

    def create(self, collection: str, doc: dict[str, Any], doc_id: Optional[str] = None) -> dict[str, Any]:
        raise NotImplementedError

    def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        doc, _version = self.get_versioned(collection, doc_id)
        return doc

    def get_versioned(self, collection: str, doc_id: str) -> tuple[Optional[dict[str, Any]], int]:
        raise NotImplementedError

    def put(
        self, collection: str, doc_id: str, doc: dict[str, Any], *, expected_version: Optional[int] = None
    ) -> int:
        raise NotImplementedError

    def merge(self, collection: str, doc_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        def _apply(doc: dict[str, Any]) -> None:
            doc.update(patch)

        return self.mutate(collection, doc_id, _apply)

    def mutate(self, collection: str, doc_id: str, fn: Callable[[dict[str, Any]], Any]) -> dict[str, Any]:
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> bool:
        raise NotImplementedError

    def delete_if(self, collection: str, doc_id: str, check: Callable[[dict[str, Any]], Any]) -> dict[str, Any]:
        raise NotImplementedError

    def list(self, collection: str, filters: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        raise NotImplementedError

    def delete_all(self, collection: str) -> int:
        raise NotImplementedError


def _matches(doc: dict[str, Any], filters: Optional[dict[str, Any]]) -> bool:
    for key, expected in (filters or {}).items():
        value = doc.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


def _load(row: StoredDocument) -> dict[str, Any]:
    try:
        body = json.loads(row.bodyJson or "{}")
    except json.JSONDecodeError:
        log.error("corrupt document collection=%s id=%s", row.collection, row.docId)
        raise BackendError("Stored document is corrupt")
    return body if isinstance(body, dict) else {}


def _dump(doc: dict[str, Any]) -> str:
    try:
        return json.dumps(doc, separators=(",", ":"), default=str)
    except (TypeError, ValueError) as e:
        raise BackendError(f"Document is not serializable: {e}")


class SqlRecordStore(RecordStore):
    """RecordStore over one SQLAlchemy table; each call is its own transaction."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _fetch(self, db, collection: str, doc_id: str, *, lock: bool = False) -> Optional[StoredDocument]:
        q = (
            select(StoredDocument)
            .where(StoredDocument.collection == collection)
            .where(StoredDocument.docId == str(doc_id or ""))
        )
        if lock:
            q = q.with_for_update(of=StoredDocument)
        return db.execute(q).scalars().first()

    def create(self, collection: str, doc: dict[str, Any], doc_id: Optional[str] = None) -> dict[str, Any]:
        did = str(doc_id or doc.get("id") or new_doc_id())
        now = iso_utc_now()
        body = copy.deepcopy(doc)
        body["id"] = did
        body.setdefault("created_at", now)

        try:
            with self._session_factory() as db:
                db.add(
                    StoredDocument(
                        collection=collection,
                        docId=did,
                        bodyJson=_dump(body),
                        version=1,
                        createdAt=str(body.get("created_at") or now),
                        updatedAt=now,
                    )
                )
                db.commit()
        except IntegrityError:
            raise BackendError(f"Document already exists: {collection}/{did}", code="DUPLICATE_ID", http_status=409)
        except SQLAlchemyError as e:
            log.exception("create failed collection=%s", collection)
            raise BackendError(f"Failed to create document: {type(e).__name__}")
        return body

    def get_versioned(self, collection: str, doc_id: str) -> tuple[Optional[dict[str, Any]], int]:
        try:
            with self._session_factory() as db:
                row = self._fetch(db, collection, doc_id)
                if not row:
                    return None, 0
                return _load(row), int(row.version or 0)
        except SQLAlchemyError as e:
            log.exception("get failed collection=%s id=%s", collection, doc_id)
            raise BackendError(f"Failed to read document: {type(e).__name__}")

    def put(
        self, collection: str, doc_id: str, doc: dict[str, Any], *, expected_version: Optional[int] = None
    ) -> int:
        try:
            with self._session_factory() as db:
                row = self._fetch(db, collection, doc_id, lock=True)
                now = iso_utc_now()
                body = copy.deepcopy(doc)
                body["id"] = str(doc_id)

                if row is None:
                    if expected_version:
                        raise ConflictError("Document was deleted by another user")
                    body.setdefault("created_at", now)
                    db.add(
                        StoredDocument(
                            collection=collection,
                            docId=str(doc_id),
                            bodyJson=_dump(body),
                            version=1,
                            createdAt=str(body.get("created_at") or now),
                            updatedAt=now,
                        )
                    )
                    db.commit()
                    return 1

                current = int(row.version or 0)
                if expected_version is not None and int(expected_version) != current:
                    raise ConflictError("Document was changed by another user; reload and try again")

                row.bodyJson = _dump(body)
                row.version = current + 1
                row.updatedAt = now
                db.commit()
                return current + 1
        except SQLAlchemyError as e:
            log.exception("put failed collection=%s id=%s", collection, doc_id)
            raise BackendError(f"Failed to write document: {type(e).__name__}")

    def mutate(self, collection: str, doc_id: str, fn: Callable[[dict[str, Any]], Any]) -> dict[str, Any]:
        """
        Atomic read-modify-write of a single document.

        `fn` receives a mutable copy; raising from `fn` aborts without writing.
        """
        try:
            with self._session_factory() as db:
                row = self._fetch(db, collection, doc_id, lock=True)
                if not row:
                    raise NotFoundError(f"Record not found: {doc_id}")

                doc = _load(row)
                fn(doc)
                doc["id"] = row.docId

                row.bodyJson = _dump(doc)
                row.version = int(row.version or 0) + 1
                row.updatedAt = iso_utc_now()
                db.commit()
                return doc
        except SQLAlchemyError as e:
            log.exception("mutate failed collection=%s id=%s", collection, doc_id)
            raise BackendError(f"Failed to update document: {type(e).__name__}")

    def delete(self, collection: str, doc_id: str) -> bool:
        try:
            with self._session_factory() as db:
                res = db.execute(
                    delete(StoredDocument)
                    .where(StoredDocument.collection == collection)
                    .where(StoredDocument.docId == str(doc_id or ""))
                )
                db.commit()
                return bool(res.rowcount)
        except SQLAlchemyError as e:
            log.exception("delete failed collection=%s id=%s", collection, doc_id)
            raise BackendError(f"Failed to delete document: {type(e).__name__}")

    def delete_if(self, collection: str, doc_id: str, check: Callable[[dict[str, Any]], Any]) -> dict[str, Any]:
        """
        Locked read, `check`, then delete, in one transaction.

        `check` raises to keep the document; the deleted document is returned.
        """
        try:
            with self._session_factory() as db:
                row = self._fetch(db, collection, doc_id, lock=True)
                if not row:
                    raise NotFoundError(f"Record not found: {doc_id}")
                doc = _load(row)
                check(doc)
                db.delete(row)
                db.commit()
                return doc
        except SQLAlchemyError as e:
            log.exception("delete_if failed collection=%s id=%s", collection, doc_id)
            raise BackendError(f"Failed to delete document: {type(e).__name__}")

    def list(self, collection: str, filters: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        try:
            with self._session_factory() as db:
                rows = (
                    db.execute(
                        select(StoredDocument)
                        .where(StoredDocument.collection == collection)
                        .order_by(StoredDocument.createdAt.asc(), StoredDocument.id.asc())
                    )
                    .scalars()
                    .all()
                )
                docs = [_load(r) for r in rows]
        except SQLAlchemyError as e:
            log.exception("list failed collection=%s", collection)
            raise BackendError(f"Failed to list documents: {type(e).__name__}")
        return [d for d in docs if _matches(d, filters)]

    def delete_all(self, collection: str) -> int:
        try:
            with self._session_factory() as db:
                res = db.execute(delete(StoredDocument).where(StoredDocument.collection == collection))
                db.commit()
                return int(res.rowcount or 0)
        except SQLAlchemyError as e:
            log.exception("delete_all failed collection=%s", collection)
            raise BackendError(f"Failed to delete documents: {type(e).__name__}")


def newest_first(docs: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(docs, key=lambda d: str(d.get("created_at") or ""), reverse=True)
