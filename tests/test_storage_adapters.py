from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from db import init_schema, make_engine, make_session_factory
from services.blob_store import BlobNotFoundError, LocalBlobStore, RemoteBlobStore, guess_content_type, make_blob_key
from services.record_store import SqlRecordStore, newest_first
from utils import BackendError, ConflictError, NotFoundError, ValidationError


@pytest.fixture()
def store():
    engine = make_engine("sqlite://")
    init_schema(engine)
    yield SqlRecordStore(make_session_factory(engine))
    engine.dispose()


def test_create_get_and_list_with_filters(store):
    a = store.create("people", {"name": "a", "status": "candidate"})
    b = store.create("people", {"name": "b", "status": "employee"})
    store.create("other", {"name": "c", "status": "candidate"})

    assert store.get("people", a["id"])["name"] == "a"
    assert store.get("people", "missing") is None
    assert [d["id"] for d in store.list("people")] == [a["id"], b["id"]]
    assert [d["id"] for d in store.list("people", filters={"status": "employee"})] == [b["id"]]
    assert len(store.list("people", filters={"status": ["candidate", "employee"]})) == 2


def test_duplicate_id_is_rejected(store):
    store.create("people", {"name": "a"}, doc_id="p1")
    with pytest.raises(BackendError) as exc:
        store.create("people", {"name": "b"}, doc_id="p1")
    assert exc.value.code == "DUPLICATE_ID"


def test_put_with_stale_version_conflicts(store):
    doc = store.create("companies", {"name": "Acme"})
    _body, version = store.get_versioned("companies", doc["id"])
    assert version == 1

    assert store.put("companies", doc["id"], {"name": "Acme 2"}, expected_version=1) == 2
    with pytest.raises(ConflictError):
        store.put("companies", doc["id"], {"name": "Stale"}, expected_version=1)
    assert store.get("companies", doc["id"])["name"] == "Acme 2"


def test_mutate_is_all_or_nothing(store):
    doc = store.create("companies", {"name": "Acme", "tags": ["a"]})

    def _boom(d):
        d["tags"].append("b")
        raise ValidationError("nope")

    with pytest.raises(ValidationError):
        store.mutate("companies", doc["id"], _boom)
    assert store.get("companies", doc["id"])["tags"] == ["a"]

    merged = store.merge("companies", doc["id"], {"phone": "555"})
    assert merged["name"] == "Acme" and merged["phone"] == "555"
    assert store.get_versioned("companies", doc["id"])[1] == 2

    with pytest.raises(NotFoundError):
        store.mutate("companies", "missing", lambda d: None)


def test_delete_and_delete_all(store):
    a = store.create("people", {"name": "a"})
    store.create("people", {"name": "b"})
    assert store.delete("people", a["id"]) is True
    assert store.delete("people", a["id"]) is False
    assert store.delete_all("people") == 1
    assert store.list("people") == []


def test_delete_if_runs_check_under_lock(store):
    doc = store.create("people", {"name": "a", "status": "employee"})

    def _only_candidates(d):
        if d["status"] != "candidate":
            raise ValidationError("not a candidate")

    with pytest.raises(ValidationError):
        store.delete_if("people", doc["id"], _only_candidates)
    assert store.get("people", doc["id"])["status"] == "employee"

    store.merge("people", doc["id"], {"status": "candidate"})
    removed = store.delete_if("people", doc["id"], _only_candidates)
    assert removed["name"] == "a"
    assert store.get("people", doc["id"]) is None

    with pytest.raises(NotFoundError):
        store.delete_if("people", doc["id"], _only_candidates)


def test_newest_first_orders_by_creation_time():
    docs = [{"id": "1", "created_at": "2026-01-01T00:00:00.000Z"}, {"id": "2", "created_at": "2026-02-01T00:00:00.000Z"}]
    assert [d["id"] for d in newest_first(docs)] == ["2", "1"]


def test_blob_keys_and_content_types():
    key = make_blob_key("c1", "resume", "../../etc/passwd", now_ms=1700000000000)
    assert key == "c1/resume/1700000000000-passwd"
    with pytest.raises(BackendError):
        make_blob_key("a/b", "resume", "x.pdf")
    assert guess_content_type("a/b/1-x.PDF") == "application/pdf"
    assert guess_content_type("a/b/1-x.jpg") == "image/jpeg"
    assert guess_content_type("a/b/1-x.docx") == "application/octet-stream"


def test_local_blob_store_round_trip_and_traversal(tmp_path):
    blobs = LocalBlobStore(str(tmp_path))
    key = blobs.upload("c1", "misc", "note.png", b"data")

    assert blobs.download(key) == (b"data", "image/png")
    assert blobs.url_for(key).startswith("/employees/c1/file/")
    blobs.delete(key)
    with pytest.raises(BlobNotFoundError):
        blobs.download(key)
    assert blobs.delete_quietly(key) is False
    with pytest.raises(BackendError):
        blobs.download("c1/../../secret.txt")


def _response(status: int, content: bytes = b""):
    resp = MagicMock()
    resp.status_code = status
    resp.content = content
    return resp


def test_remote_blob_store_requests():
    session = MagicMock()
    session.headers = {}
    blobs = RemoteBlobStore("https://blobs.example.test/bucket/", api_token="secret", session=session)
    assert session.headers["Authorization"] == "Bearer secret"

    session.request.return_value = _response(200)
    key = blobs.upload("c1", "logo", "logo.png", b"img")
    method, url = session.request.call_args[0]
    assert method == "PUT"
    assert url == f"https://blobs.example.test/bucket/{key}"
    assert session.request.call_args[1]["headers"]["Content-Type"] == "image/png"

    session.request.return_value = _response(200, b"img")
    assert blobs.download(key) == (b"img", "image/png")

    session.request.return_value = _response(404)
    with pytest.raises(BlobNotFoundError):
        blobs.download(key)
    assert blobs.exists(key) is False

    session.request.return_value = _response(500)
    with pytest.raises(BackendError):
        blobs.delete(key)
    assert blobs.delete_quietly(key) is False

    session.request.side_effect = requests.ConnectionError("down")
    with pytest.raises(BackendError):
        blobs.download(key)
