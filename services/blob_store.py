from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import requests

from utils import BackendError, NotFoundError, sanitize_filename


log = logging.getLogger("storage")


class BlobNotFoundError(NotFoundError):
    def __init__(self, key: str):
        super().__init__(f"File not found: {key}")
        self.key = key


@dataclass(frozen=True)
class FileUpload:
    filename: str
    data: bytes
    content_type: str = ""


_EXTENSION_CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}


def guess_content_type(key: str) -> str:
    name = str(key or "").lower().split("?", 1)[0]
    _root, ext = os.path.splitext(name)
    return _EXTENSION_CONTENT_TYPES.get(ext, "application/octet-stream")


def make_blob_key(owner_id: str, category: str, filename: str, *, now_ms: Optional[int] = None) -> str:
    """`{ownerId}/{category}/{timestamp}-{filename}`; owner and category must be single path segments."""
    owner = str(owner_id or "").strip()
    cat = str(category or "").strip()
    if not owner or "/" in owner or ".." in owner:
        raise BackendError("Invalid blob owner id", code="BAD_REQUEST", http_status=400)
    if not cat or "/" in cat or ".." in cat:
        raise BackendError("Invalid blob category", code="BAD_REQUEST", http_status=400)
    ts = int(now_ms if now_ms is not None else time.time() * 1000)
    return f"{owner}/{cat}/{ts}-{sanitize_filename(filename)}"


def _check_key(key: str) -> str:
    k = str(key or "").strip().lstrip("/")
    if not k or ".." in k.split("/") or "\\" in k:
        raise BackendError("Invalid file key", code="BAD_REQUEST", http_status=400)
    return k


class BlobStore:
    """Path-addressed binary storage. `upload` returns the locator (the key)."""

    def upload(self, owner_id: str, category: str, filename: str, data: bytes, content_type: str = "") -> str:
        key = make_blob_key(owner_id, category, filename)
        self.put_bytes(key, data, content_type or guess_content_type(filename))
        return key

    def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        raise NotImplementedError

    def download(self, key: str) -> tuple[bytes, str]:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        try:
            self.download(key)
            return True
        except BlobNotFoundError:
            return False

    def url_for(self, key: str) -> str:
        raise NotImplementedError

    def delete_quietly(self, key: str) -> bool:
        """Best-effort delete; failures are logged and reported as False."""
        if not key:
            return False
        try:
            self.delete(key)
            return True
        except BlobNotFoundError:
            return False
        except BackendError as e:
            log.warning("blob delete failed key=%s error=%s", key, e.message)
            return False


class LocalBlobStore(BlobStore):
    def __init__(self, root_dir: str):
        self.root_dir = os.path.abspath(str(root_dir or "./uploads"))

    def _path(self, key: str) -> str:
        k = _check_key(key)
        path = os.path.abspath(os.path.join(self.root_dir, *k.split("/")))
        if not path.startswith(self.root_dir + os.sep):
            raise BackendError("Invalid file key", code="BAD_REQUEST", http_status=400)
        return path

    def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as f:
                f.write(data or b"")
        except OSError as e:
            log.exception("local upload failed key=%s", key)
            raise BackendError(f"Upload failed: {e.strerror or type(e).__name__}")

    def download(self, key: str) -> tuple[bytes, str]:
        path = self._path(key)
        try:
            with open(path, "rb") as f:
                return f.read(), guess_content_type(key)
        except FileNotFoundError:
            raise BlobNotFoundError(key)
        except OSError as e:
            raise BackendError(f"Download failed: {e.strerror or type(e).__name__}")

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            os.remove(path)
        except FileNotFoundError:
            raise BlobNotFoundError(key)
        except OSError as e:
            raise BackendError(f"Delete failed: {e.strerror or type(e).__name__}")

    def exists(self, key: str) -> bool:
        return os.path.isfile(self._path(key))

    def url_for(self, key: str) -> str:
        k = _check_key(key)
        owner, _sep, rest = k.partition("/")
        return f"/employees/{quote(owner, safe='')}/file/{quote(rest, safe='')}"


class RemoteBlobStore(BlobStore):
    """
    HTTP object store: PUT/GET/DELETE {base_url}/{key} with a bearer token.
    """

    def __init__(self, base_url: str, *, api_token: str = "", timeout: int = 30, session: Optional[requests.Session] = None):
        if not base_url:
            raise RuntimeError("RemoteBlobStore requires a base URL")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        if api_token:
            self._session.headers["Authorization"] = f"Bearer {api_token}"

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{quote(_check_key(key), safe='/')}"

    def _request(self, method: str, key: str, **kwargs) -> requests.Response:
        url = self.url_for(key)
        try:
            resp = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            log.warning("blob request failed method=%s key=%s error=%s", method, key, e)
            raise BackendError(f"Storage request failed: {type(e).__name__}")
        if resp.status_code == 404:
            raise BlobNotFoundError(key)
        if resp.status_code >= 400:
            raise BackendError(f"Storage returned HTTP {resp.status_code}")
        return resp

    def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        self._request("PUT", key, data=data or b"", headers={"Content-Type": content_type or "application/octet-stream"})

    def download(self, key: str) -> tuple[bytes, str]:
        resp = self._request("GET", key)
        return resp.content, guess_content_type(key)

    def delete(self, key: str) -> None:
        self._request("DELETE", key)

    def exists(self, key: str) -> bool:
        try:
            self._request("HEAD", key)
            return True
        except BlobNotFoundError:
            return False
