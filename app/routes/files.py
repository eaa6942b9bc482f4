from __future__ import annotations

import logging

from flask import Blueprint, Response, current_app, jsonify

from services.blob_store import BlobNotFoundError, guess_content_type
from utils import err

files_bp = Blueprint("files", __name__)

log = logging.getLogger("storage")


def resolve_file_key(owner_id: str, file_key: str) -> str:
    """Keys are stored as `{ownerId}/...`; a bare key is looked up under the owner."""
    owner = str(owner_id or "").strip().strip("/")
    key = str(file_key or "").strip().lstrip("/")
    if key.startswith(owner + "/"):
        return key
    return f"{owner}/{key}"


@files_bp.get("/employees/<owner_id>/file/<path:file_key>")
def get_file(owner_id: str, file_key: str):
    blobs = current_app.extensions["backend"].blobs
    key = resolve_file_key(owner_id, file_key)
    try:
        data, _ctype = blobs.download(key)
    except BlobNotFoundError:
        return jsonify(err("NOT_FOUND", "File not found")), 404
    except Exception:
        log.exception("file download failed key=%s", key)
        return jsonify(err("BACKEND_ERROR", "Failed to read file")), 500

    resp = Response(data, mimetype=guess_content_type(key))
    resp.headers["Content-Length"] = str(len(data))
    return resp
