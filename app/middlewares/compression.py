from __future__ import annotations

import gzip
from io import BytesIO

from flask import Flask, request

from config import Config


def init_compression(app: Flask, cfg: Config) -> None:
    """
    Gzip JSON action results (candidate lists get large).

    File downloads are streamed as-is; ENABLE_COMPRESSION=0 turns this off.
    """
    if not cfg.ENABLE_COMPRESSION:
        return

    @app.after_request
    def _compress(response):
        if "gzip" not in request.headers.get("Accept-Encoding", "").lower():
            return response
        if (
            response.status_code < 200
            or response.status_code >= 300
            or response.direct_passthrough
            or "Content-Encoding" in response.headers
            or "application/json" not in response.headers.get("Content-Type", "").lower()
        ):
            return response

        data = response.get_data()
        if len(data) < cfg.COMPRESSION_MIN_SIZE:
            return response

        buf = BytesIO()
        with gzip.GzipFile(fileobj=buf, mode="wb", compresslevel=cfg.COMPRESSION_LEVEL) as gz:
            gz.write(data)
        compressed = buf.getvalue()

        if len(compressed) < len(data):
            response.set_data(compressed)
            response.headers["Content-Encoding"] = "gzip"
            response.headers["Content-Length"] = len(compressed)
            response.headers["Vary"] = "Accept-Encoding"
        return response
