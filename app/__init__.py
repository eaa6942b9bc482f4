from __future__ import annotations

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, g
from flask_cors import CORS

from actions.admin_users import seed_superuser
from app.middlewares.compression import init_compression
from app.routes.api import api_bp
from app.routes.core import core_bp
from app.routes.files import files_bp
from app.routes.uploads import uploads_bp
from config import Config
from services.backend import Backend, build_backend
from utils import SimpleRateLimiter, now_monotonic


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level or "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def create_app(cfg: Optional[Config] = None, backend: Optional[Backend] = None) -> Flask:
    load_dotenv()
    cfg = cfg or Config()
    cfg.validate()
    _configure_logging(cfg.LOG_LEVEL)

    backend = backend or build_backend(cfg)
    if cfg.FILE_STORAGE_MODE == "local":
        os.makedirs(cfg.UPLOAD_DIR, exist_ok=True)

    app = Flask(__name__)
    app.config["CFG"] = cfg
    app.config["JSON_SORT_KEYS"] = False
    # Multipart bodies above this are rejected by werkzeug with 413.
    app.config["MAX_CONTENT_LENGTH"] = cfg.MAX_UPLOAD_MB * 1024 * 1024 * 4
    app.extensions["backend"] = backend
    app.extensions["rate_limiter"] = SimpleRateLimiter()

    CORS(
        app,
        origins=cfg.ALLOWED_ORIGINS,
        supports_credentials=False,
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        max_age=3600,
    )

    @app.before_request
    def _before():
        g.request_id = os.urandom(8).hex()
        g.start_ts = now_monotonic()

    @app.after_request
    def _after(resp):
        resp.headers["X-Request-ID"] = str(getattr(g, "request_id", "") or "")
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        resp.headers.setdefault("Cache-Control", "no-store")
        return resp

    init_compression(app, cfg)

    app.register_blueprint(core_bp)
    app.register_blueprint(api_bp)
    app.register_blueprint(uploads_bp)
    app.register_blueprint(files_bp)

    seed_superuser(cfg, backend.identities)
    return app
