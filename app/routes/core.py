from __future__ import annotations

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from cache_layer import cache_stats
from utils import iso_utc_now, ok

core_bp = Blueprint("core", __name__)


def _ping_db() -> bool:
    engine = current_app.extensions["backend"].engine
    if engine is None:
        return True
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False


@core_bp.get("/")
def index():
    return jsonify(
        ok(
            {
                "status": "ok",
                "message": "Onboarding backend is running. Use /health for a quick check and POST /api for actions.",
                "endpoints": {"health": "/health", "version": "/version", "api": "/api"},
            }
        )
    )


@core_bp.get("/health")
def health():
    cfg = current_app.config["CFG"]
    db_ok = _ping_db()
    body = {
        "status": "ok" if db_ok else "degraded",
        "time": iso_utc_now(),
        "version": cfg.APP_VERSION,
        "checks": {"db": "ok" if db_ok else "error", "storage": cfg.FILE_STORAGE_MODE},
        "cache": cache_stats(),
    }
    return jsonify(ok(body)), 200 if db_ok else 503


@core_bp.get("/version")
def version():
    cfg = current_app.config["CFG"]
    return jsonify({"version": cfg.APP_VERSION, "env": cfg.ENV, "time": iso_utc_now()})
