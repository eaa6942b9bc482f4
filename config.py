from __future__ import annotations

import os


def _env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name, default) or default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, "") or "").strip() or default)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = _env_str(name).lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: list[str] | None = None) -> list[str]:
    raw = _env_str(name)
    if not raw:
        return list(default or [])
    return [x.strip() for x in raw.split(",") if x.strip()]


class Config:
    def __init__(self):
        self.ENV = _env_str("APP_ENV", "development").lower()
        self.IS_PRODUCTION = self.ENV in {"prod", "production"}
        self.APP_VERSION = _env_str("APP_VERSION", "0.1.0")
        self.LOG_LEVEL = _env_str("LOG_LEVEL", "INFO").upper()

        self.HOST = _env_str("HOST", "0.0.0.0")
        self.PORT = _env_int("PORT", 5002)
        self.ALLOWED_ORIGINS = _env_list("ALLOWED_ORIGINS", ["http://localhost:3000"])

        self.DATABASE_URL = _env_str("DATABASE_URL", "sqlite:///./onboarding.db")

        # local | remote
        self.FILE_STORAGE_MODE = _env_str("FILE_STORAGE_MODE", "local").lower()
        self.UPLOAD_DIR = _env_str("UPLOAD_DIR", "./uploads")
        self.BLOB_BASE_URL = _env_str("BLOB_BASE_URL").rstrip("/")
        self.BLOB_API_TOKEN = _env_str("BLOB_API_TOKEN")
        self.BLOB_TIMEOUT = max(1, _env_int("BLOB_TIMEOUT", 30))
        self.MAX_UPLOAD_MB = max(1, _env_int("MAX_UPLOAD_MB", 15))

        self.FORM_GENERATOR_URL = _env_str("FORM_GENERATOR_URL")
        self.FORM_GENERATOR_API_KEY = _env_str("FORM_GENERATOR_API_KEY")
        self.FORM_GENERATOR_TIMEOUT = max(5, _env_int("FORM_GENERATOR_TIMEOUT", 60))

        self.SESSION_TTL_MINUTES = max(5, _env_int("SESSION_TTL_MINUTES", 480))
        self.SUPERUSER_EMAIL = _env_str("SUPERUSER_EMAIL").lower()
        self.SUPERUSER_PASSWORD = _env_str("SUPERUSER_PASSWORD")

        self.RATE_LIMIT_GLOBAL = _env_int("RATE_LIMIT_GLOBAL", 600)
        self.RATE_LIMIT_DEFAULT = _env_int("RATE_LIMIT_DEFAULT", 120)
        self.RATE_LIMIT_LOGIN = _env_int("RATE_LIMIT_LOGIN", 10)
        self.RATE_LIMIT_APPLY = _env_int("RATE_LIMIT_APPLY", 10)

        self.ENABLE_COMPRESSION = _env_bool("ENABLE_COMPRESSION", True)
        self.COMPRESSION_MIN_SIZE = max(0, _env_int("COMPRESSION_MIN_SIZE", 500))
        self.COMPRESSION_LEVEL = max(1, min(9, _env_int("COMPRESSION_LEVEL", 6)))

    def validate(self) -> None:
        if self.FILE_STORAGE_MODE not in {"local", "remote"}:
            raise RuntimeError(f"Unsupported FILE_STORAGE_MODE: {self.FILE_STORAGE_MODE}")
        if self.FILE_STORAGE_MODE == "remote" and not self.BLOB_BASE_URL:
            raise RuntimeError("FILE_STORAGE_MODE=remote requires BLOB_BASE_URL")
        if self.IS_PRODUCTION and self.DATABASE_URL.startswith("sqlite"):
            raise RuntimeError("SQLite is not supported in production; set DATABASE_URL")
        if bool(self.SUPERUSER_EMAIL) != bool(self.SUPERUSER_PASSWORD):
            raise RuntimeError("SUPERUSER_EMAIL and SUPERUSER_PASSWORD must be set together")
