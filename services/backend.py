from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.engine import Engine

from config import Config
from db import init_schema, make_engine, make_session_factory
from services.blob_store import BlobStore, LocalBlobStore, RemoteBlobStore
from services.form_generator import FormGenerator
from services.identity_provider import IdentityProvider, LocalIdentityProvider
from services.record_store import RecordStore, SqlRecordStore


@dataclass
class Backend:
    """Client handles owned by the process entry point and passed to every action."""

    records: RecordStore
    blobs: BlobStore
    identities: IdentityProvider
    forms: FormGenerator
    engine: Engine | None = None

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()


def build_backend(cfg: Config) -> Backend:
    engine = make_engine(cfg.DATABASE_URL)
    init_schema(engine)
    session_factory = make_session_factory(engine)

    if cfg.FILE_STORAGE_MODE == "remote":
        blobs: BlobStore = RemoteBlobStore(cfg.BLOB_BASE_URL, api_token=cfg.BLOB_API_TOKEN, timeout=cfg.BLOB_TIMEOUT)
    else:
        blobs = LocalBlobStore(cfg.UPLOAD_DIR)

    return Backend(
        records=SqlRecordStore(session_factory),
        blobs=blobs,
        identities=LocalIdentityProvider(session_factory),
        forms=FormGenerator(cfg.FORM_GENERATOR_URL, api_key=cfg.FORM_GENERATOR_API_KEY, timeout=cfg.FORM_GENERATOR_TIMEOUT),
        engine=engine,
    )
