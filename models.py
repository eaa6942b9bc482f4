from __future__ import annotations

from sqlalchemy import Boolean, Column, Index, Integer, String, Text, UniqueConstraint

from db import Base


class StoredDocument(Base):
    """
    One JSON document of a collection (candidates, companies, users).

    The body is the full document as JSON text; `version` increases on every write
    and backs the optional expected-version check on merge-saves.
    """

    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("collection", "docId", name="uq_documents_collection_doc"),
        Index("ix_documents_collection_created", "collection", "createdAt"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    collection = Column(String(64), nullable=False, index=True)
    docId = Column(String(64), nullable=False)
    bodyJson = Column(Text, nullable=False, default="{}")
    version = Column(Integer, nullable=False, default=1)
    createdAt = Column(Text, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")


class AuthIdentity(Base):
    __tablename__ = "auth_identities"

    uid = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    passwordHash = Column(Text, nullable=False, default="")
    claimsJson = Column(Text, nullable=False, default="{}")
    disabled = Column(Boolean, nullable=False, default=False)
    createdAt = Column(Text, nullable=False, default="")
    lastLoginAt = Column(Text, nullable=False, default="")


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    sessionId = Column(String, primary_key=True)
    tokenHash = Column(String, nullable=False, unique=True, index=True)
    tokenPrefix = Column(String, nullable=False, default="")
    uid = Column(String, nullable=False, index=True)
    email = Column(String, nullable=False, default="")
    issuedAt = Column(Text, nullable=False, default="")
    expiresAt = Column(Text, nullable=False, default="")
    revokedAt = Column(Text, nullable=False, default="")
