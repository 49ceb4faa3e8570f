"""Credential blob model: one serialized, encrypted collection per storage key."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class CredentialBlob(SQLModel, table=True):
    __tablename__ = "credential_blob"

    key: str = Field(primary_key=True, max_length=200)  # e.g. lnm_configs:<sha256 of identity>
    value: str  # JSON document; secret leaves are Fernet tokens
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
