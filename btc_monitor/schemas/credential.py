"""Pydantic schemas for LN Markets credential sets and their API."""

from datetime import datetime, timezone
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Network = Literal["mainnet", "testnet"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _strip_required(value: str) -> str:
    text = value.strip()
    if not text:
        raise ValueError("must not be empty")
    return text


class CamelModel(BaseModel):
    """Base for models exchanged with the browser (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LNMarketsCredentials(BaseModel):
    key: str
    secret: str
    passphrase: str
    network: Network = "mainnet"

    @field_validator("key", "secret", "passphrase")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        return _strip_required(value)


class CredentialSet(CamelModel):
    id: str
    name: str
    description: str | None = None
    credentials: LNMarketsCredentials
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class CredentialCollection(CamelModel):
    configs: list[CredentialSet] = Field(default_factory=list)
    default_config_id: str | None = None
    last_updated: datetime = Field(default_factory=_utcnow)
    version: int = 0

    def find(self, config_id: str) -> CredentialSet | None:
        for config in self.configs:
            if config.id == config_id:
                return config
        return None


# ---------------------------------------------------------------------------
# At-rest shapes: secret leaves hold Fernet tokens, metadata stays plaintext
# ---------------------------------------------------------------------------

class StoredCredentials(BaseModel):
    key: str
    secret: str
    passphrase: str
    network: Network = "mainnet"


class StoredCredentialSet(BaseModel):
    id: str
    name: str
    description: str | None = None
    credentials: StoredCredentials
    is_active: bool = True
    created_at: datetime
    updated_at: datetime


class StoredCollection(BaseModel):
    configs: list[StoredCredentialSet] = Field(default_factory=list)
    default_config_id: str | None = None
    last_updated: datetime
    version: int = 0


class LegacyCredentials(BaseModel):
    """Single-credential record written before multi-account support.

    Older clients used ``apiKey``/``apiSecret``/``apiPassphrase``.
    """

    key: str = Field(validation_alias=AliasChoices("key", "apiKey"))
    secret: str = Field(validation_alias=AliasChoices("secret", "apiSecret"))
    passphrase: str = Field(validation_alias=AliasChoices("passphrase", "apiPassphrase"))
    network: Network = "mainnet"
    is_configured: bool = Field(
        default=True, validation_alias=AliasChoices("is_configured", "isConfigured")
    )

    def to_credentials(self) -> LNMarketsCredentials:
        return LNMarketsCredentials(
            key=self.key, secret=self.secret, passphrase=self.passphrase, network=self.network
        )


# ---------------------------------------------------------------------------
# Management API
# ---------------------------------------------------------------------------

class CredentialSetCreate(CamelModel):
    name: str = Field(default="LN Markets", min_length=1, max_length=120)
    description: str | None = Field(default=None, max_length=500)
    key: str
    secret: str
    passphrase: str
    network: Network = "mainnet"
    is_active: bool = True

    @field_validator("name", "key", "secret", "passphrase")
    @classmethod
    def _trim(cls, value: str) -> str:
        return _strip_required(value)

    def to_credentials(self) -> LNMarketsCredentials:
        return LNMarketsCredentials(
            key=self.key, secret=self.secret, passphrase=self.passphrase, network=self.network
        )


class CredentialSetUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    description: str | None = Field(default=None, max_length=500)
    key: str | None = None  # Secrets are only re-encrypted when provided
    secret: str | None = None
    passphrase: str | None = None
    network: Network | None = None
    is_active: bool | None = None

    @field_validator("name", "key", "secret", "passphrase")
    @classmethod
    def _trim_optional(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _strip_required(value)


class CredentialSetRead(CamelModel):
    id: str
    name: str
    description: str | None = None
    network: Network
    key_masked: str
    is_active: bool
    is_default: bool
    created_at: datetime
    updated_at: datetime
    # secret and passphrase are NEVER exposed


class CredentialCollectionRead(CamelModel):
    configs: list[CredentialSetRead]
    default_config_id: str | None = None
    last_updated: datetime
    version: int
