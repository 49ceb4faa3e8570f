"""Per-user vault of LN Markets credential sets.

A user's collection is stored as a single JSON blob under a key derived
from a hash of their email. Only the ``key``, ``secret`` and ``passphrase``
leaves are encrypted; names, flags and timestamps stay readable so the
collection can be versioned without decrypting it.

Writes replace the whole blob. The collection carries a ``version``
counter and ``save`` refuses to overwrite a newer stored version, so two
tabs editing the same account detect each other instead of silently
losing an update.
"""

import json
import logging
import uuid
from datetime import datetime, timezone

from pydantic import ValidationError

from btc_monitor.schemas.credential import (
    CredentialCollection,
    CredentialSet,
    LegacyCredentials,
    LNMarketsCredentials,
    StoredCollection,
    StoredCredentials,
    StoredCredentialSet,
)
from btc_monitor.services.encryption import (
    CredentialCipherError,
    DecryptionError,
    decrypt,
    encrypt,
    identity_hash,
)
from btc_monitor.services.storage import KeyValueStore
from btc_monitor.utils.logging import mask_email

logger = logging.getLogger(__name__)

COLLECTION_KEY_PREFIX = "lnm_configs:"
LEGACY_KEY_PREFIX = "lnm_credentials:"
MIGRATED_CONFIG_NAME = "LN Markets (migrated)"


class VaultError(Exception):
    pass


class CredentialNotFoundError(VaultError, LookupError):
    pass


class VaultWriteError(VaultError):
    """The collection could not be persisted (encryption, storage or version conflict)."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_config_id() -> str:
    return f"cfg_{uuid.uuid4().hex}"


class CredentialVault:
    """Encrypts and persists credential collections in a key-value store."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    # -- keys ---------------------------------------------------------------

    @staticmethod
    def collection_key(identity: str) -> str:
        return COLLECTION_KEY_PREFIX + identity_hash(identity)

    @staticmethod
    def legacy_key(identity: str) -> str:
        return LEGACY_KEY_PREFIX + identity_hash(identity)

    # -- encode / decode ----------------------------------------------------

    def _encode(self, identity: str, collection: CredentialCollection) -> str:
        stored = StoredCollection(
            configs=[
                StoredCredentialSet(
                    id=config.id,
                    name=config.name,
                    description=config.description,
                    credentials=StoredCredentials(
                        key=encrypt(config.credentials.key, identity),
                        secret=encrypt(config.credentials.secret, identity),
                        passphrase=encrypt(config.credentials.passphrase, identity),
                        network=config.credentials.network,
                    ),
                    is_active=config.is_active,
                    created_at=config.created_at,
                    updated_at=config.updated_at,
                )
                for config in collection.configs
            ],
            default_config_id=collection.default_config_id,
            last_updated=collection.last_updated,
            version=collection.version,
        )
        return stored.model_dump_json()

    def _decode(self, identity: str, raw: str) -> CredentialCollection:
        try:
            stored = StoredCollection.model_validate_json(raw)
        except ValidationError as e:
            raise DecryptionError("stored credential collection is corrupt") from e

        configs = [
            CredentialSet(
                id=entry.id,
                name=entry.name,
                description=entry.description,
                credentials=LNMarketsCredentials(
                    key=decrypt(entry.credentials.key, identity),
                    secret=decrypt(entry.credentials.secret, identity),
                    passphrase=decrypt(entry.credentials.passphrase, identity),
                    network=entry.credentials.network,
                ),
                is_active=entry.is_active,
                created_at=entry.created_at,
                updated_at=entry.updated_at,
            )
            for entry in stored.configs
        ]
        return CredentialCollection(
            configs=configs,
            default_config_id=stored.default_config_id,
            last_updated=stored.last_updated,
            version=stored.version,
        )

    def _stored_version(self, key: str) -> int | None:
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            return int(json.loads(raw).get("version", 0))
        except (ValueError, TypeError, AttributeError):
            return 0

    # -- public operations --------------------------------------------------

    def save(self, identity: str, collection: CredentialCollection) -> bool:
        """Encrypt and persist ``collection``. Returns False instead of raising."""
        masked = mask_email(identity)
        try:
            key = self.collection_key(identity)
            stored_version = self._stored_version(key)
            if stored_version is not None and stored_version > collection.version:
                logger.warning(
                    f"Refusing stale write for {masked}: stored version {stored_version} "
                    f"> local version {collection.version}"
                )
                return False

            candidate = collection.model_copy(
                update={"version": collection.version + 1, "last_updated": _utcnow()}
            )
            # Encode everything before touching the store so a failure writes nothing
            blob = self._encode(identity, candidate)
            self.store.set(key, blob)
        except (CredentialCipherError, RuntimeError) as e:
            logger.error(f"Could not encrypt credentials for {masked}: {e}")
            return False
        except Exception as e:
            logger.error(f"Could not persist credentials for {masked}: {e}", exc_info=True)
            return False

        collection.version = candidate.version
        collection.last_updated = candidate.last_updated
        logger.info(
            f"Saved {len(collection.configs)} LN Markets config(s) for {masked} "
            f"(version {collection.version})"
        )
        return True

    def retrieve(self, identity: str) -> CredentialCollection:
        """Return the decrypted collection, migrating a legacy record if needed.

        Never returns None: a user without credentials gets an empty collection.
        Raises ``DecryptionError`` rather than returning partially decrypted data.
        """
        raw = self.store.get(self.collection_key(identity))
        collection = self._decode(identity, raw) if raw else None
        if collection is not None and collection.configs:
            return collection

        legacy_raw = self.store.get(self.legacy_key(identity))
        if legacy_raw:
            return self._migrate_legacy(identity, legacy_raw, collection)

        return collection or CredentialCollection()

    def _migrate_legacy(
        self,
        identity: str,
        legacy_raw: str,
        existing: CredentialCollection | None,
    ) -> CredentialCollection:
        masked = mask_email(identity)
        logger.info(f"Migrating legacy LN Markets credentials for {masked}")
        try:
            legacy = LegacyCredentials.model_validate_json(decrypt(legacy_raw, identity))
        except ValidationError as e:
            raise DecryptionError("legacy credential record is corrupt") from e

        now = _utcnow()
        config = CredentialSet(
            id=generate_config_id(),
            name=MIGRATED_CONFIG_NAME,
            description="Imported from the single-account configuration",
            credentials=legacy.to_credentials(),
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        collection = existing or CredentialCollection()
        collection.configs = [config]
        collection.default_config_id = config.id

        if self.save(identity, collection):
            self.store.delete(self.legacy_key(identity))
            logger.info(f"Legacy credentials migrated for {masked} as {config.id}")
        else:
            logger.warning(f"Legacy migration for {masked} not persisted; legacy record kept")
        return collection

    def get(self, identity: str, config_id: str) -> CredentialSet | None:
        """Look up one credential set. Callers must still check ``is_active``."""
        return self.retrieve(identity).find(config_id)

    def add(
        self,
        identity: str,
        credentials: LNMarketsCredentials,
        name: str,
        description: str | None = None,
        is_active: bool = True,
    ) -> CredentialSet:
        collection = self.retrieve(identity)
        now = _utcnow()
        config = CredentialSet(
            id=generate_config_id(),
            name=name,
            description=description,
            credentials=credentials,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        collection.configs.append(config)
        if len(collection.configs) == 1 or collection.find(collection.default_config_id or "") is None:
            collection.default_config_id = config.id
        self._save_or_raise(identity, collection)
        return config

    def update(self, identity: str, config_id: str, **changes) -> CredentialSet:
        """Apply field changes to one entry.

        ``changes`` may hold ``name``, ``description``, ``is_active`` and any of
        ``key``, ``secret``, ``passphrase``, ``network``.
        """
        collection = self.retrieve(identity)
        config = collection.find(config_id)
        if config is None:
            raise CredentialNotFoundError(f"LN Markets configuration {config_id} not found")

        cred_fields = {
            k: changes.pop(k) for k in ("key", "secret", "passphrase", "network") if k in changes
        }
        if cred_fields:
            merged = config.credentials.model_dump() | {
                k: v for k, v in cred_fields.items() if v is not None
            }
            config.credentials = LNMarketsCredentials(**merged)
        for field_name in ("name", "description", "is_active"):
            if field_name in changes and changes[field_name] is not None:
                setattr(config, field_name, changes[field_name])
        config.updated_at = _utcnow()

        self._save_or_raise(identity, collection)
        return config

    def remove(self, identity: str, config_id: str) -> CredentialCollection:
        collection = self.retrieve(identity)
        if collection.find(config_id) is None:
            raise CredentialNotFoundError(f"LN Markets configuration {config_id} not found")

        collection.configs = [c for c in collection.configs if c.id != config_id]
        if collection.default_config_id == config_id:
            replacement = next((c for c in collection.configs if c.is_active), None)
            if replacement is None and collection.configs:
                replacement = collection.configs[0]
            collection.default_config_id = replacement.id if replacement else None

        self._save_or_raise(identity, collection)
        return collection

    def set_default(self, identity: str, config_id: str) -> CredentialCollection:
        collection = self.retrieve(identity)
        if collection.find(config_id) is None:
            raise CredentialNotFoundError(f"LN Markets configuration {config_id} not found")
        collection.default_config_id = config_id
        self._save_or_raise(identity, collection)
        return collection

    def clear(self, identity: str) -> None:
        self.store.delete(self.collection_key(identity))
        self.store.delete(self.legacy_key(identity))
        logger.info(f"Cleared LN Markets credentials for {mask_email(identity)}")

    def _save_or_raise(self, identity: str, collection: CredentialCollection) -> None:
        if not self.save(identity, collection):
            raise VaultWriteError("LN Markets configuration could not be saved")
