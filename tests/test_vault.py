"""Tests for the encrypted per-user credential vault."""

import json

import pytest

from btc_monitor.config import settings
from btc_monitor.schemas.credential import LNMarketsCredentials
from btc_monitor.services.encryption import DecryptionError, encrypt, identity_hash
from btc_monitor.services.vault import (
    COLLECTION_KEY_PREFIX,
    MIGRATED_CONFIG_NAME,
    CredentialNotFoundError,
    CredentialVault,
)

EMAIL = "alice@example.com"
OTHER = "bob@example.com"


def test_retrieve_without_anything_returns_empty_collection(vault):
    collection = vault.retrieve(EMAIL)
    assert collection is not None
    assert collection.configs == []
    assert collection.default_config_id is None


def test_add_then_retrieve_round_trips_credentials(vault, credentials):
    config = vault.add(EMAIL, credentials, name="Main", description="primary account")

    collection = vault.retrieve(EMAIL)

    assert len(collection.configs) == 1
    stored = collection.configs[0]
    assert stored.id == config.id
    assert stored.credentials == credentials
    assert stored.name == "Main"
    assert stored.description == "primary account"
    assert stored.is_active is True


def test_storage_never_holds_plaintext_secrets_or_identity(vault, store, credentials):
    vault.add(EMAIL, credentials, name="Main")

    assert len(store.data) == 1
    key, blob = next(iter(store.data.items()))
    assert key == COLLECTION_KEY_PREFIX + identity_hash(EMAIL)
    assert EMAIL not in key
    for secret in (credentials.key, credentials.secret, credentials.passphrase):
        assert secret not in blob
    assert EMAIL not in blob
    document = json.loads(blob)
    assert document["configs"][0]["name"] == "Main"
    assert document["configs"][0]["credentials"]["network"] == "mainnet"


def test_identity_is_normalized_for_lookup(vault, credentials):
    vault.add(EMAIL, credentials, name="Main")
    assert len(vault.retrieve("  Alice@Example.com ").configs) == 1


def test_first_add_becomes_default_later_adds_do_not(vault, credentials):
    first = vault.add(EMAIL, credentials, name="First")
    vault.add(EMAIL, credentials, name="Second")

    assert vault.retrieve(EMAIL).default_config_id == first.id


def test_remove_default_promotes_remaining_entry(vault, credentials):
    first = vault.add(EMAIL, credentials, name="First")
    second = vault.add(EMAIL, credentials, name="Second")

    collection = vault.remove(EMAIL, first.id)

    assert [c.id for c in collection.configs] == [second.id]
    assert collection.default_config_id == second.id
    assert vault.retrieve(EMAIL).default_config_id == second.id


def test_remove_last_entry_clears_default(vault, credentials):
    only = vault.add(EMAIL, credentials, name="Only")
    collection = vault.remove(EMAIL, only.id)
    assert collection.configs == []
    assert collection.default_config_id is None


def test_remove_unknown_raises(vault, credentials):
    vault.add(EMAIL, credentials, name="Only")
    with pytest.raises(CredentialNotFoundError):
        vault.remove(EMAIL, "cfg_missing")


def test_update_changes_only_given_fields(vault, credentials):
    config = vault.add(EMAIL, credentials, name="Main")

    updated = vault.update(EMAIL, config.id, secret="new-secret", is_active=False)

    fetched = vault.get(EMAIL, config.id)
    assert updated.credentials.secret == "new-secret"
    assert fetched.credentials.secret == "new-secret"
    assert fetched.credentials.key == credentials.key
    assert fetched.name == "Main"
    assert fetched.is_active is False


def test_update_unknown_raises(vault):
    with pytest.raises(CredentialNotFoundError):
        vault.update(EMAIL, "cfg_missing", name="x")


def test_get_missing_returns_none(vault, credentials):
    assert vault.get(EMAIL, "cfg_missing") is None
    vault.add(EMAIL, credentials, name="Main")
    assert vault.get(EMAIL, "cfg_missing") is None


def test_get_inactive_entry_is_returned(vault, credentials):
    config = vault.add(EMAIL, credentials, name="Paused", is_active=False)
    fetched = vault.get(EMAIL, config.id)
    assert fetched is not None
    assert fetched.is_active is False


def test_set_default(vault, credentials):
    vault.add(EMAIL, credentials, name="First")
    second = vault.add(EMAIL, credentials, name="Second")
    assert vault.set_default(EMAIL, second.id).default_config_id == second.id


def test_users_are_isolated(vault, credentials):
    vault.add(EMAIL, credentials, name="Alice")
    assert vault.retrieve(OTHER).configs == []


def test_blob_moved_to_another_user_cannot_be_decrypted(vault, store, credentials):
    vault.add(EMAIL, credentials, name="Alice")
    store.set(CredentialVault.collection_key(OTHER), store.get(CredentialVault.collection_key(EMAIL)))

    with pytest.raises(DecryptionError):
        vault.retrieve(OTHER)


def test_tampered_token_raises_instead_of_partial_data(vault, store, credentials):
    vault.add(EMAIL, credentials, name="Main")
    key = CredentialVault.collection_key(EMAIL)
    document = json.loads(store.get(key))
    document["configs"][0]["credentials"]["secret"] = "not-a-token"
    store.set(key, json.dumps(document))

    with pytest.raises(DecryptionError):
        vault.retrieve(EMAIL)


def test_corrupt_blob_raises_decryption_error(vault, store):
    store.set(CredentialVault.collection_key(EMAIL), "{not json")
    with pytest.raises(DecryptionError):
        vault.retrieve(EMAIL)


def test_save_returns_false_and_writes_nothing_without_app_secret(vault, store, monkeypatch):
    collection = vault.retrieve(EMAIL)
    monkeypatch.setattr(settings, "vault_secret", "")

    assert vault.save(EMAIL, collection) is False
    assert store.data == {}


def test_stale_write_is_rejected(vault, credentials):
    vault.add(EMAIL, credentials, name="Main")
    tab_one = vault.retrieve(EMAIL)
    tab_two = vault.retrieve(EMAIL)

    tab_one.configs[0].name = "Renamed in tab one"
    assert vault.save(EMAIL, tab_one) is True

    tab_two.configs[0].name = "Renamed in tab two"
    assert vault.save(EMAIL, tab_two) is False
    assert vault.retrieve(EMAIL).configs[0].name == "Renamed in tab one"


def test_save_bumps_version(vault, credentials):
    vault.add(EMAIL, credentials, name="Main")
    before = vault.retrieve(EMAIL).version
    vault.add(EMAIL, credentials, name="Second")
    assert vault.retrieve(EMAIL).version == before + 1


def _store_legacy(store, email, payload):
    store.set(CredentialVault.legacy_key(email), encrypt(json.dumps(payload), email))


def test_legacy_record_is_migrated_once(vault, store):
    _store_legacy(store, EMAIL, {
        "apiKey": "legacy-key",
        "apiSecret": "legacy-secret",
        "apiPassphrase": "legacy-pass",
        "network": "testnet",
        "isConfigured": True,
    })

    collection = vault.retrieve(EMAIL)

    assert len(collection.configs) == 1
    migrated = collection.configs[0]
    assert migrated.is_active is True
    assert migrated.name == MIGRATED_CONFIG_NAME
    assert collection.default_config_id == migrated.id
    assert migrated.credentials == LNMarketsCredentials(
        key="legacy-key", secret="legacy-secret", passphrase="legacy-pass", network="testnet"
    )
    assert store.get(CredentialVault.legacy_key(EMAIL)) is None

    again = vault.retrieve(EMAIL)
    assert [c.id for c in again.configs] == [migrated.id]


def test_legacy_record_ignored_when_collection_has_entries(vault, store, credentials):
    vault.add(EMAIL, credentials, name="Current")
    _store_legacy(store, EMAIL, {"key": "k", "secret": "s", "passphrase": "p"})

    collection = vault.retrieve(EMAIL)

    assert [c.name for c in collection.configs] == ["Current"]
    assert store.get(CredentialVault.legacy_key(EMAIL)) is not None


def test_clear_removes_everything(vault, store, credentials):
    vault.add(EMAIL, credentials, name="Main")
    _store_legacy(store, EMAIL, {"key": "k", "secret": "s", "passphrase": "p"})
    vault.clear(EMAIL)
    assert store.data == {}


def test_failed_migration_keeps_legacy_record(vault, store, monkeypatch):
    _store_legacy(store, EMAIL, {"key": "k", "secret": "s", "passphrase": "p", "network": "mainnet"})
    monkeypatch.setattr(vault, "save", lambda identity, collection: False)

    collection = vault.retrieve(EMAIL)

    assert [c.name for c in collection.configs] == [MIGRATED_CONFIG_NAME]
    assert store.get(CredentialVault.legacy_key(EMAIL)) is not None
    assert store.get(CredentialVault.collection_key(EMAIL)) is None
