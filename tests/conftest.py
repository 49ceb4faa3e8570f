"""Shared fixtures. Environment is set before any btc_monitor module loads settings."""

import os

os.environ.setdefault("BTCM_VAULT_SECRET", "test-vault-secret")
os.environ.setdefault("BTCM_DATABASE_URL", "sqlite://")

import pytest

from btc_monitor.schemas.credential import LNMarketsCredentials
from btc_monitor.services.storage import MemoryStore
from btc_monitor.services.vault import CredentialVault

EMAIL = "alice@example.com"


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def vault(store) -> CredentialVault:
    return CredentialVault(store)


@pytest.fixture
def credentials() -> LNMarketsCredentials:
    return LNMarketsCredentials(
        key="lnm-key-123456",
        secret="s3cr3t-value",
        passphrase="pass-phrase",
        network="mainnet",
    )
