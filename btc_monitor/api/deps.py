"""Shared API dependencies."""

import logging
from typing import Callable

from fastapi import Depends, Header, HTTPException, status

from btc_monitor.database import engine
from btc_monitor.schemas.credential import LNMarketsCredentials
from btc_monitor.services.encryption import CredentialCipherError
from btc_monitor.services.lnmarkets_client import LNMarketsClient, create_client
from btc_monitor.services.storage import KeyValueStore, SQLStore
from btc_monitor.services.vault import CredentialVault
from btc_monitor.utils.logging import mask_email

logger = logging.getLogger(__name__)

ClientFactory = Callable[[LNMarketsCredentials], LNMarketsClient]


def get_store() -> KeyValueStore:
    return SQLStore(engine)


def get_vault(store: KeyValueStore = Depends(get_store)) -> CredentialVault:
    return CredentialVault(store)


def get_client_factory() -> ClientFactory:
    return create_client


def get_user_email(x_user_email: str | None = Header(default=None)) -> str:
    """Identity of the signed-in user, forwarded by the auth layer."""
    email = (x_user_email or "").strip()
    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Email header",
        )
    return email


def load_active_credentials(
    vault: CredentialVault,
    user_email: str | None,
    config_id: str | None,
    route: str,
) -> LNMarketsCredentials:
    """Resolve a stored credential set, enforcing presence and ``is_active``."""
    if not user_email or not config_id:
        logger.error(f"[{route}] userEmail or configId missing")
        raise HTTPException(status_code=400, detail="userEmail and configId are required")

    masked = mask_email(user_email)
    try:
        config = vault.get(user_email, config_id)
    except (CredentialCipherError, RuntimeError) as e:
        logger.error(f"[{route}] Could not read credentials for {masked}: {e}")
        raise HTTPException(status_code=500, detail="Stored LN Markets credentials could not be read")

    if config is None:
        logger.warning(f"[{route}] Configuration {config_id} not found for {masked}")
        raise HTTPException(status_code=404, detail="LN Markets configuration not found")
    if not config.is_active:
        logger.warning(f"[{route}] Configuration {config_id} is inactive for {masked}")
        raise HTTPException(status_code=400, detail=f"LN Markets configuration '{config.name}' is inactive")

    logger.info(f"[{route}] Using configuration {config_id} ({config.credentials.network}) for {masked}")
    return config.credentials
