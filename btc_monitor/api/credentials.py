"""CRUD API for a user's LN Markets credential sets."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from btc_monitor.api.deps import (
    ClientFactory,
    get_client_factory,
    get_user_email,
    get_vault,
    load_active_credentials,
)
from btc_monitor.schemas.credential import (
    CredentialCollection,
    CredentialCollectionRead,
    CredentialSet,
    CredentialSetCreate,
    CredentialSetRead,
    CredentialSetUpdate,
)
from btc_monitor.services.encryption import CredentialCipherError
from btc_monitor.services.vault import CredentialNotFoundError, CredentialVault, VaultWriteError
from btc_monitor.utils.logging import mask_email, mask_secret

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ln-markets/configs", tags=["ln-markets-configs"])


def _to_read(config: CredentialSet, default_id: str | None) -> CredentialSetRead:
    return CredentialSetRead(
        id=config.id,
        name=config.name,
        description=config.description,
        network=config.credentials.network,
        key_masked=mask_secret(config.credentials.key),
        is_active=config.is_active,
        is_default=config.id == default_id,
        created_at=config.created_at,
        updated_at=config.updated_at,
    )


def _collection_read(collection: CredentialCollection) -> CredentialCollectionRead:
    return CredentialCollectionRead(
        configs=[_to_read(c, collection.default_config_id) for c in collection.configs],
        default_config_id=collection.default_config_id,
        last_updated=collection.last_updated,
        version=collection.version,
    )


def _retrieve(vault: CredentialVault, email: str) -> CredentialCollection:
    try:
        return vault.retrieve(email)
    except (CredentialCipherError, RuntimeError) as e:
        logger.error(f"Could not read credentials for {mask_email(email)}: {e}")
        raise HTTPException(status_code=500, detail="Stored LN Markets credentials could not be read")


@router.get("", response_model=CredentialCollectionRead)
def list_configs(
    email: str = Depends(get_user_email),
    vault: CredentialVault = Depends(get_vault),
):
    return _collection_read(_retrieve(vault, email))


@router.post("", response_model=CredentialSetRead, status_code=201)
def create_config(
    data: CredentialSetCreate,
    email: str = Depends(get_user_email),
    vault: CredentialVault = Depends(get_vault),
):
    _retrieve(vault, email)
    try:
        config = vault.add(
            email,
            data.to_credentials(),
            name=data.name,
            description=data.description,
            is_active=data.is_active,
        )
    except VaultWriteError as e:
        raise HTTPException(status_code=409, detail=str(e))
    collection = vault.retrieve(email)
    logger.info(f"Created LN Markets configuration {config.id} for {mask_email(email)}")
    return _to_read(config, collection.default_config_id)


@router.put("/{config_id}", response_model=CredentialSetRead)
def update_config(
    config_id: str,
    data: CredentialSetUpdate,
    email: str = Depends(get_user_email),
    vault: CredentialVault = Depends(get_vault),
):
    _retrieve(vault, email)
    try:
        config = vault.update(email, config_id, **data.model_dump(exclude_unset=True))
    except CredentialNotFoundError:
        raise HTTPException(status_code=404, detail="LN Markets configuration not found")
    except VaultWriteError as e:
        raise HTTPException(status_code=409, detail=str(e))
    collection = vault.retrieve(email)
    return _to_read(config, collection.default_config_id)


@router.delete("/{config_id}", status_code=204)
def delete_config(
    config_id: str,
    email: str = Depends(get_user_email),
    vault: CredentialVault = Depends(get_vault),
):
    _retrieve(vault, email)
    try:
        vault.remove(email, config_id)
    except CredentialNotFoundError:
        raise HTTPException(status_code=404, detail="LN Markets configuration not found")
    except VaultWriteError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info(f"Removed LN Markets configuration {config_id} for {mask_email(email)}")


@router.post("/{config_id}/default", response_model=CredentialCollectionRead)
def set_default_config(
    config_id: str,
    email: str = Depends(get_user_email),
    vault: CredentialVault = Depends(get_vault),
):
    _retrieve(vault, email)
    try:
        collection = vault.set_default(email, config_id)
    except CredentialNotFoundError:
        raise HTTPException(status_code=404, detail="LN Markets configuration not found")
    except VaultWriteError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _collection_read(collection)


@router.post("/{config_id}/test")
async def test_config(
    config_id: str,
    email: str = Depends(get_user_email),
    vault: CredentialVault = Depends(get_vault),
    factory: ClientFactory = Depends(get_client_factory),
):
    """Test connectivity to LN Markets using a stored configuration."""
    credentials = load_active_credentials(vault, email, config_id, "/api/ln-markets/configs/test")
    client = factory(credentials)
    try:
        result = await client.test_connection()
    finally:
        await client.close()

    if not result.success:
        return {
            "success": False,
            "error": result.error,
            "errorKind": result.error_kind.value if result.error_kind else None,
        }
    return {"success": True, "message": "Valid credentials"}
