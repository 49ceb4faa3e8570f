"""LN Markets proxy endpoints.

The browser sends ``{userEmail, configId}``; credentials are resolved from
the vault here so secrets never leave the server, and the upstream call is
made server-side to avoid cross-origin restrictions. Older clients may still
post raw ``{credentials}``.
"""

import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import Field, ValidationError

from btc_monitor.api.deps import ClientFactory, get_client_factory, get_vault, load_active_credentials
from btc_monitor.schemas.credential import CamelModel, LegacyCredentials, LNMarketsCredentials
from btc_monitor.services.importer import IMPORT_KINDS, fetch_with_backoff, import_records
from btc_monitor.services.lnmarkets_client import ApiResult, LNMarketsClient
from btc_monitor.services.vault import CredentialVault
from btc_monitor.utils.constants import TRADE_QUERY_OPTIONS, TRANSFER_QUERY_OPTIONS, VALID_NETWORKS
from btc_monitor.utils.logging import mask_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ln-markets", tags=["ln-markets"])


class ProxyRequest(CamelModel):
    user_email: str | None = None
    config_id: str | None = None
    credentials: dict[str, Any] | None = None  # legacy mode
    options: dict[str, Any] | None = None


class ImportRequest(ProxyRequest):
    existing_ids: list[str] = Field(default_factory=list)


class ConnectionTestRequest(CamelModel):
    credentials: dict[str, Any] | None = None


def failure(status_code: int, result: ApiResult) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": result.error,
            "errorKind": result.error_kind.value if result.error_kind else None,
            "retryable": result.retryable,
        },
    )


def legacy_credentials(raw: dict[str, Any] | None, route: str) -> LNMarketsCredentials:
    if not raw:
        raise HTTPException(status_code=400, detail="LN Markets credentials are required")
    if raw.get("network") not in VALID_NETWORKS:
        logger.error(f"[{route}] Legacy credentials without a valid network")
        raise HTTPException(status_code=400, detail="LN Markets credentials are incomplete")
    try:
        legacy = LegacyCredentials.model_validate(raw)
        credentials = legacy.to_credentials()
    except ValidationError:
        logger.error(f"[{route}] Incomplete legacy credentials")
        raise HTTPException(status_code=400, detail="LN Markets credentials are incomplete")
    if not legacy.is_configured:
        raise HTTPException(status_code=400, detail="LN Markets credentials are not configured")
    return credentials


def resolve_credentials(body: ProxyRequest, vault: CredentialVault, route: str) -> LNMarketsCredentials:
    if body.credentials is not None:
        logger.info(f"[{route}] Legacy request with inline credentials")
        return legacy_credentials(body.credentials, route)
    return load_active_credentials(vault, body.user_email, body.config_id, route)


def query_params(kind: str, options: dict[str, Any] | None) -> dict[str, Any]:
    """Forwardable upstream query options; unknown keys are a 400."""
    params = dict(options or {})
    allowed = TRADE_QUERY_OPTIONS if kind == "trades" else TRANSFER_QUERY_OPTIONS
    unsupported = sorted(set(params) - allowed)
    if unsupported:
        raise HTTPException(
            status_code=400, detail=f"Unsupported {kind} option(s): {', '.join(unsupported)}"
        )
    return params


async def _call(client: LNMarketsClient, kind: str, params: dict[str, Any]) -> ApiResult:
    params = dict(params)
    if kind == "trades":
        return await client.get_trades(trade_type=params.pop("type", "closed"), **params)
    if kind == "deposits":
        return await client.get_deposits(**params)
    return await client.get_withdrawals(**params)


async def _proxy(kind: str, body: ProxyRequest, vault: CredentialVault, factory: ClientFactory):
    route = f"/api/ln-markets/{kind}"
    logger.info(f"[{route}] Request from {mask_email(body.user_email)} config={body.config_id}")
    credentials = resolve_credentials(body, vault, route)
    params = query_params(kind, body.options)

    client = factory(credentials)
    try:
        result = await _call(client, kind, params)
    finally:
        await client.close()

    if not result.success:
        logger.error(f"[{route}] Upstream error for {mask_email(body.user_email)}: {result.error}")
        return failure(400, result)

    data = result.data if result.data is not None else []
    has_data = isinstance(data, list) and len(data) > 0
    logger.info(f"[{route}] {len(data) if isinstance(data, list) else 0} record(s) returned")
    return {"success": True, "data": data, "hasData": has_data}


@router.post("/test")
async def test_credentials(
    body: ConnectionTestRequest,
    factory: ClientFactory = Depends(get_client_factory),
):
    """Validate raw credentials with an authenticated, side-effect-free call."""
    credentials = legacy_credentials(body.credentials, "/api/ln-markets/test")
    logger.info(f"[/api/ln-markets/test] Testing {credentials.network} credentials")
    client = factory(credentials)
    try:
        result = await client.test_connection()
    finally:
        await client.close()

    if not result.success:
        logger.warning(f"[/api/ln-markets/test] Test failed: {result.error}")
        return {
            "success": False,
            "error": result.error or "Could not connect to LN Markets",
            "errorKind": result.error_kind.value if result.error_kind else None,
        }
    return {"success": True, "message": "Valid credentials"}


@router.post("/trades")
async def trades(
    body: ProxyRequest,
    vault: CredentialVault = Depends(get_vault),
    factory: ClientFactory = Depends(get_client_factory),
):
    return await _proxy("trades", body, vault, factory)


@router.post("/deposits")
async def deposits(
    body: ProxyRequest,
    vault: CredentialVault = Depends(get_vault),
    factory: ClientFactory = Depends(get_client_factory),
):
    return await _proxy("deposits", body, vault, factory)


@router.post("/withdrawals")
async def withdrawals(
    body: ProxyRequest,
    vault: CredentialVault = Depends(get_vault),
    factory: ClientFactory = Depends(get_client_factory),
):
    return await _proxy("withdrawals", body, vault, factory)


@router.post("/import/{kind}")
async def import_history(
    kind: str,
    body: ImportRequest,
    vault: CredentialVault = Depends(get_vault),
    factory: ClientFactory = Depends(get_client_factory),
):
    """Fetch one kind of history (with backoff) and return normalized ledger entries."""
    if kind not in IMPORT_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown import kind '{kind}'")
    route = f"/api/ln-markets/import/{kind}"
    credentials = resolve_credentials(body, vault, route)
    params = query_params(kind, body.options)

    client = factory(credentials)
    try:
        result = await fetch_with_backoff(lambda: _call(client, kind, params))
    finally:
        await client.close()

    if not result.success:
        logger.error(f"[{route}] Upstream error after retries: {result.error}")
        return failure(400, result)

    raw_records = result.data if isinstance(result.data, list) else []
    imported = import_records(kind, raw_records, existing_ids=body.existing_ids)
    stats = asdict(imported.stats)
    return {
        "success": True,
        "kind": kind,
        "records": [r.model_dump(by_alias=True) for r in imported.records],
        "stats": {
            "total": stats["total"],
            "imported": stats["imported"],
            "duplicated": stats["duplicated"],
            "errors": stats["errors"],
            "fallbackDates": stats["fallback_dates"],
            "statusDistribution": stats["status_distribution"],
            "failures": [
                {"originalId": f["original_id"], "error": f["error"]} for f in stats["failures"]
            ],
        },
    }
