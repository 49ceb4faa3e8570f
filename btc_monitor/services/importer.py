"""Batch import of LN Markets history into ledger entries.

One malformed record never aborts a batch: it is counted as an error and
the rest are still converted. Records whose ledger id was already imported
(or appears twice in the same batch) are counted as duplicates.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

from btc_monitor.config import settings
from btc_monitor.services.lnmarkets_client import ApiResult
from btc_monitor.services.normalizer import FALLBACK_SOURCE, NORMALIZERS, RecordValidationError

logger = logging.getLogger(__name__)

IMPORT_KINDS = tuple(NORMALIZERS)


@dataclass
class ImportFailure:
    original_id: str | None
    error: str


@dataclass
class ImportStats:
    total: int = 0
    imported: int = 0
    duplicated: int = 0
    errors: int = 0
    fallback_dates: int = 0
    status_distribution: dict[str, int] = field(default_factory=dict)
    failures: list[ImportFailure] = field(default_factory=list)


@dataclass
class ImportResult:
    kind: str
    records: list = field(default_factory=list)
    stats: ImportStats = field(default_factory=ImportStats)


def import_records(kind: str, raw_records: Iterable[Any], existing_ids: Iterable[str] = ()) -> ImportResult:
    """Normalize a batch of raw records of one kind (trades, deposits or withdrawals)."""
    try:
        normalize = NORMALIZERS[kind]
    except KeyError:
        raise ValueError(f"Unknown import kind '{kind}'; expected one of {', '.join(IMPORT_KINDS)}")

    seen = set(existing_ids)
    result = ImportResult(kind=kind)
    stats = result.stats
    statuses: Counter[str] = Counter()

    for raw in raw_records:
        stats.total += 1
        if isinstance(raw, dict) and raw.get("status"):
            statuses[str(raw["status"])] += 1
        try:
            record = normalize(raw)
        except RecordValidationError as e:
            stats.errors += 1
            original_id = raw.get("id") if isinstance(raw, dict) else None
            stats.failures.append(
                ImportFailure(original_id=str(original_id) if original_id is not None else None, error=str(e))
            )
            continue

        if record.id in seen:
            stats.duplicated += 1
            continue
        seen.add(record.id)
        if record.date_source == FALLBACK_SOURCE:
            stats.fallback_dates += 1
        result.records.append(record)
        stats.imported += 1

    stats.status_distribution = dict(statuses)
    logger.info(
        f"Import {kind}: total={stats.total} imported={stats.imported} "
        f"duplicated={stats.duplicated} errors={stats.errors} fallback_dates={stats.fallback_dates}"
    )
    return result


async def fetch_with_backoff(
    call: Callable[[], Awaitable[ApiResult]],
    max_retries: int | None = None,
    base_delay: float | None = None,
) -> ApiResult:
    """Await ``call`` and retry retryable failures with exponential backoff.

    Only rate limits, upstream outages, timeouts and network errors are
    retried; credential and permission errors return immediately.
    """
    retries = settings.lnm_max_retries if max_retries is None else max_retries
    delay = settings.lnm_backoff_base_seconds if base_delay is None else base_delay

    result = await call()
    attempt = 0
    while result.retryable and attempt < retries:
        wait = delay * (2 ** attempt)
        attempt += 1
        logger.info(f"LN Markets {result.error_kind.value}; retry {attempt}/{retries} in {wait:.1f}s")
        await asyncio.sleep(wait)
        result = await call()
    return result
