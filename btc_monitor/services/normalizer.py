"""Convert raw LN Markets trades, deposits and withdrawals into ledger entries.

Missing identifiers or amounts raise ``RecordValidationError``; callers
importing a batch should catch it per record. Missing or unparseable
timestamps never raise: the entry is dated today (UTC) and tagged with
``date_source="fallback"``.
"""

import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import ValidationError

from btc_monitor.schemas.records import (
    InvestmentRecord,
    LNMarketsDeposit,
    LNMarketsTrade,
    LNMarketsWithdrawal,
    ProfitRecord,
    RawRecord,
    WithdrawalRecord,
)
from btc_monitor.utils.constants import (
    DEPOSIT_PREFIX,
    EPOCH_SECONDS_THRESHOLD,
    LEDGER_SOURCE,
    TRADE_PREFIX,
    WITHDRAWAL_PREFIX,
)

logger = logging.getLogger(__name__)

FALLBACK_SOURCE = "fallback"

_NUMERIC_RE = re.compile(r"^[+-]?\d+(\.\d+)?$")

_LIGHTNING_TYPES = {"ln", "lightning", "bolt11", "lnurl"}
_ONCHAIN_TYPES = {"onchain", "on-chain", "on_chain", "bitcoin", "btc", "chain"}


class RecordValidationError(ValueError):
    """A raw record lacks a field required to build a ledger entry."""


Accessor = tuple[str, Callable[[RawRecord], Any]]


def _field(name: str) -> Accessor:
    return name, lambda record: getattr(record, name, None)


# A closed trade is economically dated by its close; otherwise the most precise stamp wins.
TRADE_CLOSED_PRIORITY: list[Accessor] = [
    _field("closed_at"),
    _field("closed_ts"),
    _field("ts"),
    _field("updated_at"),
    _field("created_at"),
    _field("creation_ts"),
]
TRADE_OPEN_PRIORITY: list[Accessor] = [
    _field("ts"),
    _field("closed_at"),
    _field("closed_ts"),
    _field("updated_at"),
    _field("created_at"),
    _field("creation_ts"),
]
# ts is the newer high-precision field; updated_at is the weakest signal.
TRANSFER_PRIORITY: list[Accessor] = [
    _field("ts"),
    _field("created_at"),
    _field("creation_ts"),
    _field("updated_at"),
]


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def parse_timestamp(value: Any) -> datetime | None:
    """Parse epoch seconds, epoch milliseconds or an ISO string into an aware UTC datetime.

    Numbers (or numeric strings) below ``EPOCH_SECONDS_THRESHOLD`` are seconds.
    Returns None when the value cannot be interpreted.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if _NUMERIC_RE.match(text):
            value = float(text)
        else:
            if text.endswith(("Z", "z")):
                text = text[:-1] + "+00:00"
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError:
                return None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)

    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value <= 0:
            return None
        millis = value * 1000 if value < EPOCH_SECONDS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    return None


def select_timestamp(record: RawRecord, priority: list[Accessor]) -> tuple[str | None, Any]:
    """Return ``(field_name, value)`` of the first present field in ``priority``."""
    for name, accessor in priority:
        value = accessor(record)
        if _is_present(value):
            return name, value
    return None, None


def resolve_date(record: RawRecord, priority: list[Accessor], label: str) -> tuple[str, str]:
    """Return ``(YYYY-MM-DD, source)`` for a record, falling back to today in UTC."""
    source, value = select_timestamp(record, priority)
    parsed = parse_timestamp(value) if source else None
    if parsed is None:
        if source:
            logger.warning(f"{label}: unparseable {source}={value!r}; dating it today")
        else:
            logger.warning(f"{label}: no timestamp fields present; dating it today")
        return datetime.now(timezone.utc).date().isoformat(), FALLBACK_SOURCE
    return parsed.date().isoformat(), source


def ledger_id(prefix: str, original_id: str) -> str:
    return f"{LEDGER_SOURCE}_{prefix}_{original_id}"


def _coerce(model: type[RawRecord], raw: Any, kind: str) -> RawRecord:
    if isinstance(raw, model):
        return raw
    if not isinstance(raw, dict):
        raise RecordValidationError(f"{kind} record must be an object, got {type(raw).__name__}")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise RecordValidationError(f"{kind} record has malformed fields: {e.error_count()} error(s)") from e


def _require_id(record: RawRecord, kind: str) -> str:
    if not _is_present(record.id):
        raise RecordValidationError(f"{kind} record is missing its id")
    return str(record.id).strip()


def _to_number(value: Any, field_name: str, kind: str, original_id: str) -> int | float:
    if not _is_present(value):
        raise RecordValidationError(f"{kind} {original_id} is missing '{field_name}'")
    if isinstance(value, str):
        if not _NUMERIC_RE.match(value.strip()):
            raise RecordValidationError(f"{kind} {original_id} has non-numeric '{field_name}': {value!r}")
        value = float(value)
    if isinstance(value, bool) or not math.isfinite(value):
        raise RecordValidationError(f"{kind} {original_id} has invalid '{field_name}'")
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _positive_amount(value: Any, kind: str, original_id: str) -> int | float:
    amount = _to_number(value, "amount", kind, original_id)
    if amount <= 0:
        raise RecordValidationError(f"{kind} {original_id} has non-positive amount {amount}")
    return amount


def normalize_trade(raw: Any) -> ProfitRecord:
    trade = _coerce(LNMarketsTrade, raw, "trade")
    original_id = _require_id(trade, "trade")
    pl = _to_number(trade.pl, "pl", "trade", original_id)
    if pl == 0:
        raise RecordValidationError(f"trade {original_id} has zero profit/loss")

    has_close_stamp = _is_present(trade.closed_at) or _is_present(trade.closed_ts)
    priority = TRADE_CLOSED_PRIORITY if trade.closed and has_close_stamp else TRADE_OPEN_PRIORITY
    date, source = resolve_date(trade, priority, f"trade {original_id}")

    return ProfitRecord(
        id=ledger_id(TRADE_PREFIX, original_id),
        original_id=original_id,
        date=date,
        amount=abs(pl),
        is_profit=pl > 0,
        date_source=source,
    )


def normalize_deposit(raw: Any) -> InvestmentRecord:
    deposit = _coerce(LNMarketsDeposit, raw, "deposit")
    original_id = _require_id(deposit, "deposit")
    amount = _positive_amount(deposit.amount, "deposit", original_id)
    date, source = resolve_date(deposit, TRANSFER_PRIORITY, f"deposit {original_id}")

    return InvestmentRecord(
        id=ledger_id(DEPOSIT_PREFIX, original_id),
        original_id=original_id,
        date=date,
        amount=amount,
        date_source=source,
    )


def classify_withdrawal(withdrawal: LNMarketsWithdrawal) -> str:
    """``lightning`` or ``onchain``; ambiguous records default to ``onchain``."""
    for value in (withdrawal.type, withdrawal.withdrawal_type):
        kind = (value or "").strip().lower()
        if kind in _LIGHTNING_TYPES:
            return "lightning"
        if kind in _ONCHAIN_TYPES:
            return "onchain"
    return "onchain"


def normalize_withdrawal(raw: Any) -> WithdrawalRecord:
    withdrawal = _coerce(LNMarketsWithdrawal, raw, "withdrawal")
    original_id = _require_id(withdrawal, "withdrawal")
    amount = _positive_amount(withdrawal.amount, "withdrawal", original_id)
    date, source = resolve_date(withdrawal, TRANSFER_PRIORITY, f"withdrawal {original_id}")

    fee_value = withdrawal.fee if _is_present(withdrawal.fee) else withdrawal.fees
    fee = abs(_to_number(fee_value, "fee", "withdrawal", original_id)) if _is_present(fee_value) else 0

    return WithdrawalRecord(
        id=ledger_id(WITHDRAWAL_PREFIX, original_id),
        original_id=original_id,
        date=date,
        amount=amount,
        fee=fee,
        type=classify_withdrawal(withdrawal),
        txid=withdrawal.txid or None,
        date_source=source,
    )


NORMALIZERS: dict[str, Callable[[Any], Any]] = {
    "trades": normalize_trade,
    "deposits": normalize_deposit,
    "withdrawals": normalize_withdrawal,
}
