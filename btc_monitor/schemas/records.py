"""Raw LN Markets records and the canonical ledger entries built from them.

Upstream payloads vary between API versions: timestamps may arrive as
``created_at``, ``updated_at``, ``closed_at``, ``ts`` (or the older
``creation_ts``/``closed_ts``), as epoch seconds, epoch milliseconds or ISO
strings. Raw models keep every one of those optional; only the normalizer
turns them into a single ``date``.
"""

from typing import Literal, Union

from pydantic import BaseModel, ConfigDict

from btc_monitor.schemas.credential import CamelModel

Timestamp = Union[int, float, str, None]
Number = Union[int, float, str, None]


class RawRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Union[str, int, None] = None
    created_at: Timestamp = None
    updated_at: Timestamp = None
    creation_ts: Timestamp = None
    ts: Timestamp = None


class LNMarketsTrade(RawRecord):
    pl: Number = None
    closed: bool | None = None
    closed_at: Timestamp = None
    closed_ts: Timestamp = None
    side: str | None = None
    quantity: Number = None
    opening_fee: Number = None
    closing_fee: Number = None
    sum_carry_fees: Number = None


class LNMarketsDeposit(RawRecord):
    amount: Number = None
    status: str | None = None
    type: str | None = None
    txid: str | None = None


class LNMarketsWithdrawal(RawRecord):
    amount: Number = None
    status: str | None = None
    type: str | None = None
    withdrawal_type: str | None = None
    fee: Number = None
    fees: Number = None
    txid: str | None = None


# ---------------------------------------------------------------------------
# Canonical ledger entries
# ---------------------------------------------------------------------------

class LedgerRecord(CamelModel):
    id: str
    original_id: str
    date: str  # UTC calendar day, YYYY-MM-DD
    amount: Union[int, float]
    unit: Literal["SATS"] = "SATS"
    date_source: str  # upstream field the date came from, or "fallback"


class ProfitRecord(LedgerRecord):
    is_profit: bool


class InvestmentRecord(LedgerRecord):
    pass


class WithdrawalRecord(LedgerRecord):
    fee: Union[int, float] = 0
    type: Literal["lightning", "onchain"] = "onchain"
    txid: str | None = None
