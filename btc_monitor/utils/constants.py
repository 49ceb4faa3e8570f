"""LN Markets wire constants."""

HEADER_ACCESS_KEY = "LNM-ACCESS-KEY"
HEADER_SIGNATURE = "LNM-ACCESS-SIGNATURE"
HEADER_PASSPHRASE = "LNM-ACCESS-PASSPHRASE"
HEADER_TIMESTAMP = "LNM-ACCESS-TIMESTAMP"

ENDPOINT_TRADES = "/futures/trades"
ENDPOINT_DEPOSITS = "/user/deposits"
ENDPOINT_WITHDRAWALS = "/user/withdrawals"
ENDPOINT_USER = "/user"

VALID_NETWORKS = ["mainnet", "testnet"]

# Query options the browser may forward to each history endpoint
TRADE_QUERY_OPTIONS = {"type", "from", "to", "limit"}
TRANSFER_QUERY_OPTIONS = {"from", "to", "limit"}

# Numeric timestamps below this value (2100-01-01 in seconds) are epoch seconds
EPOCH_SECONDS_THRESHOLD = 4_102_444_800

# Canonical ledger id prefixes: <source>_<kind>_<upstream id>
LEDGER_SOURCE = "lnm"
TRADE_PREFIX = "trade"
DEPOSIT_PREFIX = "deposit"
WITHDRAWAL_PREFIX = "withdrawal"
