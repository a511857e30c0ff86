SCHEMA_VERSION = 1

META_KEY = "state"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
  version INTEGER PRIMARY KEY,
  applied_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS trade_entries (
  id TEXT PRIMARY KEY,
  timestamp INTEGER NOT NULL,
  symbol TEXT NOT NULL,
  symbol_key TEXT NOT NULL,
  category TEXT NOT NULL,
  transaction_type TEXT NOT NULL,
  side TEXT NOT NULL,
  size TEXT NOT NULL,
  price TEXT NOT NULL,
  fee TEXT NOT NULL,
  currency TEXT NOT NULL,
  fee_currency TEXT NOT NULL,
  order_id TEXT NOT NULL,
  trade_id TEXT NOT NULL,
  raw_json TEXT NOT NULL,
  ingested_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_trade_entries_timestamp
ON trade_entries(timestamp, id);
CREATE INDEX IF NOT EXISTS idx_trade_entries_symbol_timestamp
ON trade_entries(symbol_key, timestamp, id);
CREATE INDEX IF NOT EXISTS idx_trade_entries_symbol_category_timestamp
ON trade_entries(symbol_key, category, timestamp);

CREATE TABLE IF NOT EXISTS trade_calculations (
  entry_id TEXT PRIMARY KEY,
  timestamp INTEGER NOT NULL,
  symbol TEXT NOT NULL,
  settle_coin TEXT NOT NULL,
  size_after TEXT NOT NULL,
  avg_price_after TEXT NOT NULL,
  realized_pnl TEXT NOT NULL,
  cumulative_pnl TEXT NOT NULL,
  fee TEXT NOT NULL,
  changed_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_trade_calculations_timestamp
ON trade_calculations(timestamp);

CREATE TABLE IF NOT EXISTS history_meta (
  key TEXT PRIMARY KEY,
  version INTEGER NOT NULL,
  payload_json TEXT NOT NULL,
  updated_at TEXT NOT NULL
);
"""
