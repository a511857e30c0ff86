from __future__ import annotations

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, Iterator
from uuid import uuid4

from .bootstrap import DEFAULT_DB_PATH, initialize_database
from .errors import MetaVersionConflictError
from .meta_state import mark_ingested, transition_meta_status
from .models import HistoryPage, LatestInfo, TradeEntry, TradingHistoryMeta, TransactionCalculated
from .schema import META_KEY

MAX_PAGE_LIMIT = 1000

_ENTRY_COLUMNS = """
    id, timestamp, symbol, category, transaction_type, side, size, price,
    fee, currency, fee_currency, order_id, trade_id, raw_json
"""

_CALCULATION_JOIN = """
    LEFT JOIN (
        SELECT entry_id AS calc_entry_id, settle_coin AS calc_settle_coin,
               size_after AS calc_size_after, avg_price_after AS calc_avg_price_after,
               realized_pnl AS calc_realized_pnl, cumulative_pnl AS calc_cumulative_pnl,
               fee AS calc_fee, changed_at AS calc_changed_at
        FROM trade_calculations
    ) c ON c.calc_entry_id = trade_entries.id
"""

_logger = logging.getLogger("tradeledger.tlg")


def _to_decimal(value) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


def _now_ms() -> int:
    return int(time.time() * 1000)


def symbol_key(symbol: str) -> str:
    return (symbol or "").strip().upper()


def prepare_entry(entry: TradeEntry, now_ms: int) -> TradeEntry:
    entry_id = (entry.id or "").strip() or uuid4().hex
    timestamp = entry.timestamp if entry.timestamp and entry.timestamp > 0 else now_ms
    currency = (entry.currency or "").strip()
    fee_currency = (entry.fee_currency or "").strip() or currency
    return replace(
        entry,
        id=entry_id,
        timestamp=int(timestamp),
        symbol=(entry.symbol or "").strip(),
        category=(entry.category or "").strip(),
        side=(entry.side or "").strip(),
        currency=currency,
        fee_currency=fee_currency,
        transaction_type=(entry.transaction_type or "").strip(),
        order_id=entry.order_id or "",
        trade_id=entry.trade_id or "",
        raw_json=entry.raw_json or "",
    )


def _row_to_entry(row: sqlite3.Row) -> TradeEntry:
    return TradeEntry(
        id=row["id"],
        timestamp=int(row["timestamp"]),
        symbol=row["symbol"],
        category=row["category"],
        side=row["side"],
        size=_to_decimal(row["size"]),
        price=_to_decimal(row["price"]),
        fee=_to_decimal(row["fee"]),
        currency=row["currency"],
        fee_currency=row["fee_currency"],
        transaction_type=row["transaction_type"],
        order_id=row["order_id"],
        trade_id=row["trade_id"],
        raw_json=row["raw_json"],
        calculated=_joined_calculation(row),
    )


def _joined_calculation(row: sqlite3.Row) -> TransactionCalculated | None:
    if row["calc_entry_id"] is None:
        return None
    return TransactionCalculated(
        entry_id=row["calc_entry_id"],
        timestamp=int(row["timestamp"]),
        symbol=symbol_key(row["symbol"]),
        settle_coin=row["calc_settle_coin"],
        size_after=_to_decimal(row["calc_size_after"]),
        avg_price_after=_to_decimal(row["calc_avg_price_after"]),
        realized_pnl=_to_decimal(row["calc_realized_pnl"]),
        cumulative_pnl=_to_decimal(row["calc_cumulative_pnl"]),
        fee=_to_decimal(row["calc_fee"]),
        changed_at=int(row["calc_changed_at"]),
    )


def _row_to_calculated(row: sqlite3.Row) -> TransactionCalculated:
    return TransactionCalculated(
        entry_id=row["entry_id"],
        timestamp=int(row["timestamp"]),
        symbol=row["symbol"],
        settle_coin=row["settle_coin"],
        size_after=_to_decimal(row["size_after"]),
        avg_price_after=_to_decimal(row["avg_price_after"]),
        realized_pnl=_to_decimal(row["realized_pnl"]),
        cumulative_pnl=_to_decimal(row["cumulative_pnl"]),
        fee=_to_decimal(row["fee"]),
        changed_at=int(row["changed_at"]),
    )


class LedgerRepository:
    def __init__(
        self,
        conn: sqlite3.Connection | None = None,
        db_path: str | Path = DEFAULT_DB_PATH,
        *,
        now_ms_fn: Callable[[], int] | None = None,
    ) -> None:
        self.conn = conn or initialize_database(db_path)
        self._now_ms = now_ms_fn or _now_ms

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "LedgerRepository":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def append(self, entries: Iterable[TradeEntry]) -> list[TradeEntry]:
        """Merge entries into the ledger, ignoring ids that already exist.

        Returns only the entries that were actually inserted. The meta status
        is advanced in the same transaction: in-order arrivals make it STALE,
        anything sorting before the checkpoint makes it DIRTY.
        """
        now_ms = self._now_ms()
        prepared = sorted((prepare_entry(entry, now_ms) for entry in entries), key=lambda item: item.sort_key)
        if not prepared:
            return []

        meta = self.load_meta()
        inserted: list[TradeEntry] = []
        with self.conn:
            for entry in prepared:
                if self._insert_entry(entry, now_ms):
                    inserted.append(entry)
            if inserted:
                next_meta = mark_ingested(meta, inserted)
                if next_meta.status == "DIRTY" and meta.status != "DIRTY":
                    _logger.warning(
                        "Out-of-order trade ingested before checkpoint=%s; full recalculation required",
                        meta.calculated_through_timestamp,
                    )
                self._write_meta(next_meta)
        return inserted

    def replace_all(self, entries: Iterable[TradeEntry]) -> int:
        now_ms = self._now_ms()
        prepared = sorted((prepare_entry(entry, now_ms) for entry in entries), key=lambda item: item.sort_key)
        current = self.load_meta()
        reset = replace(
            current,
            size_by_symbol={},
            avg_price_by_symbol={},
            cumulative_by_settle_coin={},
            calculated_through_timestamp=None,
            ids_at_checkpoint={},
            processed_count=0,
            warnings=[],
        )
        reset = transition_meta_status(reset, "DIRTY", reason="LEDGER_REPLACED")

        inserted = 0
        with self.conn:
            self.conn.execute("DELETE FROM trade_entries")
            self.conn.execute("DELETE FROM trade_calculations")
            for entry in prepared:
                if self._insert_entry(entry, now_ms):
                    inserted += 1
            self._write_meta(reset)
        return inserted

    def load_by_symbol(
        self,
        symbol: str,
        category: str | None = None,
        since_timestamp: int | None = None,
    ) -> list[TradeEntry]:
        clauses = ["symbol_key = ?"]
        args: list[object] = [symbol_key(symbol)]
        if category:
            clauses.append("category = ?")
            args.append(category)
        if since_timestamp is not None:
            clauses.append("timestamp >= ?")
            args.append(since_timestamp)
        return self._select_entries(clauses, args, direction="ASC")

    def load_since(self, since_timestamp: int | None = None) -> list[TradeEntry]:
        clauses: list[str] = []
        args: list[object] = []
        if since_timestamp is not None:
            clauses.append("timestamp >= ?")
            args.append(since_timestamp)
        return self._select_entries(clauses, args, direction="ASC")

    def load_page(self, base_asset: str | None, start_index: int, limit: int) -> HistoryPage:
        if start_index < 0 or limit <= 0:
            return HistoryPage()

        safe_limit = min(limit, MAX_PAGE_LIMIT)
        clauses: list[str] = []
        args: list[object] = []
        base = symbol_key(base_asset or "")
        if base:
            clauses.append("substr(symbol_key, 1, ?) = ?")
            args.extend([len(base), base])

        entries = self._select_entries(clauses, args, direction="DESC", limit=safe_limit, offset=start_index)
        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        row = self.conn.execute(f"SELECT COUNT(*) AS total FROM trade_entries {where_sql}", args).fetchone()
        return HistoryPage(entries=entries, total_count=int(row["total"]))

    def latest_for_symbol(self, symbol: str, category: str | None = None) -> LatestInfo:
        clauses = ["symbol_key = ?"]
        args: list[object] = [symbol_key(symbol)]
        if category:
            clauses.append("category = ?")
            args.append(category)
        where_sql = " AND ".join(clauses)

        row = self.conn.execute(f"SELECT MAX(timestamp) AS latest FROM trade_entries WHERE {where_sql}", args).fetchone()
        if row is None or row["latest"] is None:
            return LatestInfo()

        latest = int(row["latest"])
        rows = self.conn.execute(
            f"SELECT id FROM trade_entries WHERE {where_sql} AND timestamp = ? ORDER BY id ASC",
            (*args, latest),
        ).fetchall()
        return LatestInfo(timestamp=latest, ids=[item["id"] for item in rows])

    def count_entries(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) AS total FROM trade_entries").fetchone()
        return int(row["total"])

    def count_through(self, timestamp: int, last_id: str | None = None) -> int:
        """Count entries ordered at or before ``(timestamp, last_id)``."""
        if last_id is None:
            row = self.conn.execute(
                "SELECT COUNT(*) AS total FROM trade_entries WHERE timestamp <= ?",
                (timestamp,),
            ).fetchone()
        else:
            row = self.conn.execute(
                """
                SELECT COUNT(*) AS total FROM trade_entries
                WHERE timestamp < ? OR (timestamp = ? AND id <= ?)
                """,
                (timestamp, timestamp, last_id),
            ).fetchone()
        return int(row["total"])

    @contextmanager
    def snapshot(self) -> Iterator["LedgerRepository"]:
        """Run several reads against one committed database snapshot."""
        self.conn.execute("BEGIN")
        try:
            yield self
        finally:
            self.conn.rollback()

    def load_meta(self) -> TradingHistoryMeta:
        row = self.conn.execute(
            "SELECT version, payload_json FROM history_meta WHERE key = ?",
            (META_KEY,),
        ).fetchone()
        if not row:
            return TradingHistoryMeta()

        try:
            payload = json.loads(row["payload_json"])
            meta = TradingHistoryMeta.from_payload(payload if isinstance(payload, dict) else {})
        except (ValueError, TypeError, ArithmeticError):
            _logger.warning("Stored meta document is unreadable; falling back to a dirty zero state")
            meta = TradingHistoryMeta(status="DIRTY", dirty_reason="GAP")
        return replace(meta, version=int(row["version"]))

    def save_meta(self, meta: TradingHistoryMeta) -> TradingHistoryMeta:
        """Persist the collaborator-owned fields of ``meta``.

        Registration time and per-category sync cursors are taken from the
        argument; the accounting memo stays as published by the last
        recalculation.
        """
        current = self.load_meta()
        if meta.version != current.version:
            raise MetaVersionConflictError("version", meta.version)

        merged = replace(
            current,
            registration_time_ms=meta.registration_time_ms,
            latest_synced_time_ms_by_category=dict(meta.latest_synced_time_ms_by_category),
        )
        with self.conn:
            return self._write_meta(merged)

    def publish(
        self,
        meta: TradingHistoryMeta,
        calculations: list[TransactionCalculated],
        *,
        full: bool,
    ) -> TradingHistoryMeta:
        with self.conn:
            if full:
                self.conn.execute("DELETE FROM trade_calculations")
            self.conn.executemany(
                """
                INSERT OR REPLACE INTO trade_calculations(
                    entry_id, timestamp, symbol, settle_coin, size_after, avg_price_after,
                    realized_pnl, cumulative_pnl, fee, changed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        item.entry_id,
                        item.timestamp,
                        item.symbol,
                        item.settle_coin,
                        str(item.size_after),
                        str(item.avg_price_after),
                        str(item.realized_pnl),
                        str(item.cumulative_pnl),
                        str(item.fee),
                        item.changed_at,
                    )
                    for item in calculations
                ],
            )
            return self._write_meta(meta)

    def list_calculations(self, symbol: str | None = None) -> list[TransactionCalculated]:
        if symbol:
            rows = self.conn.execute(
                """
                SELECT * FROM trade_calculations
                WHERE symbol = ?
                ORDER BY timestamp ASC, entry_id ASC
                """,
                (symbol_key(symbol),),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM trade_calculations ORDER BY timestamp ASC, entry_id ASC"
            ).fetchall()
        return [_row_to_calculated(row) for row in rows]

    def iter_summary_rows(self) -> list[tuple[str, str, str, Decimal, Decimal, Decimal, Decimal]]:
        rows = self.conn.execute(
            """
            SELECT e.category, e.symbol, COALESCE(c.settle_coin, e.currency) AS settle_coin,
                   e.size, e.price, e.fee, c.realized_pnl
            FROM trade_entries e
            LEFT JOIN trade_calculations c ON c.entry_id = e.id
            """
        ).fetchall()
        return [
            (
                row["category"],
                row["symbol"],
                row["settle_coin"],
                _to_decimal(row["size"]),
                _to_decimal(row["price"]),
                _to_decimal(row["fee"]),
                _to_decimal(row["realized_pnl"]),
            )
            for row in rows
        ]

    def iter_coin_rows(self) -> list[tuple[str, Decimal, Decimal]]:
        rows = self.conn.execute("SELECT settle_coin, fee, realized_pnl FROM trade_calculations").fetchall()
        return [(row["settle_coin"], _to_decimal(row["fee"]), _to_decimal(row["realized_pnl"])) for row in rows]

    def iter_daily_rows(self, from_timestamp: int, to_timestamp: int) -> list[tuple[int, str, Decimal, Decimal]]:
        rows = self.conn.execute(
            """
            SELECT timestamp, settle_coin, realized_pnl, fee
            FROM trade_calculations
            WHERE timestamp >= ? AND timestamp <= ?
            """,
            (from_timestamp, to_timestamp),
        ).fetchall()
        return [
            (int(row["timestamp"]), row["settle_coin"], _to_decimal(row["realized_pnl"]), _to_decimal(row["fee"]))
            for row in rows
        ]

    def _insert_entry(self, entry: TradeEntry, now_ms: int) -> bool:
        cursor = self.conn.execute(
            """
            INSERT INTO trade_entries(
                id, timestamp, symbol, symbol_key, category, transaction_type, side,
                size, price, fee, currency, fee_currency, order_id, trade_id, raw_json, ingested_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO NOTHING
            """,
            (
                entry.id,
                entry.timestamp,
                entry.symbol,
                symbol_key(entry.symbol),
                entry.category,
                entry.transaction_type,
                entry.side,
                str(entry.size),
                str(entry.price),
                str(entry.fee),
                entry.currency,
                entry.fee_currency,
                entry.order_id,
                entry.trade_id,
                entry.raw_json,
                now_ms,
            ),
        )
        return cursor.rowcount == 1

    def _write_meta(self, meta: TradingHistoryMeta) -> TradingHistoryMeta:
        row = self.conn.execute("SELECT version FROM history_meta WHERE key = ?", (META_KEY,)).fetchone()
        stored_version = int(row["version"]) if row else 0
        if stored_version != meta.version:
            raise MetaVersionConflictError("version", meta.version)

        published = replace(meta, version=meta.version + 1)
        self.conn.execute(
            """
            INSERT INTO history_meta(key, version, payload_json, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
              version=excluded.version,
              payload_json=excluded.payload_json,
              updated_at=excluded.updated_at
            """,
            (
                META_KEY,
                published.version,
                json.dumps(published.to_payload(), ensure_ascii=False, separators=(",", ":")),
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        return published

    def _select_entries(
        self,
        clauses: list[str],
        args: list[object],
        *,
        direction: str,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[TradeEntry]:
        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        limit_sql = ""
        params: list[object] = list(args)
        if limit is not None:
            limit_sql = "LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        rows = self.conn.execute(
            f"""
            SELECT {_ENTRY_COLUMNS}, c.*
            FROM trade_entries
            {_CALCULATION_JOIN}
            {where_sql}
            ORDER BY timestamp {direction}, id {direction}
            {limit_sql}
            """,
            params,
        ).fetchall()
        return [_row_to_entry(row) for row in rows]
