from __future__ import annotations

import logging
import re
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, Iterator

from agv.views import daily_pnl, pnl_by_settle_coin, summary_by_symbol
from tlg.errors import (
    AccountIdInvalidError,
    LedgerPersistenceError,
    PagingInvalidError,
    SymbolRequiredError,
    TimeRangeInvalidError,
)
from tlg.models import (
    DailyPnlRow,
    HistoryPage,
    LatestInfo,
    PnlByCoinRow,
    SummaryBySymbolRow,
    TradeEntry,
    TradingHistoryMeta,
)
from tlg.repository import LedgerRepository

from .errors import RecalculationInProgressError
from .models import RecalculationReport
from .recalculator import Recalculator

DEFAULT_DATA_DIR = Path("runtime/state/accounts")
ACCOUNT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")

_logger = logging.getLogger("tradeledger.rco.service")


def validate_account_id(account_id: str) -> str:
    normalized = (account_id or "").strip()
    if not ACCOUNT_ID_PATTERN.fullmatch(normalized):
        raise AccountIdInvalidError("accountId", account_id)
    return normalized


class TradingHistoryService:
    """Account-scoped entry point for ingestion, queries and recalculation.

    Every account owns one sqlite file under ``data_dir``. Writers for the
    same account are serialized by a per-account lock; readers open their
    own connection and see the last committed meta.
    """

    def __init__(
        self,
        *,
        data_dir: str | Path = DEFAULT_DATA_DIR,
        now_ms_fn: Callable[[], int] | None = None,
    ) -> None:
        self.data_dir = Path(data_dir)
        self._now_ms_fn = now_ms_fn
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._recalculating: set[str] = set()

    def db_path(self, account_id: str) -> Path:
        return self.data_dir / f"{validate_account_id(account_id)}.db"

    def save_trades(self, account_id: str, entries: Iterable[TradeEntry]) -> int:
        batch = list(entries)
        with self._account_lock(account_id), self._persistence("save_trades"):
            with self._repository(account_id) as repo:
                inserted = repo.append(batch)
        _logger.info(
            "Trades saved: account=%s received=%s inserted=%s duplicates=%s",
            account_id,
            len(batch),
            len(inserted),
            len(batch) - len(inserted),
        )
        return len(inserted)

    def replace_trades(self, account_id: str, entries: Iterable[TradeEntry]) -> int:
        batch = list(entries)
        with self._account_lock(account_id), self._persistence("replace_trades"):
            with self._repository(account_id) as repo:
                inserted = repo.replace_all(batch)
        _logger.info("Ledger replaced: account=%s inserted=%s", account_id, inserted)
        return inserted

    def load_entries(
        self,
        account_id: str,
        base_asset: str | None = None,
        start_index: int = 0,
        limit: int = 100,
    ) -> HistoryPage:
        if start_index < 0:
            raise PagingInvalidError("startIndex", start_index)
        if limit <= 0:
            raise PagingInvalidError("limit", limit)
        with self._persistence("load_entries"), self._repository(account_id) as repo:
            return repo.load_page(base_asset, start_index, limit)

    def load_by_symbol(
        self,
        account_id: str,
        symbol: str,
        category: str | None = None,
        since_timestamp: int | None = None,
    ) -> list[TradeEntry]:
        if not (symbol or "").strip():
            raise SymbolRequiredError("symbol", symbol)
        with self._persistence("load_by_symbol"), self._repository(account_id) as repo:
            return repo.load_by_symbol(symbol, category=category, since_timestamp=since_timestamp)

    def load_summary_by_symbol(self, account_id: str) -> list[SummaryBySymbolRow]:
        with self._persistence("load_summary_by_symbol"), self._repository(account_id) as repo:
            rows = repo.iter_summary_rows()
        return summary_by_symbol(rows)

    def load_pnl_by_settle_coin(self, account_id: str) -> list[PnlByCoinRow]:
        with self._persistence("load_pnl_by_settle_coin"), self._repository(account_id) as repo:
            with repo.snapshot():
                rows = repo.iter_coin_rows()
                meta = repo.load_meta()
        return pnl_by_settle_coin(rows, meta)

    def load_daily_pnl(self, account_id: str, from_timestamp: int, to_timestamp: int) -> list[DailyPnlRow]:
        if from_timestamp < 0:
            raise TimeRangeInvalidError("fromTimestamp", from_timestamp)
        if to_timestamp < 0:
            raise TimeRangeInvalidError("toTimestamp", to_timestamp)
        if to_timestamp < from_timestamp:
            return []
        with self._persistence("load_daily_pnl"), self._repository(account_id) as repo:
            rows = repo.iter_daily_rows(from_timestamp, to_timestamp)
        return daily_pnl(rows, from_timestamp, to_timestamp)

    def load_latest_meta(self, account_id: str, symbol: str, category: str | None = None) -> LatestInfo:
        if not (symbol or "").strip():
            raise SymbolRequiredError("symbol", symbol)
        with self._persistence("load_latest_meta"), self._repository(account_id) as repo:
            return repo.latest_for_symbol(symbol, category=category)

    def load_meta(self, account_id: str) -> TradingHistoryMeta:
        with self._persistence("load_meta"), self._repository(account_id) as repo:
            return repo.load_meta()

    def save_meta(self, account_id: str, meta: TradingHistoryMeta) -> TradingHistoryMeta:
        with self._account_lock(account_id), self._persistence("save_meta"):
            with self._repository(account_id) as repo:
                return repo.save_meta(meta)

    def recalculate(
        self,
        account_id: str,
        from_timestamp: int | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> RecalculationReport:
        account_id = validate_account_id(account_id)
        with self._locks_guard:
            if account_id in self._recalculating:
                raise RecalculationInProgressError(account_id)
            self._recalculating.add(account_id)
        try:
            with self._account_lock(account_id), self._persistence("recalculate"):
                with self._repository(account_id) as repo:
                    return Recalculator(repo, now_ms_fn=self._now_ms_fn).run(
                        from_timestamp,
                        cancel_event=cancel_event,
                    )
        finally:
            with self._locks_guard:
                self._recalculating.discard(account_id)

    def is_recalculating(self, account_id: str) -> bool:
        with self._locks_guard:
            return validate_account_id(account_id) in self._recalculating

    @contextmanager
    def _account_lock(self, account_id: str) -> Iterator[None]:
        key = validate_account_id(account_id)
        with self._locks_guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield

    def _repository(self, account_id: str) -> LedgerRepository:
        return LedgerRepository(db_path=self.db_path(account_id), now_ms_fn=self._now_ms_fn)

    @contextmanager
    def _persistence(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            _logger.exception("Ledger storage failure: operation=%s", operation)
            raise LedgerPersistenceError(operation, exc) from exc
