from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Callable

from cba.calculator import apply_entry, position_key
from cba.models import CalculationState, OverClose
from tlg.meta_state import transition_meta_status
from tlg.models import ReconciliationWarning, TradeEntry, TradingHistoryMeta, TransactionCalculated
from tlg.repository import LedgerRepository

from .errors import RecalculationCancelledError
from .models import RecalcMode, RecalculationReport
from .planner import plan_recalculation

_logger = logging.getLogger("tradeledger.rco")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _ids_at(entries: list[TradeEntry], timestamp: int) -> dict[str, list[str]]:
    ids: dict[str, list[str]] = {}
    for entry in entries:
        if entry.timestamp == timestamp:
            ids.setdefault(position_key(entry.symbol), []).append(entry.id)
    return ids


class Recalculator:
    """Runs one recalculation pass against a single account ledger.

    The new meta and per-trade results are built off to the side and only
    written by :meth:`LedgerRepository.publish`, so an interrupted pass
    leaves the previous checkpoint untouched.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        *,
        now_ms_fn: Callable[[], int] | None = None,
    ) -> None:
        self.repository = repository
        self._now_ms = now_ms_fn or _now_ms

    def plan(self, from_timestamp: int | None) -> tuple[RecalcMode, TradingHistoryMeta]:
        meta = self.repository.load_meta()
        checkpoint = meta.calculated_through_timestamp
        count = 0
        if checkpoint is not None:
            processed_ids = meta.checkpoint_ids
            count = self.repository.count_through(checkpoint, max(processed_ids) if processed_ids else None)
        return plan_recalculation(meta, from_timestamp, count), meta

    def run(
        self,
        from_timestamp: int | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> RecalculationReport:
        started = time.monotonic()
        mode, meta = self.plan(from_timestamp)

        if mode == "incremental":
            state = CalculationState.from_meta(meta)
            checkpoint = meta.calculated_through_timestamp
            seen = meta.checkpoint_ids
            entries = [
                entry
                for entry in self.repository.load_since(checkpoint)
                if not (entry.timestamp == checkpoint and entry.id in seen)
            ]
            processed_base = meta.processed_count
        else:
            state = CalculationState()
            entries = self.repository.load_since(None)
            processed_base = 0

        changed_at = self._now_ms()
        calculations: list[TransactionCalculated] = []
        anomalies: list[OverClose] = []
        for index, entry in enumerate(entries):
            if cancel_event is not None and cancel_event.is_set():
                _logger.info("Recalculation cancelled: mode=%s processed=%s/%s", mode, index, len(entries))
                raise RecalculationCancelledError(index)
            calculated, anomaly = apply_entry(entry, state, changed_at=changed_at)
            calculations.append(calculated)
            if anomaly is not None:
                _logger.warning(
                    "Over-close on symbol=%s entry=%s: excess=%s",
                    anomaly.symbol,
                    anomaly.entry_id,
                    anomaly.excess_qty,
                )
                anomalies.append(anomaly)

        next_meta = self._build_meta(meta, mode, state, entries, processed_base, anomalies)
        published = self.repository.publish(next_meta, calculations, full=mode != "incremental")

        duration_ms = int((time.monotonic() - started) * 1000)
        _logger.info(
            "Recalculation finished: mode=%s processed=%s checkpoint=%s status=%s duration_ms=%s",
            mode,
            len(entries),
            published.calculated_through_timestamp,
            published.status,
            duration_ms,
        )
        return RecalculationReport(
            mode=mode,
            processed=len(entries),
            checkpoint=published.calculated_through_timestamp,
            status=published.status,
            meta_version=published.version,
            duration_ms=duration_ms,
            anomalies=anomalies,
        )

    @staticmethod
    def _build_meta(
        meta: TradingHistoryMeta,
        mode: RecalcMode,
        state: CalculationState,
        entries: list[TradeEntry],
        processed_base: int,
        anomalies: list[OverClose],
    ) -> TradingHistoryMeta:
        checkpoint = meta.calculated_through_timestamp if mode == "incremental" else None
        ids_at_checkpoint = dict(meta.ids_at_checkpoint) if mode == "incremental" else {}
        if entries:
            last_timestamp = entries[-1].timestamp
            fresh = _ids_at(entries, last_timestamp)
            if last_timestamp != checkpoint:
                ids_at_checkpoint = {}
            for symbol, ids in fresh.items():
                ids_at_checkpoint[symbol] = sorted(set(ids_at_checkpoint.get(symbol, [])) | set(ids))
            checkpoint = last_timestamp

        next_meta = replace(
            meta,
            size_by_symbol=dict(state.size_by_symbol),
            avg_price_by_symbol=dict(state.avg_price_by_symbol),
            cumulative_by_settle_coin=dict(state.cumulative_by_settle_coin),
            calculated_through_timestamp=checkpoint,
            ids_at_checkpoint=ids_at_checkpoint,
            processed_count=processed_base + len(entries),
            warnings=[],
        )
        next_meta = transition_meta_status(next_meta, "CURRENT")
        if anomalies:
            next_meta = transition_meta_status(next_meta, "DIRTY", reason="OVER_CLOSE")
            next_meta = replace(
                next_meta,
                warnings=[
                    ReconciliationWarning(
                        code="OVER_CLOSE",
                        symbol=anomaly.symbol,
                        entry_id=anomaly.entry_id,
                        timestamp=anomaly.timestamp,
                        excess_qty=anomaly.excess_qty,
                    )
                    for anomaly in anomalies
                ],
            )
        return next_meta
