from __future__ import annotations

import sqlite3
from dataclasses import replace
from decimal import Decimal
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from tlg.bootstrap import run_migrations
from tlg.errors import MetaVersionConflictError
from tlg.meta_state import transition_meta_status
from tlg.models import TradeEntry, TradingHistoryMeta, TransactionCalculated
from tlg.repository import LedgerRepository
from tlg.schema import META_KEY


def _trade(
    entry_id: str,
    timestamp: int,
    *,
    symbol: str = "BTCUSDT",
    category: str = "linear",
    side: str = "Buy",
    size: str = "1",
    price: str = "100",
    currency: str = "USDT",
) -> TradeEntry:
    return TradeEntry(
        id=entry_id,
        timestamp=timestamp,
        symbol=symbol,
        category=category,
        side=side,
        size=Decimal(size),
        price=Decimal(price),
        currency=currency,
    )


def create_repo(now_ms: int = 5_000) -> LedgerRepository:
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    run_migrations(conn)
    return LedgerRepository(conn=conn, now_ms_fn=lambda: now_ms)


def _checkpoint(repo: LedgerRepository, timestamp: int, ids: dict[str, list[str]], processed: int) -> TradingHistoryMeta:
    meta = repo.load_meta()
    settled = transition_meta_status(
        replace(meta, calculated_through_timestamp=timestamp, ids_at_checkpoint=ids, processed_count=processed),
        "CURRENT",
    )
    return repo.publish(settled, [], full=True)


def test_append_is_idempotent_by_id() -> None:
    repo = create_repo()
    try:
        first = repo.append([_trade("t1", 1_000), _trade("t2", 2_000)])
        second = repo.append([_trade("t2", 2_000, price="999"), _trade("t1", 1_000)])

        assert [entry.id for entry in first] == ["t1", "t2"]
        assert second == []
        assert repo.count_entries() == 2
        assert repo.load_since()[1].price == Decimal("100")

        meta = repo.load_meta()
        assert meta.version == 1
        assert meta.status == "STALE"
        assert meta.requires_recalculation is True
    finally:
        repo.close()


def test_append_prepares_missing_fields() -> None:
    repo = create_repo(now_ms=7_777)
    try:
        inserted = repo.append(
            [
                TradeEntry(
                    id="  ",
                    timestamp=0,
                    symbol=" ETHUSDT ",
                    category="linear",
                    side="Sell",
                    size=Decimal("2"),
                    price=Decimal("3000"),
                    currency="USDT",
                )
            ]
        )

        assert len(inserted) == 1
        entry = inserted[0]
        assert len(entry.id) == 32
        assert entry.timestamp == 7_777
        assert entry.symbol == "ETHUSDT"
        assert entry.fee_currency == "USDT"
        assert entry.signed_qty == Decimal("-2")
    finally:
        repo.close()


def test_load_by_symbol_orders_by_timestamp_then_id() -> None:
    repo = create_repo()
    try:
        repo.append(
            [
                _trade("b", 2_000),
                _trade("c", 1_000),
                _trade("a", 2_000),
                _trade("s1", 1_500, category="spot"),
                _trade("e1", 1_200, symbol="ETHUSDT"),
            ]
        )

        assert [entry.id for entry in repo.load_by_symbol("btcusdt")] == ["c", "s1", "a", "b"]
        assert [entry.id for entry in repo.load_by_symbol("BTCUSDT", category="linear")] == ["c", "a", "b"]
        assert [entry.id for entry in repo.load_by_symbol("BTCUSDT", since_timestamp=1_500)] == ["s1", "a", "b"]
        assert [entry.id for entry in repo.load_since(1_200)] == ["e1", "s1", "a", "b"]
    finally:
        repo.close()


def test_load_page_is_newest_first_with_base_asset_filter() -> None:
    repo = create_repo()
    try:
        repo.append(
            [
                _trade("t1", 1_000),
                _trade("t2", 2_000, symbol="BTC-27JUN25-60000-C", category="option", currency="USDC"),
                _trade("t3", 3_000, symbol="ETHUSDT"),
                _trade("t4", 4_000),
            ]
        )

        page = repo.load_page("btc", 0, 2)
        assert [entry.id for entry in page.entries] == ["t4", "t2"]
        assert page.total_count == 3

        tail = repo.load_page("BTC", 2, 2)
        assert [entry.id for entry in tail.entries] == ["t1"]

        everything = repo.load_page(None, 0, 10)
        assert [entry.id for entry in everything.entries] == ["t4", "t3", "t2", "t1"]
        assert everything.total_count == 4

        assert repo.load_page(None, -1, 10).entries == []
        assert repo.load_page(None, 0, 0).total_count == 0
    finally:
        repo.close()


def test_latest_for_symbol_returns_ids_at_max_timestamp() -> None:
    repo = create_repo()
    try:
        repo.append(
            [
                _trade("t1", 1_000),
                _trade("t3", 2_000),
                _trade("t2", 2_000),
                _trade("s1", 3_000, category="spot"),
            ]
        )

        latest = repo.latest_for_symbol("BTCUSDT", category="linear")
        assert latest.timestamp == 2_000
        assert latest.ids == ["t2", "t3"]

        overall = repo.latest_for_symbol("btcusdt")
        assert overall.timestamp == 3_000
        assert overall.ids == ["s1"]

        missing = repo.latest_for_symbol("SOLUSDT")
        assert missing.timestamp is None
        assert missing.ids == []
    finally:
        repo.close()


def test_append_before_checkpoint_marks_meta_dirty() -> None:
    repo = create_repo()
    try:
        repo.append([_trade("t1", 1_000), _trade("t2", 2_000)])
        _checkpoint(repo, 2_000, {"BTCUSDT": ["t2"]}, 2)

        repo.append([_trade("t0", 1_500)])
        meta = repo.load_meta()
        assert meta.status == "DIRTY"
        assert meta.dirty_reason == "OUT_OF_ORDER"
    finally:
        repo.close()


def test_same_millisecond_append_depends_on_id_order() -> None:
    repo = create_repo()
    try:
        repo.append([_trade("t1", 1_000), _trade("t5", 2_000)])
        _checkpoint(repo, 2_000, {"BTCUSDT": ["t5"]}, 2)

        repo.append([_trade("t7", 2_000)])
        assert repo.load_meta().status == "STALE"

        repo.append([_trade("t3", 2_000)])
        meta = repo.load_meta()
        assert meta.status == "DIRTY"
        assert meta.dirty_reason == "OUT_OF_ORDER"
    finally:
        repo.close()


def test_count_through_uses_timestamp_and_id() -> None:
    repo = create_repo()
    try:
        repo.append([_trade("a", 1_000), _trade("b", 2_000), _trade("d", 2_000), _trade("e", 3_000)])

        assert repo.count_through(2_000) == 3
        assert repo.count_through(2_000, "b") == 2
        assert repo.count_through(2_000, "c") == 2
        assert repo.count_through(999) == 0
    finally:
        repo.close()


def test_replace_all_resets_accounting_and_marks_dirty() -> None:
    repo = create_repo()
    try:
        repo.append([_trade("t1", 1_000), _trade("t2", 2_000)])
        _checkpoint(repo, 2_000, {"BTCUSDT": ["t2"]}, 2)

        inserted = repo.replace_all([_trade("n1", 500), _trade("n1", 500), _trade("n2", 600)])

        assert inserted == 2
        assert [entry.id for entry in repo.load_since()] == ["n1", "n2"]
        meta = repo.load_meta()
        assert meta.status == "DIRTY"
        assert meta.dirty_reason == "LEDGER_REPLACED"
        assert meta.calculated_through_timestamp is None
        assert meta.processed_count == 0
        assert repo.list_calculations() == []
    finally:
        repo.close()


def test_save_meta_merges_collaborator_fields_with_version_check() -> None:
    repo = create_repo()
    try:
        repo.append([_trade("t1", 1_000)])
        meta = repo.load_meta()

        saved = repo.save_meta(
            replace(
                meta,
                registration_time_ms=100,
                latest_synced_time_ms_by_category={"linear": 1_000},
                processed_count=99,
                status="CURRENT",
            )
        )

        assert saved.version == meta.version + 1
        reloaded = repo.load_meta()
        assert reloaded.registration_time_ms == 100
        assert reloaded.latest_synced_time_ms_by_category == {"linear": 1_000}
        assert reloaded.processed_count == 0
        assert reloaded.status == "STALE"

        with pytest.raises(MetaVersionConflictError):
            repo.save_meta(meta)
    finally:
        repo.close()


def test_unreadable_meta_document_falls_back_to_dirty_state() -> None:
    repo = create_repo()
    try:
        repo.append([_trade("t1", 1_000)])
        with repo.conn:
            repo.conn.execute("UPDATE history_meta SET payload_json = ? WHERE key = ?", ("{broken", META_KEY))

        meta = repo.load_meta()
        assert meta.status == "DIRTY"
        assert meta.dirty_reason == "GAP"
        assert meta.version == 1
    finally:
        repo.close()


def test_meta_payload_keeps_decimals_and_status() -> None:
    meta = TradingHistoryMeta(
        version=3,
        size_by_symbol={"btcusdt": Decimal("-0.5")},
        avg_price_by_symbol={"BTCUSDT": Decimal("64000.125")},
        cumulative_by_settle_coin={"USDT": Decimal("12.3456789012")},
        calculated_through_timestamp=2_000,
        ids_at_checkpoint={"BTCUSDT": ["t2"]},
        processed_count=2,
        status="DIRTY",
        dirty_reason="OVER_CLOSE",
    )

    payload = meta.to_payload()
    assert payload["sizeBySymbol"] == {"btcusdt": "-0.5"}
    assert payload["requiresRecalculation"] is True

    restored = TradingHistoryMeta.from_payload(payload)
    assert restored.size_by_symbol == {"BTCUSDT": Decimal("-0.5")}
    assert restored.cumulative_by_settle_coin["USDT"] == Decimal("12.3456789012")
    assert restored.status == "DIRTY"
    assert restored.dirty_reason == "OVER_CLOSE"


def test_meta_status_transitions_are_guarded() -> None:
    meta = TradingHistoryMeta()
    dirty = transition_meta_status(meta, "DIRTY", reason="GAP")
    still_dirty = transition_meta_status(dirty, "DIRTY", reason="OVER_CLOSE")

    assert still_dirty.dirty_reason == "GAP"
    with pytest.raises(ValueError):
        transition_meta_status(dirty, "STALE")

    current = transition_meta_status(still_dirty, "CURRENT")
    assert current.status == "CURRENT"
    assert current.dirty_reason is None


def test_loaded_entries_carry_published_calculation() -> None:
    repo = create_repo()
    try:
        repo.append([_trade("t1", 1_000), _trade("t2", 2_000)])
        meta = transition_meta_status(
            replace(repo.load_meta(), calculated_through_timestamp=1_000, ids_at_checkpoint={"BTCUSDT": ["t1"]}, processed_count=1),
            "CURRENT",
        )
        repo.publish(
            meta,
            [
                TransactionCalculated(
                    entry_id="t1",
                    timestamp=1_000,
                    symbol="BTCUSDT",
                    settle_coin="USDT",
                    size_after=Decimal("1"),
                    avg_price_after=Decimal("100"),
                    realized_pnl=Decimal("0"),
                    cumulative_pnl=Decimal("-0.1"),
                    fee=Decimal("0.1"),
                    changed_at=5_000,
                )
            ],
            full=True,
        )

        first, second = repo.load_by_symbol("BTCUSDT")
        assert first.calculated is not None
        assert first.calculated.entry_id == "t1"
        assert first.calculated.avg_price_after == Decimal("100")
        assert first.calculated.cumulative_pnl == Decimal("-0.1")
        assert second.calculated is None
        assert repo.load_page(None, 0, 1).entries[0].calculated is None
    finally:
        repo.close()
