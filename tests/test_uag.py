from __future__ import annotations

from decimal import Decimal
from pathlib import Path
import sys

from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from rco.errors import RecalculationInProgressError
from rco.service import TradingHistoryService
from uag.bootstrap import create_app
from uag.service import to_decimal_string

PREFIX = "/api/trading-history"
BASE_MS = 1_735_689_600_000


def _create_client(tmp_path: Path) -> TestClient:
    app = create_app(data_dir=str(tmp_path / "runtime" / "state" / "accounts"), default_account="main")
    return TestClient(app)


def _entry(entry_id: str, timestamp: int, side: str, size: str, price: str, **extra: str) -> dict:
    payload = {
        "id": entry_id,
        "timestamp": timestamp,
        "symbol": "BTCUSDT",
        "category": "linear",
        "side": side,
        "size": size,
        "price": price,
        "currency": "USDT",
    }
    payload.update(extra)
    return payload


SCENARIO = [
    _entry("t1", BASE_MS + 1_000, "Buy", "10", "100", fee="0.5"),
    _entry("t2", BASE_MS + 2_000, "Buy", "5", "110", fee="0.25"),
    _entry("t3", BASE_MS + 3_000, "Sell", "15", "120", fee="0.25"),
]


def test_bulk_save_and_entries_contract(tmp_path: Path) -> None:
    client = _create_client(tmp_path)
    try:
        first = client.post(f"{PREFIX}/trades/bulk", json={"entries": SCENARIO})
        second = client.post(f"{PREFIX}/trades/bulk", json={"entries": SCENARIO[:1]})

        assert first.status_code == 200
        payload = first.json()
        assert payload["success"] is True
        assert payload["data"] == {"received": 3, "inserted": 3}
        assert "requestId" in payload
        assert second.json()["data"]["inserted"] == 0

        page = client.get(f"{PREFIX}/entries", params={"startIndex": 0, "limit": 2, "baseAsset": "btc"})
        data = page.json()["data"]
        assert data["totalCount"] == 3
        assert [item["id"] for item in data["entries"]] == ["t3", "t2"]
        assert data["entries"][0]["price"] == "120"
        assert data["entries"][0]["feeCurrency"] == "USDT"
    finally:
        client.close()


def test_recalculate_and_aggregation_endpoints(tmp_path: Path) -> None:
    client = _create_client(tmp_path)
    try:
        client.post(f"{PREFIX}/trades/bulk", json={"entries": SCENARIO})

        response = client.post(f"{PREFIX}/recalculate", json={}, headers={"X-Request-Id": "req-recalc"})
        assert response.status_code == 200
        report = response.json()
        assert report["requestId"] == "req-recalc"
        assert report["data"]["mode"] == "full"
        assert report["data"]["processed"] == 3
        assert report["data"]["status"] == "CURRENT"
        assert report["data"]["warnings"] == []

        coins = client.get(f"{PREFIX}/summary/by-settle-coin").json()["data"]["items"]
        assert len(coins) == 1
        assert coins[0]["settleCoin"] == "USDT"
        assert Decimal(coins[0]["realizedPnl"]) == Decimal("250")
        assert Decimal(coins[0]["fees"]) == Decimal("1")
        assert Decimal(coins[0]["cumulativePnl"]) == Decimal("249")

        symbols = client.get(f"{PREFIX}/summary/by-symbol").json()["data"]["items"]
        assert symbols[0]["symbol"] == "BTCUSDT"
        assert symbols[0]["trades"] == 3
        assert Decimal(symbols[0]["totalQty"]) == Decimal("30")

        daily = client.get(
            f"{PREFIX}/daily-pnl",
            params={"fromTimestamp": BASE_MS, "toTimestamp": BASE_MS + 86_400_000},
        ).json()["data"]["items"]
        assert [(item["day"], item["settleCoin"]) for item in daily] == [("2025-01-01", "USDT")]
        assert Decimal(daily[0]["netPnl"]) == Decimal("249")
    finally:
        client.close()


def test_by_symbol_and_latest_meta_endpoints(tmp_path: Path) -> None:
    client = _create_client(tmp_path)
    try:
        client.post(
            f"{PREFIX}/trades/bulk",
            json={"entries": SCENARIO + [_entry("t4", BASE_MS + 3_000, "Buy", "1", "121")]},
        )

        by_symbol = client.get(f"{PREFIX}/by-symbol", params={"symbol": "btcusdt", "sinceTimestamp": BASE_MS + 2_000})
        data = by_symbol.json()["data"]
        assert data["count"] == 3
        assert [item["id"] for item in data["entries"]] == ["t2", "t3", "t4"]

        latest = client.get(f"{PREFIX}/latest-meta", params={"symbol": "BTCUSDT", "category": "linear"})
        assert latest.json()["data"] == {
            "symbol": "BTCUSDT",
            "timestamp": BASE_MS + 3_000,
            "idsAtTimestamp": ["t3", "t4"],
        }
    finally:
        client.close()


def test_meta_endpoints_use_optimistic_versioning(tmp_path: Path) -> None:
    client = _create_client(tmp_path)
    try:
        meta = client.get(f"{PREFIX}/meta").json()["data"]
        assert meta["version"] == 0
        assert meta["status"] == "CURRENT"

        saved = client.post(
            f"{PREFIX}/meta",
            json={
                "version": meta["version"],
                "registrationTimeMs": BASE_MS,
                "latestSyncedTimeMsByCategory": {"linear": BASE_MS + 5},
            },
        )
        assert saved.status_code == 200
        assert saved.json()["data"]["version"] == 1
        assert saved.json()["data"]["registrationTimeMs"] == BASE_MS

        stale = client.post(f"{PREFIX}/meta", json={"version": 0, "registrationTimeMs": BASE_MS})
        assert stale.status_code == 409
        error = stale.json()
        assert error["success"] is False
        assert error["error"]["code"] == "TLG_META_VERSION_CONFLICT"
    finally:
        client.close()


def test_accounts_are_isolated_by_header(tmp_path: Path) -> None:
    client = _create_client(tmp_path)
    try:
        client.post(f"{PREFIX}/trades/bulk", json={"entries": SCENARIO}, headers={"X-Account-Id": "alice"})

        alice = client.get(f"{PREFIX}/entries", headers={"X-Account-Id": "alice"}).json()["data"]
        main = client.get(f"{PREFIX}/entries").json()["data"]

        assert alice["totalCount"] == 3
        assert main["totalCount"] == 0
        assert (tmp_path / "runtime" / "state" / "accounts" / "alice.db").exists()
    finally:
        client.close()


def test_validation_errors_use_error_envelope(tmp_path: Path) -> None:
    client = _create_client(tmp_path)
    try:
        bad_account = client.get(f"{PREFIX}/meta", headers={"X-Account-Id": "../etc"})
        assert bad_account.status_code == 400
        assert bad_account.json()["error"]["code"] == "TLG_ACCOUNT_ID_INVALID"
        assert bad_account.json()["error"]["details"][0]["field"] == "accountId"

        bad_paging = client.get(f"{PREFIX}/entries", params={"startIndex": -1, "limit": 10})
        assert bad_paging.status_code == 400
        assert bad_paging.json()["error"]["code"] == "TLG_PAGING_INVALID"

        missing_symbol = client.get(f"{PREFIX}/latest-meta")
        assert missing_symbol.status_code == 400
        assert missing_symbol.json()["error"]["code"] == "TLG_SYMBOL_REQUIRED"
    finally:
        client.close()


def test_recalculation_in_progress_maps_to_conflict(tmp_path: Path, monkeypatch) -> None:
    def _busy(self, account_id, from_timestamp=None, *, cancel_event=None):
        raise RecalculationInProgressError(account_id)

    monkeypatch.setattr(TradingHistoryService, "recalculate", _busy)
    client = _create_client(tmp_path)
    try:
        response = client.post(f"{PREFIX}/recalculate", json={"fromTimestamp": BASE_MS})

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "RCO_RECALCULATION_IN_PROGRESS"
        assert error["retryable"] is True
    finally:
        client.close()


def test_storage_failure_maps_to_service_unavailable(tmp_path: Path) -> None:
    (tmp_path / "runtime" / "state" / "accounts" / "main.db").mkdir(parents=True)
    client = _create_client(tmp_path)
    try:
        response = client.get(f"{PREFIX}/summary/by-symbol")

        assert response.status_code == 503
        error = response.json()["error"]
        assert error["code"] == "TLG_PERSISTENCE_FAILURE"
        assert error["details"] == [{"field": "operation", "reason": "load_summary_by_symbol"}]
    finally:
        client.close()


def test_entries_carry_calculated_results_after_recalculation(tmp_path: Path) -> None:
    client = _create_client(tmp_path)
    try:
        client.post(
            f"{PREFIX}/trades/bulk",
            json={
                "entries": [
                    _entry("t1", BASE_MS + 1_000, "Buy", "1", "100", fee="0.1"),
                    _entry("t2", BASE_MS + 2_000, "Sell", "1", "120", fee="0.1"),
                ]
            },
        )

        before = client.get(f"{PREFIX}/entries").json()["data"]["entries"]
        assert [item["calculated"] for item in before] == [None, None]

        client.post(f"{PREFIX}/recalculate", json={})

        newest = client.get(f"{PREFIX}/entries").json()["data"]["entries"][0]
        assert newest["id"] == "t2"
        closed = newest["calculated"]
        assert closed["settleCoin"] == "USDT"
        assert Decimal(closed["sizeAfter"]) == Decimal("0")
        assert Decimal(closed["avgPriceAfter"]) == Decimal("0")
        assert Decimal(closed["realizedPnl"]) == Decimal("20")
        assert Decimal(closed["cumulativePnl"]) == Decimal("19.8")

        by_symbol = client.get(f"{PREFIX}/by-symbol", params={"symbol": "BTCUSDT"}).json()["data"]["entries"]
        opened = by_symbol[0]["calculated"]
        assert by_symbol[0]["id"] == "t1"
        assert Decimal(opened["sizeAfter"]) == Decimal("1")
        assert Decimal(opened["avgPriceAfter"]) == Decimal("100")
        assert Decimal(opened["realizedPnl"]) == Decimal("0")
        assert Decimal(opened["cumulativePnl"]) == Decimal("-0.1")
    finally:
        client.close()


def test_zero_decimal_strings_are_unsigned(tmp_path: Path) -> None:
    assert to_decimal_string(Decimal("-0E-10")) == "0.0000000000"
    assert to_decimal_string(Decimal("-0.5")) == "-0.5"

    client = _create_client(tmp_path)
    try:
        client.post(
            f"{PREFIX}/trades/bulk",
            json={
                "entries": [
                    _entry("t1", BASE_MS + 1_000, "Buy", "1", "100", fee="0.00000000004"),
                    _entry("t2", BASE_MS + 2_000, "Sell", "1", "100", fee="0.00000000004"),
                ]
            },
        )
        client.post(f"{PREFIX}/recalculate", json={})

        coins = client.get(f"{PREFIX}/summary/by-settle-coin").json()["data"]["items"]
        assert coins[0]["cumulativePnl"] == "0.0000000000"
        assert not coins[0]["netPnl"].startswith("-")
    finally:
        client.close()
