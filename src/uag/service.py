from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal
from pathlib import Path
from typing import Any

from rco.models import RecalculationReport
from rco.service import DEFAULT_DATA_DIR, TradingHistoryService
from tlg.errors import LedgerValidationError, MetaVersionConflictError
from tlg.models import TradeEntry, TradingHistoryMeta, TransactionCalculated

from .models import MetaSaveRequest, TradeEntryInput


class UagService:
    def __init__(self, *, data_dir: str | Path = DEFAULT_DATA_DIR) -> None:
        self._logger = logging.getLogger("tradeledger.uag")
        self.history = TradingHistoryService(data_dir=data_dir)

    def save_trades(self, account_id: str, items: list[TradeEntryInput]) -> dict[str, Any]:
        inserted = self.history.save_trades(account_id, [to_trade_entry(item) for item in items])
        return {"received": len(items), "inserted": inserted}

    def replace_trades(self, account_id: str, items: list[TradeEntryInput]) -> dict[str, Any]:
        self._logger.warning("Ledger replace requested: account=%s entries=%s", account_id, len(items))
        inserted = self.history.replace_trades(account_id, [to_trade_entry(item) for item in items])
        return {"received": len(items), "inserted": inserted}

    def load_entries(
        self,
        account_id: str,
        *,
        base_asset: str | None,
        start_index: int,
        limit: int,
    ) -> dict[str, Any]:
        page = self.history.load_entries(account_id, base_asset, start_index, limit)
        return {
            "entries": [entry_to_payload(entry) for entry in page.entries],
            "totalCount": page.total_count,
        }

    def load_by_symbol(
        self,
        account_id: str,
        *,
        symbol: str,
        category: str | None,
        since_timestamp: int | None,
    ) -> dict[str, Any]:
        entries = self.history.load_by_symbol(account_id, symbol, category, since_timestamp)
        return {
            "symbol": symbol,
            "count": len(entries),
            "entries": [entry_to_payload(entry) for entry in entries],
        }

    def load_summary_by_symbol(self, account_id: str) -> dict[str, Any]:
        rows = self.history.load_summary_by_symbol(account_id)
        return {
            "items": [
                {
                    "category": row.category,
                    "symbol": row.symbol,
                    "settleCoin": row.settle_coin,
                    "trades": row.trades,
                    "totalQty": to_decimal_string(row.total_qty),
                    "totalValue": to_decimal_string(row.total_value),
                    "totalFees": to_decimal_string(row.total_fees),
                    "realizedPnl": to_decimal_string(row.realized_pnl),
                }
                for row in rows
            ]
        }

    def load_pnl_by_settle_coin(self, account_id: str) -> dict[str, Any]:
        rows = self.history.load_pnl_by_settle_coin(account_id)
        return {
            "items": [
                {
                    "settleCoin": row.settle_coin,
                    "realizedPnl": to_decimal_string(row.realized_pnl),
                    "fees": to_decimal_string(row.fees),
                    "netPnl": to_decimal_string(row.net_pnl),
                    "cumulativePnl": to_decimal_string(row.cumulative_pnl),
                }
                for row in rows
            ]
        }

    def load_daily_pnl(self, account_id: str, *, from_timestamp: int, to_timestamp: int) -> dict[str, Any]:
        rows = self.history.load_daily_pnl(account_id, from_timestamp, to_timestamp)
        return {
            "fromTimestamp": from_timestamp,
            "toTimestamp": to_timestamp,
            "items": [
                {
                    "day": row.day,
                    "settleCoin": row.settle_coin,
                    "realizedPnl": to_decimal_string(row.realized_pnl),
                    "fees": to_decimal_string(row.fees),
                    "netPnl": to_decimal_string(row.net_pnl),
                }
                for row in rows
            ],
        }

    def load_latest_meta(self, account_id: str, *, symbol: str, category: str | None) -> dict[str, Any]:
        info = self.history.load_latest_meta(account_id, symbol, category)
        return {"symbol": symbol, "timestamp": info.timestamp, "idsAtTimestamp": list(info.ids)}

    def load_meta(self, account_id: str) -> dict[str, Any]:
        return self.history.load_meta(account_id).to_payload()

    def save_meta(self, account_id: str, body: MetaSaveRequest) -> dict[str, Any]:
        current = self.history.load_meta(account_id)
        requested: TradingHistoryMeta = replace(
            current,
            version=body.version,
            registration_time_ms=body.registrationTimeMs,
            latest_synced_time_ms_by_category=dict(body.latestSyncedTimeMsByCategory),
        )
        return self.history.save_meta(account_id, requested).to_payload()

    def recalculate(self, account_id: str, *, from_timestamp: int | None) -> dict[str, Any]:
        report = self.history.recalculate(account_id, from_timestamp)
        return report_to_payload(report)


def to_trade_entry(item: TradeEntryInput) -> TradeEntry:
    return TradeEntry(
        id=item.id,
        timestamp=item.timestamp,
        symbol=item.symbol,
        category=item.category,
        side=item.side,
        size=item.size,
        price=item.price,
        fee=item.fee,
        currency=item.currency,
        fee_currency=item.feeCurrency,
        transaction_type=item.transactionType,
        order_id=item.orderId,
        trade_id=item.tradeId,
        raw_json=item.rawJson,
    )


def entry_to_payload(entry: TradeEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "timestamp": entry.timestamp,
        "symbol": entry.symbol,
        "category": entry.category,
        "side": entry.side,
        "size": to_decimal_string(entry.size),
        "price": to_decimal_string(entry.price),
        "fee": to_decimal_string(entry.fee),
        "currency": entry.currency,
        "feeCurrency": entry.fee_currency,
        "transactionType": entry.transaction_type,
        "orderId": entry.order_id,
        "tradeId": entry.trade_id,
        "calculated": calculated_to_payload(entry.calculated),
    }


def calculated_to_payload(calculated: TransactionCalculated | None) -> dict[str, Any] | None:
    if calculated is None:
        return None
    return {
        "settleCoin": calculated.settle_coin,
        "sizeAfter": to_decimal_string(calculated.size_after),
        "avgPriceAfter": to_decimal_string(calculated.avg_price_after),
        "realizedPnl": to_decimal_string(calculated.realized_pnl),
        "cumulativePnl": to_decimal_string(calculated.cumulative_pnl),
        "fee": to_decimal_string(calculated.fee),
        "changedAt": calculated.changed_at,
    }


def report_to_payload(report: RecalculationReport) -> dict[str, Any]:
    return {
        "mode": report.mode,
        "processed": report.processed,
        "checkpoint": report.checkpoint,
        "status": report.status,
        "metaVersion": report.meta_version,
        "durationMs": report.duration_ms,
        "warnings": [
            {
                "code": "OVER_CLOSE",
                "symbol": anomaly.symbol,
                "entryId": anomaly.entry_id,
                "timestamp": anomaly.timestamp,
                "excessQty": to_decimal_string(anomaly.excess_qty),
            }
            for anomaly in report.anomalies
        ],
    }


def map_ledger_error(error: LedgerValidationError) -> tuple[int, str]:
    if isinstance(error, MetaVersionConflictError):
        return 409, "Meta document was changed by another writer."
    return 400, "Request validation failed."


def to_decimal_string(value: Decimal) -> str:
    if value.is_zero():
        value = value.copy_abs()
    return format(value, "f")
