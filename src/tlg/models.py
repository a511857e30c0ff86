from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Literal

MetaStatus = Literal["CURRENT", "STALE", "DIRTY"]
DirtyReason = Literal["OUT_OF_ORDER", "GAP", "OVER_CLOSE", "LEDGER_REPLACED"]

ZERO = Decimal("0")


@dataclass(frozen=True)
class TradeEntry:
    id: str
    timestamp: int
    symbol: str
    category: str
    side: str
    size: Decimal
    price: Decimal
    fee: Decimal = ZERO
    currency: str = ""
    fee_currency: str = ""
    transaction_type: str = "TRADE"
    order_id: str = ""
    trade_id: str = ""
    raw_json: str = ""
    calculated: TransactionCalculated | None = field(default=None, compare=False, repr=False)

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.timestamp, self.id)

    @property
    def is_sell(self) -> bool:
        return self.side.strip().upper() == "SELL"

    @property
    def signed_qty(self) -> Decimal:
        return -self.size if self.is_sell else self.size


@dataclass(frozen=True)
class TransactionCalculated:
    entry_id: str
    timestamp: int
    symbol: str
    settle_coin: str
    size_after: Decimal
    avg_price_after: Decimal
    realized_pnl: Decimal
    cumulative_pnl: Decimal
    fee: Decimal
    changed_at: int


@dataclass(frozen=True)
class LatestInfo:
    timestamp: int | None = None
    ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class HistoryPage:
    entries: list[TradeEntry] = field(default_factory=list)
    total_count: int = 0


@dataclass(frozen=True)
class ReconciliationWarning:
    code: str
    symbol: str
    entry_id: str
    timestamp: int
    excess_qty: Decimal

    def to_payload(self) -> dict[str, object]:
        return {
            "code": self.code,
            "symbol": self.symbol,
            "entryId": self.entry_id,
            "timestamp": self.timestamp,
            "excessQty": str(self.excess_qty),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, object]) -> "ReconciliationWarning":
        return cls(
            code=str(payload.get("code", "")),
            symbol=str(payload.get("symbol", "")),
            entry_id=str(payload.get("entryId", "")),
            timestamp=int(payload.get("timestamp", 0) or 0),
            excess_qty=Decimal(str(payload.get("excessQty", "0"))),
        )


@dataclass(frozen=True)
class TradingHistoryMeta:
    """Memo of the accumulator fold through ``calculated_through_timestamp``.

    Never mutated in place: writers build a new instance with
    ``dataclasses.replace`` and publish it as a whole.
    """

    version: int = 0
    registration_time_ms: int | None = None
    latest_synced_time_ms_by_category: dict[str, int] = field(default_factory=dict)
    size_by_symbol: dict[str, Decimal] = field(default_factory=dict)
    avg_price_by_symbol: dict[str, Decimal] = field(default_factory=dict)
    cumulative_by_settle_coin: dict[str, Decimal] = field(default_factory=dict)
    calculated_through_timestamp: int | None = None
    ids_at_checkpoint: dict[str, list[str]] = field(default_factory=dict)
    processed_count: int = 0
    status: MetaStatus = "CURRENT"
    dirty_reason: DirtyReason | None = None
    warnings: list[ReconciliationWarning] = field(default_factory=list)

    @property
    def requires_recalculation(self) -> bool:
        return self.status != "CURRENT"

    @property
    def checkpoint_ids(self) -> set[str]:
        return {entry_id for ids in self.ids_at_checkpoint.values() for entry_id in ids}

    def to_payload(self) -> dict[str, object]:
        return {
            "version": self.version,
            "registrationTimeMs": self.registration_time_ms,
            "latestSyncedTimeMsByCategory": dict(self.latest_synced_time_ms_by_category),
            "sizeBySymbol": {key: str(value) for key, value in self.size_by_symbol.items()},
            "avgPriceBySymbol": {key: str(value) for key, value in self.avg_price_by_symbol.items()},
            "cumulativeBySettleCoin": {key: str(value) for key, value in self.cumulative_by_settle_coin.items()},
            "calculatedThroughTimestamp": self.calculated_through_timestamp,
            "idsAtCheckpoint": {key: list(value) for key, value in self.ids_at_checkpoint.items()},
            "processedCount": self.processed_count,
            "status": self.status,
            "dirtyReason": self.dirty_reason,
            "requiresRecalculation": self.requires_recalculation,
            "warnings": [warning.to_payload() for warning in self.warnings],
        }

    @classmethod
    def from_payload(cls, payload: dict[str, object]) -> "TradingHistoryMeta":
        def _decimals(raw: object) -> dict[str, Decimal]:
            if not isinstance(raw, dict):
                return {}
            return {str(key).upper(): Decimal(str(value)) for key, value in raw.items()}

        synced = payload.get("latestSyncedTimeMsByCategory") or {}
        ids = payload.get("idsAtCheckpoint") or {}
        warnings = payload.get("warnings") or []
        through = payload.get("calculatedThroughTimestamp")
        registration = payload.get("registrationTimeMs")

        return cls(
            version=int(payload.get("version", 0) or 0),
            registration_time_ms=int(registration) if registration is not None else None,
            latest_synced_time_ms_by_category={str(key): int(value) for key, value in dict(synced).items()},
            size_by_symbol=_decimals(payload.get("sizeBySymbol")),
            avg_price_by_symbol=_decimals(payload.get("avgPriceBySymbol")),
            cumulative_by_settle_coin=_decimals(payload.get("cumulativeBySettleCoin")),
            calculated_through_timestamp=int(through) if through is not None else None,
            ids_at_checkpoint={str(key).upper(): [str(item) for item in value] for key, value in dict(ids).items()},
            processed_count=int(payload.get("processedCount", 0) or 0),
            status=str(payload.get("status", "CURRENT")),  # type: ignore[arg-type]
            dirty_reason=payload.get("dirtyReason"),  # type: ignore[arg-type]
            warnings=[ReconciliationWarning.from_payload(item) for item in warnings if isinstance(item, dict)],
        )


@dataclass(frozen=True)
class SummaryBySymbolRow:
    category: str
    symbol: str
    settle_coin: str
    trades: int
    total_qty: Decimal
    total_value: Decimal
    total_fees: Decimal
    realized_pnl: Decimal


@dataclass(frozen=True)
class PnlByCoinRow:
    settle_coin: str
    realized_pnl: Decimal
    fees: Decimal
    net_pnl: Decimal
    cumulative_pnl: Decimal


@dataclass(frozen=True)
class DailyPnlRow:
    day: str
    settle_coin: str
    realized_pnl: Decimal
    fees: Decimal
    net_pnl: Decimal
