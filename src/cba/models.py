from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from tlg.models import TradingHistoryMeta, TransactionCalculated


@dataclass
class CalculationState:
    size_by_symbol: dict[str, Decimal] = field(default_factory=dict)
    avg_price_by_symbol: dict[str, Decimal] = field(default_factory=dict)
    cumulative_by_settle_coin: dict[str, Decimal] = field(default_factory=dict)

    @classmethod
    def from_meta(cls, meta: TradingHistoryMeta) -> "CalculationState":
        return cls(
            size_by_symbol=dict(meta.size_by_symbol),
            avg_price_by_symbol=dict(meta.avg_price_by_symbol),
            cumulative_by_settle_coin=dict(meta.cumulative_by_settle_coin),
        )


@dataclass(frozen=True)
class OverClose:
    symbol: str
    category: str
    entry_id: str
    timestamp: int
    position_before: Decimal
    excess_qty: Decimal


@dataclass
class AccumulatorResult:
    calculations: list[TransactionCalculated] = field(default_factory=list)
    anomalies: list[OverClose] = field(default_factory=list)
