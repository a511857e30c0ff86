from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from tlg.models import DailyPnlRow, PnlByCoinRow, SummaryBySymbolRow, TradingHistoryMeta

ZERO = Decimal("0")


@dataclass
class _SummaryAccumulator:
    category: str
    symbol: str
    settle_coin: str
    trades: int = 0
    total_qty: Decimal = ZERO
    total_value: Decimal = ZERO
    total_fees: Decimal = ZERO
    realized_pnl: Decimal = ZERO

    def to_row(self) -> SummaryBySymbolRow:
        return SummaryBySymbolRow(
            category=self.category,
            symbol=self.symbol,
            settle_coin=self.settle_coin,
            trades=self.trades,
            total_qty=self.total_qty,
            total_value=self.total_value,
            total_fees=self.total_fees,
            realized_pnl=self.realized_pnl,
        )


def day_key(timestamp: int) -> str:
    if timestamp <= 0:
        return ""
    try:
        return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
    except (OverflowError, OSError, ValueError):
        return ""


def summary_by_symbol(
    rows: Iterable[tuple[str, str, str, Decimal, Decimal, Decimal, Decimal]],
) -> list[SummaryBySymbolRow]:
    """Group ``(category, symbol, settle_coin, size, price, fee, realized)`` rows."""
    summary: dict[tuple[str, str, str], _SummaryAccumulator] = {}
    for category, symbol, coin, size, price, fee, realized in rows:
        key = (category.lower(), symbol.upper(), coin.upper())
        accumulator = summary.get(key)
        if accumulator is None:
            accumulator = _SummaryAccumulator(category=category, symbol=symbol, settle_coin=coin)
            summary[key] = accumulator

        accumulator.trades += 1
        accumulator.total_qty += size
        accumulator.total_value += size * price
        accumulator.total_fees += fee
        accumulator.realized_pnl += realized

    return sorted(
        (accumulator.to_row() for accumulator in summary.values()),
        key=lambda row: (-row.trades, row.category.lower(), row.symbol.lower()),
    )


def pnl_by_settle_coin(
    rows: Iterable[tuple[str, Decimal, Decimal]],
    meta: TradingHistoryMeta,
) -> list[PnlByCoinRow]:
    realized_by_coin: dict[str, Decimal] = {}
    fees_by_coin: dict[str, Decimal] = {}
    for coin, fee, realized in rows:
        realized_by_coin[coin] = realized_by_coin.get(coin, ZERO) + realized
        fees_by_coin[coin] = fees_by_coin.get(coin, ZERO) + fee

    coins = set(realized_by_coin) | set(meta.cumulative_by_settle_coin)
    result: list[PnlByCoinRow] = []
    for coin in sorted(coins):
        realized = realized_by_coin.get(coin, ZERO)
        fees = fees_by_coin.get(coin, ZERO)
        result.append(
            PnlByCoinRow(
                settle_coin=coin,
                realized_pnl=realized,
                fees=fees,
                net_pnl=realized - fees,
                cumulative_pnl=meta.cumulative_by_settle_coin.get(coin, ZERO),
            )
        )
    return result


def daily_pnl(
    rows: Iterable[tuple[int, str, Decimal, Decimal]],
    from_timestamp: int,
    to_timestamp: int,
) -> list[DailyPnlRow]:
    """Bucket ``(timestamp, settle_coin, realized, fee)`` rows by UTC day."""
    if to_timestamp < from_timestamp:
        return []

    realized_by_key: dict[tuple[str, str], Decimal] = {}
    fees_by_key: dict[tuple[str, str], Decimal] = {}
    for timestamp, coin, realized, fee in rows:
        if timestamp < from_timestamp or timestamp > to_timestamp:
            continue
        day = day_key(timestamp)
        if not day:
            continue
        key = (day, coin)
        realized_by_key[key] = realized_by_key.get(key, ZERO) + realized
        fees_by_key[key] = fees_by_key.get(key, ZERO) + fee

    return [
        DailyPnlRow(
            day=day,
            settle_coin=coin,
            realized_pnl=realized_by_key[(day, coin)],
            fees=fees_by_key[(day, coin)],
            net_pnl=realized_by_key[(day, coin)] - fees_by_key[(day, coin)],
        )
        for day, coin in sorted(realized_by_key)
    ]
