from __future__ import annotations

from decimal import ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal, localcontext
from typing import Iterable

from tlg.models import TradeEntry, TransactionCalculated

from .delivery import delivery_qty_and_price
from .models import AccumulatorResult, CalculationState, OverClose

PRECISION = 38
QTY_Q = Decimal("0.0000000001")
FLAT_EPSILON = Decimal("0.000000001")
ZERO = Decimal("0")
UNKNOWN_SETTLE_COIN = "_UNKNOWN"
# a negative position in these categories means earlier trades are missing;
# derivative categories flip into the opposite side without an anomaly
NO_SHORT_CATEGORIES = frozenset({"spot"})


def round10(value: Decimal) -> Decimal:
    return value.quantize(QTY_Q, rounding=ROUND_HALF_UP)


def sign(value: Decimal) -> int:
    if value > ZERO:
        return 1
    if value < ZERO:
        return -1
    return 0


def settle_coin(currency: str | None) -> str:
    text = (currency or "").strip().upper()
    return text or UNKNOWN_SETTLE_COIN


def position_key(symbol: str) -> str:
    return (symbol or "").strip().upper()


def effective_qty_and_price(entry: TradeEntry) -> tuple[Decimal, Decimal]:
    qty = round10(entry.size)
    price = entry.price
    transaction_type = entry.transaction_type.strip().upper() or "TRADE"

    if transaction_type == "SETTLEMENT":
        return ZERO, ZERO
    if transaction_type == "DELIVERY":
        return delivery_qty_and_price(entry.symbol, entry.raw_json, qty, price)
    if transaction_type != "TRADE":
        return ZERO, price
    return qty, price


def apply_entry(
    entry: TradeEntry,
    state: CalculationState,
    *,
    changed_at: int,
) -> tuple[TransactionCalculated, OverClose | None]:
    """Fold one trade into ``state`` with weighted-average-cost accounting.

    Works on the cash form of the position: closing quantity leaves at the
    old average, opening quantity enters at the trade price, so a flip opens
    the residual at the trade price and a full close resets the average.
    Fees reduce cumulative PnL only.
    """
    with localcontext() as ctx:
        ctx.prec = PRECISION
        ctx.rounding = ROUND_HALF_EVEN

        qty, price = effective_qty_and_price(entry)
        qty_signed = round10(-qty if entry.is_sell else qty)

        key = position_key(entry.symbol)
        pos_before = round10(state.size_by_symbol.get(key, ZERO))
        avg_before = state.avg_price_by_symbol.get(key, ZERO)

        trade_sign = sign(qty_signed)
        close_qty = ZERO
        if trade_sign == -sign(pos_before):
            close_qty = round10(min(abs(qty_signed), abs(pos_before)))
        open_qty = round10(qty_signed - trade_sign * close_qty)

        cash_before = -avg_before * pos_before
        cash_after = cash_before + (-avg_before * close_qty * trade_sign) + (-price * open_qty)
        pos_after = round10(pos_before + qty_signed)
        avg_after = ZERO if abs(pos_after) < FLAT_EPSILON else -cash_after / pos_after

        realized = ZERO
        if close_qty != ZERO:
            if pos_before > ZERO:
                realized = round10((price - avg_before) * close_qty)
            else:
                realized = round10((avg_before - price) * close_qty)

        fee = round10(entry.fee)
        coin = settle_coin(entry.currency)
        cumulative_after = round10(state.cumulative_by_settle_coin.get(coin, ZERO) + realized - fee)

    state.size_by_symbol[key] = pos_after
    state.avg_price_by_symbol[key] = avg_after
    state.cumulative_by_settle_coin[coin] = cumulative_after

    anomaly: OverClose | None = None
    if entry.category.strip().lower() in NO_SHORT_CATEGORIES and open_qty < ZERO:
        anomaly = OverClose(
            symbol=key,
            category=entry.category,
            entry_id=entry.id,
            timestamp=entry.timestamp,
            position_before=pos_before,
            excess_qty=abs(open_qty),
        )

    calculated = TransactionCalculated(
        entry_id=entry.id,
        timestamp=entry.timestamp,
        symbol=key,
        settle_coin=coin,
        size_after=pos_after,
        avg_price_after=avg_after,
        realized_pnl=realized,
        cumulative_pnl=cumulative_after,
        fee=fee,
        changed_at=changed_at,
    )
    return calculated, anomaly


def apply_entries(
    entries: Iterable[TradeEntry],
    state: CalculationState,
    *,
    changed_at: int = 0,
) -> AccumulatorResult:
    result = AccumulatorResult()
    for entry in sorted(entries, key=lambda item: item.sort_key):
        calculated, anomaly = apply_entry(entry, state, changed_at=changed_at)
        result.calculations.append(calculated)
        if anomaly is not None:
            result.anomalies.append(anomaly)
    return result
