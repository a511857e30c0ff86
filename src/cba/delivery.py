from __future__ import annotations

import json
from decimal import Decimal, InvalidOperation

DELIVERY_PRICE_FIELDS = ("deliveryPrice", "tradePrice", "price", "execPrice")


def _read_decimal(payload: dict, *names: str) -> Decimal:
    for name in names:
        if name not in payload:
            continue
        value = payload[name]
        if isinstance(value, bool) or value is None:
            continue
        try:
            parsed = Decimal(str(value).strip())
        except InvalidOperation:
            continue
        if parsed.is_finite():
            return parsed
    return Decimal("0")


def parse_option_symbol(symbol: str) -> tuple[str, Decimal] | None:
    """Return ``(option_type, strike)`` for symbols like ``BTC-27JUN25-60000-C``."""
    parts = [part for part in (symbol or "").strip().upper().split("-") if part]
    for index, part in enumerate(parts):
        if part in {"C", "P"}:
            strike = Decimal("0")
            if index > 0:
                try:
                    strike = Decimal(parts[index - 1])
                except InvalidOperation:
                    strike = Decimal("0")
            return part, strike
    return None


def delivery_qty_and_price(symbol: str, raw_json: str, qty: Decimal, price: Decimal) -> tuple[Decimal, Decimal]:
    """Resolve the settled quantity and intrinsic price of an option delivery.

    Falls back to the recorded ``qty``/``price`` when the raw exchange payload
    is missing or unreadable.
    """
    if not raw_json or not raw_json.strip():
        return qty, price

    try:
        primary = json.loads(raw_json)
    except ValueError:
        return qty, price
    if isinstance(primary, list):
        primary = primary[0] if primary else None
    if not isinstance(primary, dict):
        return qty, price

    position = _read_decimal(primary, "position")
    delivery = _read_decimal(primary, *DELIVERY_PRICE_FIELDS)
    strike = _read_decimal(primary, "strike")

    option = parse_option_symbol(symbol)
    if option is not None:
        option_type, symbol_strike = option
        if strike == Decimal("0"):
            strike = symbol_strike
        if option_type == "C":
            price = max(delivery - strike, Decimal("0"))
        else:
            price = max(strike - delivery, Decimal("0"))

    if position != Decimal("0"):
        qty = abs(position)
    return qty, price
