from .calculator import apply_entries, apply_entry, round10, settle_coin
from .delivery import delivery_qty_and_price, parse_option_symbol
from .models import AccumulatorResult, CalculationState, OverClose

__all__ = [
    "AccumulatorResult",
    "CalculationState",
    "OverClose",
    "apply_entries",
    "apply_entry",
    "delivery_qty_and_price",
    "parse_option_symbol",
    "round10",
    "settle_coin",
]
