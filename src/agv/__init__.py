from .views import daily_pnl, day_key, pnl_by_settle_coin, summary_by_symbol

__all__ = [
    "daily_pnl",
    "day_key",
    "pnl_by_settle_coin",
    "summary_by_symbol",
]
