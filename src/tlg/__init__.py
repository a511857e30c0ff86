from .bootstrap import initialize_database
from .errors import (
    AccountIdInvalidError,
    LedgerPersistenceError,
    LedgerValidationError,
    MetaVersionConflictError,
    PagingInvalidError,
    SymbolRequiredError,
    TimeRangeInvalidError,
)
from .models import (
    DailyPnlRow,
    HistoryPage,
    LatestInfo,
    PnlByCoinRow,
    ReconciliationWarning,
    SummaryBySymbolRow,
    TradeEntry,
    TradingHistoryMeta,
    TransactionCalculated,
)
from .repository import LedgerRepository

__all__ = [
    "initialize_database",
    "LedgerRepository",
    "TradeEntry",
    "TransactionCalculated",
    "TradingHistoryMeta",
    "ReconciliationWarning",
    "LatestInfo",
    "HistoryPage",
    "SummaryBySymbolRow",
    "PnlByCoinRow",
    "DailyPnlRow",
    "LedgerValidationError",
    "AccountIdInvalidError",
    "PagingInvalidError",
    "SymbolRequiredError",
    "TimeRangeInvalidError",
    "MetaVersionConflictError",
    "LedgerPersistenceError",
]
