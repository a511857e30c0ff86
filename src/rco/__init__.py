from .errors import RecalculationCancelledError, RecalculationInProgressError
from .models import RecalcMode, RecalculationReport
from .planner import plan_recalculation
from .recalculator import Recalculator
from .service import TradingHistoryService, validate_account_id

__all__ = [
    "RecalcMode",
    "RecalculationCancelledError",
    "RecalculationInProgressError",
    "RecalculationReport",
    "Recalculator",
    "TradingHistoryService",
    "plan_recalculation",
    "validate_account_id",
]
