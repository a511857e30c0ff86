from .errors import SyncRegistrationRequiredError, TradeFeedError
from .models import FeedPage, SyncConfig, SyncReport, TradeFeed
from .retry import execute_with_retry
from .task import TradeSyncTask

__all__ = [
    "FeedPage",
    "SyncConfig",
    "SyncRegistrationRequiredError",
    "SyncReport",
    "TradeFeed",
    "TradeFeedError",
    "TradeSyncTask",
    "execute_with_retry",
]
