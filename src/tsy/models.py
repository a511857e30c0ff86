from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from rco.models import RecalculationReport
from tlg.models import TradeEntry

from .constants import (
    SYNC_CATEGORIES,
    SYNC_PAGE_LIMIT,
    SYNC_RETRY_ATTEMPTS,
    SYNC_RETRY_BASE_DELAY_SECONDS,
    SYNC_RETRY_MAX_DELAY_SECONDS,
    SYNC_WINDOW_MS,
)


@dataclass(frozen=True)
class FeedPage:
    entries: list[TradeEntry] = field(default_factory=list)
    next_cursor: str | None = None


class TradeFeed(Protocol):
    def fetch_page(
        self,
        *,
        category: str,
        start_time_ms: int,
        end_time_ms: int,
        cursor: str | None,
        limit: int,
    ) -> FeedPage:
        ...


@dataclass(frozen=True)
class SyncConfig:
    account_id: str
    categories: tuple[str, ...] = SYNC_CATEGORIES
    window_ms: int = SYNC_WINDOW_MS
    page_limit: int = SYNC_PAGE_LIMIT
    retry_attempts: int = SYNC_RETRY_ATTEMPTS
    retry_base_delay_seconds: float = SYNC_RETRY_BASE_DELAY_SECONDS
    retry_max_delay_seconds: float = SYNC_RETRY_MAX_DELAY_SECONDS
    recalculate: bool = True


@dataclass
class SyncReport:
    account_id: str
    pages: int = 0
    received: int = 0
    inserted: int = 0
    cursors: dict[str, int] = field(default_factory=dict)
    earliest_timestamp: int | None = None
    cancelled: bool = False
    recalculation: RecalculationReport | None = None
