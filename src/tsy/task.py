from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import replace
from typing import Callable

from rco.errors import RecalculationCancelledError
from rco.service import TradingHistoryService
from tlg.models import TradeEntry

from .errors import SyncRegistrationRequiredError
from .models import FeedPage, SyncConfig, SyncReport, TradeFeed
from .retry import execute_with_retry, is_retryable_feed_error

_logger = logging.getLogger("tradeledger.tsy")


def _now_ms() -> int:
    return int(time.time() * 1000)


class TradeSyncTask:
    """Pulls executed trades from an exchange feed into one account ledger.

    Each category is walked forward in fixed windows from its sync cursor
    (or the registration time) up to now. Pages are appended as they arrive;
    re-fetching a window is harmless because duplicates are ignored.
    """

    def __init__(
        self,
        *,
        feed: TradeFeed,
        service: TradingHistoryService,
        config: SyncConfig,
        now_ms_fn: Callable[[], int] | None = None,
        sleep_fn: Callable[[float], None] | None = None,
        rand_fn: Callable[[float, float], float] | None = None,
    ) -> None:
        self._feed = feed
        self._service = service
        self._config = config
        self._now_ms = now_ms_fn or _now_ms
        self._sleep_fn = sleep_fn or time.sleep
        self._rand_fn = rand_fn or random.uniform

    def run(self, cancel_event: threading.Event | None = None) -> SyncReport:
        account_id = self._config.account_id
        meta = self._service.load_meta(account_id)
        now_ms = self._now_ms()
        cursors = dict(meta.latest_synced_time_ms_by_category)
        report = SyncReport(account_id=account_id)

        for category in self._config.categories:
            start = cursors.get(category)
            if start is None:
                if meta.registration_time_ms is None:
                    raise SyncRegistrationRequiredError(category)
                start = meta.registration_time_ms
            cursors[category] = self._sync_category(category, start, now_ms, report, cancel_event)
            if report.cancelled:
                break

        current = self._service.load_meta(account_id)
        self._service.save_meta(account_id, replace(current, latest_synced_time_ms_by_category=cursors))
        report.cursors = cursors
        _logger.info(
            "Trade sync finished: account=%s pages=%s received=%s inserted=%s cancelled=%s",
            account_id,
            report.pages,
            report.received,
            report.inserted,
            report.cancelled,
        )

        if report.cancelled or not self._config.recalculate or report.inserted == 0:
            return report

        try:
            report.recalculation = self._service.recalculate(
                account_id,
                report.earliest_timestamp,
                cancel_event=cancel_event,
            )
        except RecalculationCancelledError:
            _logger.info("Recalculation after sync cancelled: account=%s", account_id)
            report.cancelled = True
        return report

    def _sync_category(
        self,
        category: str,
        start_ms: int,
        now_ms: int,
        report: SyncReport,
        cancel_event: threading.Event | None,
    ) -> int:
        cursor_ms = start_ms
        window_start = start_ms
        latest_seen: int | None = None

        while window_start < now_ms:
            window_end = min(window_start + self._config.window_ms, now_ms)
            page_cursor: str | None = None
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    report.cancelled = True
                    return cursor_ms

                page = self._fetch(category, window_start, window_end, page_cursor)
                report.pages += 1
                if page.entries:
                    entries = [self._with_category(entry, category) for entry in page.entries]
                    inserted = self._service.save_trades(self._config.account_id, entries)
                    report.received += len(entries)
                    report.inserted += inserted
                    page_latest = max(entry.timestamp for entry in entries)
                    latest_seen = page_latest if latest_seen is None else max(latest_seen, page_latest)
                    if inserted:
                        page_earliest = min(entry.timestamp for entry in entries)
                        if report.earliest_timestamp is None or page_earliest < report.earliest_timestamp:
                            report.earliest_timestamp = page_earliest

                if not page.next_cursor:
                    break
                page_cursor = page.next_cursor

            # resume at the last seen millisecond, not after it
            cursor_ms = latest_seen if latest_seen is not None else window_start
            window_start = window_end + 1

        return cursor_ms

    def _fetch(self, category: str, start_ms: int, end_ms: int, cursor: str | None) -> FeedPage:
        def operation() -> FeedPage:
            return self._feed.fetch_page(
                category=category,
                start_time_ms=start_ms,
                end_time_ms=end_ms,
                cursor=cursor,
                limit=self._config.page_limit,
            )

        def should_retry(exc: Exception, attempt: int) -> bool:
            retry = is_retryable_feed_error(exc, attempt)
            if retry:
                _logger.warning(
                    "Trade feed call failed, retrying: category=%s attempt=%s error=%s",
                    category,
                    attempt,
                    exc,
                )
            return retry

        return execute_with_retry(
            operation,
            should_retry=should_retry,
            attempts=self._config.retry_attempts,
            base_delay_seconds=self._config.retry_base_delay_seconds,
            max_delay_seconds=self._config.retry_max_delay_seconds,
            sleep_fn=self._sleep_fn,
            rand_fn=self._rand_fn,
        )

    @staticmethod
    def _with_category(entry: TradeEntry, category: str) -> TradeEntry:
        if entry.category:
            return entry
        return replace(entry, category=category)
