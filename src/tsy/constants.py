from __future__ import annotations

SYNC_WINDOW_MS = 7 * 24 * 60 * 60 * 1000
SYNC_PAGE_LIMIT = 100
SYNC_CATEGORIES = ("linear", "inverse", "spot", "option")

SYNC_RETRY_ATTEMPTS = 3
SYNC_RETRY_BASE_DELAY_SECONDS = 0.5
SYNC_RETRY_MAX_DELAY_SECONDS = 5.0
