from __future__ import annotations

import random
import time
from typing import Callable, TypeVar

ResultT = TypeVar("ResultT")


def execute_with_retry(
    operation: Callable[[], ResultT],
    *,
    should_retry: Callable[[Exception, int], bool],
    attempts: int = 3,
    base_delay_seconds: float = 0.5,
    max_delay_seconds: float = 5.0,
    sleep_fn: Callable[[float], None] = time.sleep,
    rand_fn: Callable[[float, float], float] = random.uniform,
) -> ResultT:
    """Call ``operation`` until it succeeds, backing off exponentially with jitter."""
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except Exception as exc:
            if attempt >= attempts or not should_retry(exc, attempt):
                raise
            delay = min(base_delay_seconds * (2 ** (attempt - 1)), max_delay_seconds)
            sleep_fn(delay + rand_fn(0.0, 0.1))
    raise RuntimeError("retry operation ran with no attempts")


def is_retryable_feed_error(exc: Exception, _attempt: int) -> bool:
    return bool(getattr(exc, "retryable", False)) or isinstance(exc, (TimeoutError, ConnectionError))
