from __future__ import annotations

import logging

from tlg.models import TradingHistoryMeta

from .models import RecalcMode

_logger = logging.getLogger("tradeledger.rco")


def plan_recalculation(
    meta: TradingHistoryMeta,
    from_timestamp: int | None,
    ledger_count_through_checkpoint: int,
) -> RecalcMode:
    """Decide how much of the ledger the next pass has to fold.

    ``from_timestamp`` is the earliest timestamp a caller knows to have
    changed. Anything that might invalidate the memo before the checkpoint
    escalates to a pass from the zero state.
    """
    if from_timestamp is None:
        return "full"
    if meta.registration_time_ms is not None and from_timestamp < meta.registration_time_ms:
        return "full"
    if meta.status == "DIRTY":
        return "dirty"
    if meta.calculated_through_timestamp is None:
        return "full"
    if ledger_count_through_checkpoint != meta.processed_count:
        _logger.warning(
            "Ledger gap detected before checkpoint=%s: ledger=%s processed=%s",
            meta.calculated_through_timestamp,
            ledger_count_through_checkpoint,
            meta.processed_count,
        )
        return "dirty"
    return "incremental"
