from __future__ import annotations

from dataclasses import replace

from .models import DirtyReason, MetaStatus, TradeEntry, TradingHistoryMeta

ALLOWED_TRANSITIONS: dict[MetaStatus, set[MetaStatus]] = {
    "CURRENT": {"CURRENT", "STALE", "DIRTY"},
    "STALE": {"STALE", "DIRTY", "CURRENT"},
    "DIRTY": {"DIRTY", "CURRENT"},
}


def transition_meta_status(
    meta: TradingHistoryMeta,
    next_status: MetaStatus,
    *,
    reason: DirtyReason | None = None,
) -> TradingHistoryMeta:
    if next_status not in ALLOWED_TRANSITIONS[meta.status]:
        raise ValueError(f"invalid transition: {meta.status} -> {next_status}")
    if next_status == "DIRTY":
        # the first reason sticks until a recalculation clears it
        dirty_reason = meta.dirty_reason if meta.status == "DIRTY" and meta.dirty_reason else reason
    else:
        dirty_reason = None
    return replace(meta, status=next_status, dirty_reason=dirty_reason)


def is_out_of_order(meta: TradingHistoryMeta, entry: TradeEntry) -> bool:
    checkpoint = meta.calculated_through_timestamp
    if checkpoint is None:
        return False
    if entry.timestamp < checkpoint:
        return True
    if entry.timestamp == checkpoint:
        processed = meta.checkpoint_ids
        return bool(processed) and entry.id < max(processed)
    return False


def mark_ingested(meta: TradingHistoryMeta, inserted: list[TradeEntry]) -> TradingHistoryMeta:
    if not inserted:
        return meta
    if meta.status == "DIRTY":
        return meta
    if any(is_out_of_order(meta, entry) for entry in inserted):
        return transition_meta_status(meta, "DIRTY", reason="OUT_OF_ORDER")
    return transition_meta_status(meta, "STALE")
