from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from cba.models import OverClose
from tlg.models import MetaStatus

RecalcMode = Literal["full", "incremental", "dirty"]


@dataclass(frozen=True)
class RecalculationReport:
    mode: RecalcMode
    processed: int
    checkpoint: int | None
    status: MetaStatus
    meta_version: int
    duration_ms: int
    anomalies: list[OverClose] = field(default_factory=list)
