from __future__ import annotations


class RecalculationInProgressError(RuntimeError):
    code = "RCO_RECALCULATION_IN_PROGRESS"

    def __init__(self, account_id: str) -> None:
        super().__init__(f"{self.code}: account={account_id}")
        self.account_id = account_id


class RecalculationCancelledError(RuntimeError):
    code = "RCO_RECALCULATION_CANCELLED"

    def __init__(self, processed: int) -> None:
        super().__init__(f"{self.code}: processed={processed}")
        self.processed = processed
