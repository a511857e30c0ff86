from __future__ import annotations


class TradeFeedError(RuntimeError):
    def __init__(self, code: str, message: str, *, retryable: bool = False) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.retryable = retryable


class SyncRegistrationRequiredError(RuntimeError):
    code = "TSY_REGISTRATION_REQUIRED"

    def __init__(self, category: str) -> None:
        super().__init__(f"{self.code}: category={category}")
        self.category = category
