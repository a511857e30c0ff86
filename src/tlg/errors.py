from __future__ import annotations


class LedgerValidationError(ValueError):
    def __init__(self, code: str, field: str, value: object) -> None:
        super().__init__(f"{code}: field={field}, value={value}")
        self.code = code
        self.field = field
        self.value = value


class AccountIdInvalidError(LedgerValidationError):
    def __init__(self, field: str, value: object) -> None:
        super().__init__("TLG_ACCOUNT_ID_INVALID", field, value)


class PagingInvalidError(LedgerValidationError):
    def __init__(self, field: str, value: object) -> None:
        super().__init__("TLG_PAGING_INVALID", field, value)


class SymbolRequiredError(LedgerValidationError):
    def __init__(self, field: str, value: object) -> None:
        super().__init__("TLG_SYMBOL_REQUIRED", field, value)


class TimeRangeInvalidError(LedgerValidationError):
    def __init__(self, field: str, value: object) -> None:
        super().__init__("TLG_TIME_RANGE_INVALID", field, value)


class MetaVersionConflictError(LedgerValidationError):
    def __init__(self, field: str, value: object) -> None:
        super().__init__("TLG_META_VERSION_CONFLICT", field, value)


class LedgerPersistenceError(RuntimeError):
    code = "TLG_PERSISTENCE_FAILURE"

    def __init__(self, operation: str, cause: Exception) -> None:
        super().__init__(f"{self.code}: operation={operation}, cause={cause}")
        self.operation = operation
        self.cause = cause
