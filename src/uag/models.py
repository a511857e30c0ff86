from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class TradeEntryInput(BaseModel):
    id: str = Field(default="", max_length=128)
    timestamp: int = 0
    symbol: str = Field(min_length=1, max_length=64)
    category: str = Field(default="", max_length=32)
    side: str = Field(min_length=1, max_length=8)
    size: Decimal = Field(ge=0)
    price: Decimal = Field(ge=0)
    fee: Decimal = Decimal("0")
    currency: str = Field(default="", max_length=16)
    feeCurrency: str = Field(default="", max_length=16)
    transactionType: str = Field(default="TRADE", max_length=32)
    orderId: str = ""
    tradeId: str = ""
    rawJson: str = ""


class TradesSaveRequest(BaseModel):
    entries: list[TradeEntryInput] = Field(max_length=5000)


class MetaSaveRequest(BaseModel):
    version: int = Field(ge=0)
    registrationTimeMs: int | None = Field(default=None, ge=0)
    latestSyncedTimeMsByCategory: dict[str, int] = Field(default_factory=dict)


class RecalculateRequest(BaseModel):
    fromTimestamp: int | None = Field(default=None, ge=0)


def build_success_envelope(*, request_id: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "success": True,
        "requestId": request_id,
        "data": data,
        "meta": {"timestamp": datetime.now().astimezone().isoformat()},
    }


def build_error_envelope(
    *,
    request_id: str,
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    retryable: bool = False,
) -> dict[str, Any]:
    return {
        "success": False,
        "requestId": request_id,
        "error": {
            "code": code,
            "message": message,
            "retryable": retryable,
            "source": "UAG",
            "details": details or [],
        },
        "meta": {"timestamp": datetime.now().astimezone().isoformat()},
    }
