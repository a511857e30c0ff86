from __future__ import annotations

import os
from uuid import uuid4

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from rco.errors import RecalculationCancelledError, RecalculationInProgressError
from tlg.errors import LedgerPersistenceError, LedgerValidationError

from .models import (
    MetaSaveRequest,
    RecalculateRequest,
    TradesSaveRequest,
    build_error_envelope,
    build_success_envelope,
)
from .service import UagService, map_ledger_error

API_PREFIX = "/api/trading-history"


def _request_id(request: Request, header_value: str | None) -> str:
    if header_value:
        return header_value
    prior = getattr(request.state, "request_id", None)
    if prior:
        return prior
    request.state.request_id = f"req-{uuid4().hex[:12]}"
    return request.state.request_id


def create_app(
    *,
    data_dir: str | None = None,
    default_account: str | None = None,
) -> FastAPI:
    resolved_data_dir = data_dir or os.getenv("TLG_DATA_DIR", "runtime/state/accounts")
    resolved_account = default_account or os.getenv("TLG_DEFAULT_ACCOUNT", "default")

    app = FastAPI(title="Trade Ledger UAG", version="0.1.0")
    service = UagService(data_dir=resolved_data_dir)

    def _account(header_value: str | None) -> str:
        return header_value if header_value else resolved_account

    @app.exception_handler(LedgerValidationError)
    async def _handle_ledger_validation(request: Request, exc: LedgerValidationError) -> JSONResponse:
        request_id = _request_id(request, None)
        status_code, message = map_ledger_error(exc)
        payload = build_error_envelope(
            request_id=request_id,
            code=exc.code,
            message=message,
            details=[{"field": exc.field, "reason": str(exc.value)}],
            retryable=False,
        )
        return JSONResponse(status_code=status_code, content=payload)

    @app.exception_handler(RecalculationInProgressError)
    async def _handle_in_progress(request: Request, exc: RecalculationInProgressError) -> JSONResponse:
        payload = build_error_envelope(
            request_id=_request_id(request, None),
            code=exc.code,
            message="A recalculation is already running for this account.",
            retryable=True,
        )
        return JSONResponse(status_code=409, content=payload)

    @app.exception_handler(RecalculationCancelledError)
    async def _handle_cancelled(request: Request, exc: RecalculationCancelledError) -> JSONResponse:
        payload = build_error_envelope(
            request_id=_request_id(request, None),
            code=exc.code,
            message="Recalculation was cancelled before publishing.",
            retryable=True,
        )
        return JSONResponse(status_code=409, content=payload)

    @app.exception_handler(LedgerPersistenceError)
    async def _handle_persistence(request: Request, exc: LedgerPersistenceError) -> JSONResponse:
        payload = build_error_envelope(
            request_id=_request_id(request, None),
            code=exc.code,
            message="Trading history storage is unavailable.",
            details=[{"field": "operation", "reason": exc.operation}],
            retryable=True,
        )
        return JSONResponse(status_code=503, content=payload)

    @app.post(f"{API_PREFIX}/trades/bulk")
    def save_trades(
        body: TradesSaveRequest,
        request: Request,
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
        x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        data = service.save_trades(_account(x_account_id), body.entries)
        return build_success_envelope(request_id=request_id, data=data)

    @app.post(f"{API_PREFIX}/trades/replace")
    def replace_trades(
        body: TradesSaveRequest,
        request: Request,
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
        x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        data = service.replace_trades(_account(x_account_id), body.entries)
        return build_success_envelope(request_id=request_id, data=data)

    @app.get(f"{API_PREFIX}/entries")
    def load_entries(
        request: Request,
        base_asset: str | None = Query(default=None, alias="baseAsset"),
        start_index: int = Query(default=0, alias="startIndex"),
        limit: int = Query(default=100),
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
        x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        data = service.load_entries(
            _account(x_account_id),
            base_asset=base_asset,
            start_index=start_index,
            limit=limit,
        )
        return build_success_envelope(request_id=request_id, data=data)

    @app.get(f"{API_PREFIX}/by-symbol")
    def load_by_symbol(
        request: Request,
        symbol: str = Query(default=""),
        category: str | None = Query(default=None),
        since_timestamp: int | None = Query(default=None, alias="sinceTimestamp"),
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
        x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        data = service.load_by_symbol(
            _account(x_account_id),
            symbol=symbol,
            category=category,
            since_timestamp=since_timestamp,
        )
        return build_success_envelope(request_id=request_id, data=data)

    @app.get(f"{API_PREFIX}/summary/by-symbol")
    def summary_by_symbol(
        request: Request,
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
        x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        data = service.load_summary_by_symbol(_account(x_account_id))
        return build_success_envelope(request_id=request_id, data=data)

    @app.get(f"{API_PREFIX}/summary/by-settle-coin")
    def pnl_by_settle_coin(
        request: Request,
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
        x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        data = service.load_pnl_by_settle_coin(_account(x_account_id))
        return build_success_envelope(request_id=request_id, data=data)

    @app.get(f"{API_PREFIX}/daily-pnl")
    def daily_pnl(
        request: Request,
        from_timestamp: int = Query(alias="fromTimestamp"),
        to_timestamp: int = Query(alias="toTimestamp"),
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
        x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        data = service.load_daily_pnl(
            _account(x_account_id),
            from_timestamp=from_timestamp,
            to_timestamp=to_timestamp,
        )
        return build_success_envelope(request_id=request_id, data=data)

    @app.get(f"{API_PREFIX}/latest-meta")
    def latest_meta(
        request: Request,
        symbol: str = Query(default=""),
        category: str | None = Query(default=None),
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
        x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        data = service.load_latest_meta(_account(x_account_id), symbol=symbol, category=category)
        return build_success_envelope(request_id=request_id, data=data)

    @app.get(f"{API_PREFIX}/meta")
    def load_meta(
        request: Request,
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
        x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        data = service.load_meta(_account(x_account_id))
        return build_success_envelope(request_id=request_id, data=data)

    @app.post(f"{API_PREFIX}/meta")
    def save_meta(
        body: MetaSaveRequest,
        request: Request,
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
        x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        data = service.save_meta(_account(x_account_id), body)
        return build_success_envelope(request_id=request_id, data=data)

    @app.post(f"{API_PREFIX}/recalculate")
    def recalculate(
        body: RecalculateRequest,
        request: Request,
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
        x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        data = service.recalculate(_account(x_account_id), from_timestamp=body.fromTimestamp)
        return build_success_envelope(request_id=request_id, data=data)

    @app.exception_handler(HTTPException)
    async def _handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
        request_id = _request_id(request, None)
        message = str(exc.detail) if exc.detail else "Request could not be processed."
        payload = build_error_envelope(request_id=request_id, code="UAG_HTTP_ERROR", message=message)
        return JSONResponse(status_code=exc.status_code, content=payload)

    return app
