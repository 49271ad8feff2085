import asyncio
from contextlib import suppress
from datetime import date, datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ledger.db import SessionLocal, engine
from ledger.errors import ApiError, error_response
from ledger.logging_utils import setup_json_logging
from ledger.routers import admin, attendance
from ledger.services.reconciliation import (
    due_sweep_day,
    last_swept_day_from_audit,
    run_reconciliation_sweep,
)
from ledger.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from ledger.settings import get_cors_origins, get_settings
from ledger.timezones import local_day_from_utc

settings = get_settings()
setup_json_logging(settings.app_name, settings.log_level)
logger = logging.getLogger("ledger.request")
reconciliation_worker_logger = logging.getLogger("ledger.reconciliation_worker")


app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "system")
    request.state.actor_id = getattr(request.state, "actor_id", "system")

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "system"),
                "actor_id": getattr(request.state, "actor_id", "system"),
                "user_id": getattr(request.state, "user_id", None),
                "event_id": getattr(request.state, "event_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "api_error",
            extra={
                "request_id": getattr(request.state, "request_id", "unknown"),
                "code": exc.code,
                "path": request.url.path,
            },
        )
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message="Request validation failed.",
        details={
            "errors": [
                {"loc": list(item.get("loc", ())), "msg": str(item.get("msg", "")), "type": str(item.get("type", ""))}
                for item in exc.errors()
            ]
        },
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(attendance.router)
app.include_router(admin.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


def _load_last_swept_day() -> date | None:
    with SessionLocal() as db:
        return last_swept_day_from_audit(db)


async def _reconciliation_worker_loop(stop_event: asyncio.Event) -> None:
    interval_seconds = max(5, int(settings.reconciliation_worker_interval_seconds))
    last_swept_day: date | None = None
    seeded = False
    while not stop_event.is_set():
        report = None
        try:
            if not seeded:
                last_swept_day = await asyncio.to_thread(_load_last_swept_day)
                seeded = True
                reconciliation_worker_logger.info(
                    "reconciliation_worker_seeded",
                    extra={"last_swept_day": last_swept_day.isoformat() if last_swept_day else None},
                )
            now_utc = datetime.now(timezone.utc)
            target_day = due_sweep_day(now_utc, last_swept_day)
            if target_day is not None:
                report = await asyncio.to_thread(run_reconciliation_sweep, now_utc, None, day_date=target_day)
        except Exception:
            reconciliation_worker_logger.exception("reconciliation_worker_tick_failed")
        else:
            if report is not None:
                last_swept_day = report.day_date
                if report.failed_user_ids:
                    reconciliation_worker_logger.error(
                        "reconciliation_worker_partial_failure",
                        extra=report.to_dict(),
                    )
                else:
                    reconciliation_worker_logger.info(
                        "reconciliation_worker_tick",
                        extra=report.to_dict(),
                    )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        logger.info(
            "schema_guard_ok",
            extra=result.to_dict(),
        )
        return

    logger.error(
        "schema_guard_failed",
        extra=result.to_dict(),
    )
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def start_reconciliation_worker() -> None:
    if not settings.reconciliation_worker_enabled:
        return
    if getattr(app.state, "reconciliation_worker_task", None) is not None:
        return

    stop_event = asyncio.Event()
    task = asyncio.create_task(_reconciliation_worker_loop(stop_event))
    app.state.reconciliation_worker_stop_event = stop_event
    app.state.reconciliation_worker_task = task
    reconciliation_worker_logger.info(
        "reconciliation_worker_started",
        extra={
            "interval_seconds": max(5, int(settings.reconciliation_worker_interval_seconds)),
            "cutoff": settings.reconciliation_cutoff.strftime("%H:%M"),
            "timezone": settings.attendance_timezone,
            "local_day": local_day_from_utc(datetime.now(timezone.utc)).isoformat(),
        },
    )


@app.on_event("shutdown")
async def stop_reconciliation_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "reconciliation_worker_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "reconciliation_worker_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.reconciliation_worker_stop_event = None
    app.state.reconciliation_worker_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    worker_task = getattr(app.state, "reconciliation_worker_task", None)
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "reconciliation_worker": {
            "enabled": settings.reconciliation_worker_enabled,
            "running": worker_task is not None and not worker_task.done(),
            "cutoff": settings.reconciliation_cutoff.strftime("%H:%M"),
        },
    }
