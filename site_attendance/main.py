import asyncio
from contextlib import suppress
from datetime import datetime, timezone
import logging
import threading
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from site_attendance.db import engine
from site_attendance.errors import ApiError, error_response
from site_attendance.logging_utils import bind_request_context, reset_request_context, setup_json_logging
from site_attendance.routers import site_attendance
from site_attendance.services.scheduler import daily_job_worker_loop
from site_attendance.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from site_attendance.settings import get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(settings.log_level, service=settings.app_name)
logger = logging.getLogger("site_attendance.request")
job_logger = logging.getLogger("site_attendance.job")


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
    raw_tenant = (request.headers.get("X-Tenant-Id") or "").strip()
    tokens = bind_request_context(request_id, int(raw_tenant) if raw_tenant.isdigit() else None)

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
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "system"),
                "employee_id": getattr(request.state, "employee_id", None),
                "event_id": getattr(request.state, "event_id", None),
            },
        )
        reset_request_context(tokens)


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        400: "BAD_REQUEST",
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
        message=str(exc.errors()),
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


app.include_router(site_attendance.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        job_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    job_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def start_daily_job_worker() -> None:
    if not settings.daily_job_enabled:
        return
    if getattr(app.state, "daily_job_task", None) is not None:
        return

    stop_event = asyncio.Event()
    cancel_event = threading.Event()
    task = asyncio.create_task(daily_job_worker_loop(stop_event, cancel_event))
    app.state.daily_job_stop_event = stop_event
    app.state.daily_job_cancel_event = cancel_event
    app.state.daily_job_task = task
    job_logger.info(
        "daily_job_worker_started",
        extra={
            "interval_seconds": settings.daily_job_interval_seconds,
            "run_hour_utc": settings.daily_job_run_hour_utc,
        },
    )


@app.on_event("shutdown")
async def stop_daily_job_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "daily_job_stop_event", None)
    cancel_event: threading.Event | None = getattr(app.state, "daily_job_cancel_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "daily_job_task", None)
    if cancel_event is not None:
        cancel_event.set()
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.daily_job_stop_event = None
    app.state.daily_job_cancel_event = None
    app.state.daily_job_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "daily_job_worker_running": getattr(app.state, "daily_job_task", None) is not None,
    }
