import asyncio
from contextlib import suppress
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.db import engine
from app.errors import ApiError, error_response
from app.logging_utils import setup_json_logging
from app.routers import leave, reports, settings as settings_router, time_events
from app.services.late_monitor import LateArrivalMonitor, LateTrackingState
from app.services.notifications import get_notification_channel_health, shutdown_notification_dispatcher
from app.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from app.settings import get_cors_origins, get_late_monitor_interval_seconds, get_settings

settings = get_settings()
setup_json_logging(settings.log_level, service=settings.app_name)
logger = logging.getLogger("app.request")
late_monitor_logger = logging.getLogger("app.late_monitor")

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.state.late_monitor = LateArrivalMonitor(LateTrackingState())


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "anonymous")
    request.state.actor_id = getattr(request.state, "actor_id", None)

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
                "actor": getattr(request.state, "actor", "anonymous"),
                "actor_id": getattr(request.state, "actor_id", None),
                "event_id": getattr(request.state, "event_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(request, status_code=exc.status_code, code=exc.code, message=exc.message)


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    code_map = {
        401: "INVALID_TOKEN",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
    }
    code = code_map.get(exc.status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(request, status_code=exc.status_code, code=code, message=message)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in item.get('loc', ()))}: {item.get('msg')}" for item in exc.errors()
    )
    return error_response(request, status_code=422, code="VALIDATION_ERROR", message=details or "Invalid request.")


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
    return error_response(request, status_code=500, code="INTERNAL_ERROR", message="Unexpected server error.")


app.include_router(reports.router)
app.include_router(time_events.router)
app.include_router(leave.router)
app.include_router(settings_router.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


async def _late_monitor_loop(monitor: LateArrivalMonitor, stop_event: asyncio.Event) -> None:
    interval_seconds = get_late_monitor_interval_seconds()
    while not stop_event.is_set():
        try:
            await asyncio.to_thread(monitor.run_tick, datetime.now(timezone.utc))
        except Exception:
            late_monitor_logger.exception("late_monitor_tick_failed")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        logger.info("schema_guard_ok", extra=result.to_dict())
        return

    logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        raise RuntimeError(f"Runtime schema guard failed: {'; '.join(result.issues)}")


@app.on_event("startup")
async def start_late_monitor() -> None:
    if not settings.late_monitor_enabled:
        late_monitor_logger.info("late_monitor_disabled")
        return
    if getattr(app.state, "late_monitor_task", None) is not None:
        return

    stop_event = asyncio.Event()
    app.state.late_monitor_stop_event = stop_event
    app.state.late_monitor_task = asyncio.create_task(_late_monitor_loop(app.state.late_monitor, stop_event))

    channel_health = get_notification_channel_health()
    missing_fields = channel_health["email"].get("missing_fields", [])
    if missing_fields:
        late_monitor_logger.warning(
            "notification_email_channel_not_configured",
            extra={"missing_fields": missing_fields},
        )
    late_monitor_logger.info(
        "late_monitor_started",
        extra={
            "interval_seconds": get_late_monitor_interval_seconds(),
            "channel_health": channel_health,
        },
    )


@app.on_event("shutdown")
async def stop_late_monitor() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "late_monitor_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "late_monitor_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.late_monitor_stop_event = None
    app.state.late_monitor_task = None
    await asyncio.to_thread(shutdown_notification_dispatcher)


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    monitor: LateArrivalMonitor = app.state.late_monitor
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "notification_channels": get_notification_channel_health(),
        "late_monitor": {
            "enabled": bool(settings.late_monitor_enabled),
            "running": getattr(app.state, "late_monitor_task", None) is not None,
            **monitor.status(),
        },
    }
