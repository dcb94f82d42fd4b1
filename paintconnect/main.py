import asyncio
from contextlib import suppress
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from paintconnect.errors import ApiError, error_code_for_status, error_response
from paintconnect.logging_utils import setup_json_logging
from paintconnect.routers import cron, push
from paintconnect.services.reminders import ReminderRunError
from paintconnect.settings import get_cors_origins, get_settings, is_push_enabled

settings = get_settings()
setup_json_logging(settings.log_level, service=settings.app_name)
logger = logging.getLogger("paintconnect.request")
reminder_worker_logger = logging.getLogger("paintconnect.reminder_worker")

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
            },
        )


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
    code = error_code_for_status(status_code)
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


app.include_router(cron.router)
app.include_router(push.router)


async def _reminder_worker_loop(stop_event: asyncio.Event) -> None:
    interval_seconds = max(15, int(settings.reminder_worker_interval_seconds))
    while not stop_event.is_set():
        try:
            dispatcher = cron.get_reminder_dispatcher()
            result = await asyncio.to_thread(dispatcher.run)
        except ReminderRunError as exc:
            reminder_worker_logger.error(
                "reminder_worker_tick_failed",
                extra={"error": exc.message, "debug": exc.debug},
            )
        except Exception:
            reminder_worker_logger.exception("reminder_worker_tick_failed")
        else:
            if result.check_in_reminders_sent or result.check_out_reminders_sent:
                reminder_worker_logger.info(
                    "reminder_worker_tick",
                    extra={
                        "projects_checked": result.projects_checked,
                        "check_in_reminders_sent": result.check_in_reminders_sent,
                        "check_out_reminders_sent": result.check_out_reminders_sent,
                    },
                )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def start_reminder_worker() -> None:
    if not settings.reminder_worker_enabled:
        return
    if getattr(app.state, "reminder_worker_task", None) is not None:
        return

    stop_event = asyncio.Event()
    task = asyncio.create_task(_reminder_worker_loop(stop_event))
    app.state.reminder_worker_stop_event = stop_event
    app.state.reminder_worker_task = task
    if not is_push_enabled():
        reminder_worker_logger.warning(
            "reminder_push_channel_not_configured",
            extra={"push_provider": settings.push_provider},
        )
    reminder_worker_logger.info(
        "reminder_worker_started",
        extra={"interval_seconds": max(15, int(settings.reminder_worker_interval_seconds))},
    )


@app.on_event("shutdown")
async def stop_reminder_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "reminder_worker_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "reminder_worker_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.reminder_worker_stop_event = None
    app.state.reminder_worker_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "push": {
            "provider": settings.push_provider,
            "enabled": is_push_enabled(),
        },
        "reminder_worker_enabled": settings.reminder_worker_enabled,
        "reminder_timezone": settings.reminder_timezone,
    }
