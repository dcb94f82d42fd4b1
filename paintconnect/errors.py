from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

STATUS_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "VALIDATION_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


def error_code_for_status(status_code: int) -> str:
    return STATUS_ERROR_CODES.get(status_code, "HTTP_ERROR")


def get_request_id(request: Request) -> str:
    return str(getattr(request.state, "request_id", None) or "unknown")


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    request_id = get_request_id(request)
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, "request_id": request_id}},
        headers={"X-Request-Id": request_id},
    )


def reminder_run_failure_response(request: Request, *, error: str, debug: list[str]) -> JSONResponse:
    """Scheduler-facing 500 body: cron callers read ``success`` and ``debug``, not the error envelope."""
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": error, "debug": list(debug)},
        headers={"X-Request-Id": get_request_id(request)},
    )
