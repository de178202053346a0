from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class DailyAttendanceJobError(Exception):
    """Fatal failure of a tenant's daily run, raised before any summary is written."""

    def __init__(self, tenant_id: int, message: str):
        super().__init__(message)
        self.tenant_id = tenant_id
        self.message = message


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
