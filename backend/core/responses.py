# backend/core/responses.py
from datetime import datetime, timezone
from typing import Any

from fastapi.responses import JSONResponse


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_response(error: str, message: str, status_code: int = 500, **fields: Any) -> JSONResponse:
    """JSON error body shared by every endpoint: error, message and timestamp"""
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "timestamp": utc_timestamp(), **fields},
    )


def health_status_code(status: str) -> int:
    """200 healthy, 206 degraded, 503 for anything worse"""
    if status == "healthy":
        return 200
    if status == "degraded":
        return 206
    return 503
