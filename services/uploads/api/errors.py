from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..domain.errors import UploadError

LOGGER = logging.getLogger(__name__)


def error_body(code: str, message: str, details: Dict[str, Any] | None = None):
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
    }


async def handle_upload_error(request: Request, exc: UploadError) -> JSONResponse:
    if exc.http_status >= 500:
        LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content=error_body(exc.code, exc.message, exc.details),
    )


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    fields = [".".join(str(part) for part in error.get("loc", ())) for error in errors]
    missing = bool(errors) and all(error.get("type") == "missing" for error in errors)
    code = "MISSING_FIELD" if missing else "INVALID_FIELD"
    message = "; ".join(
        f"{field}: {error.get('msg', 'invalid')}" for field, error in zip(fields, errors)
    )
    return JSONResponse(
        status_code=400,
        content=error_body(code, message or "Invalid request", {"fields": fields}),
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(UploadError, handle_upload_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
