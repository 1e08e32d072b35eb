"""
Exception handlers rendering every failure in one envelope:

    {"success": false, "error", "kind", "code", "details",
     "status_code", "timestamp", "path"}

A "stack" field is added only when ENVIRONMENT=development.
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import AuthServiceError, ErrorKind, TemporarilyLocked

logger = logging.getLogger(__name__)


def _stack(exc: BaseException) -> List[str]:
    # Show the wrapped cause for operation-scoped failures
    target = exc.__cause__ or exc
    return traceback.format_exception(type(target), target, target.__traceback__)


def error_body(
    request: Request,
    status_code: int,
    kind: ErrorKind,
    code: str,
    message: str,
    details: Any = None,
    exc: Optional[BaseException] = None,
) -> Dict[str, Any]:
    body = {
        "success": False,
        "error": message,
        "kind": kind.value,
        "code": code,
        "details": details or None,
        "status_code": status_code,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "path": request.url.path,
    }
    if settings.DEBUG and exc is not None:
        body["stack"] = _stack(exc)
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers for auth errors, request validation and unexpected exceptions."""

    @app.exception_handler(AuthServiceError)
    async def handle_auth_service_error(request: Request, exc: AuthServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.info
        log_fn(f"{exc.kind.value} on {request.method} {request.url.path}: {exc.code}")

        headers = None
        if isinstance(exc, TemporarilyLocked) and exc.retry_after is not None:
            headers = {"Retry-After": str(exc.retry_after)}

        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(request, exc.status_code, exc.kind, exc.code, exc.message, exc.details, exc),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
                "message": err.get("msg", "Invalid value"),
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content=error_body(request, 400, ErrorKind.VALIDATION, "INVALID_INPUT", "Validation failed", errors),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content=error_body(
                request,
                500,
                ErrorKind.INTERNAL,
                "INTERNAL_ERROR",
                "Something went wrong. Please try again.",
                exc=exc,
            ),
        )
