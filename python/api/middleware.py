"""
Request logging, CORS and the JSON error envelope for the Kurator API.

Every error leaves the API as

    {"error": {"code": ..., "message": ..., "timestamp": ..., "field"?: ..., "suggestion"?: ...}}
"""

import os
import time
import uuid
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from config_manager import ConfigurationError
from database.repositories import EntityNotFoundError, DuplicateEntityError
from log_utils import sanitize_for_logging
from security_logger import bind_request_context, get_security_logger, reset_request_context
from services.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    BusinessRuleError,
)

logger = logging.getLogger(__name__)

# Local front-end dev servers
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]

ALLOWED_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
EXPOSED_HEADERS = ["X-Request-ID", "X-Processing-Time-MS"]
MAX_REQUEST_ID_LENGTH = 64


# ============================================
# CORS
# ============================================

def parse_cors_origins(value: Optional[str]) -> List[str]:
    """CORS_ORIGINS is comma-separated; empty means the local dev servers."""
    if not value:
        return list(DEFAULT_CORS_ORIGINS)
    return [origin.strip() for origin in value.split(",") if origin.strip()]


def setup_cors(app: FastAPI) -> None:
    """A "*" entry opens the API to any origin, with credentials switched off."""
    allowed_origins = parse_cors_origins(os.getenv("CORS_ORIGINS", ""))
    allow_any = "*" in allowed_origins

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_any else allowed_origins,
        allow_credentials=not allow_any,
        allow_methods=ALLOWED_METHODS,
        allow_headers=["*"],
        expose_headers=EXPOSED_HEADERS,
    )


# ============================================
# REQUEST LOGGING
# ============================================

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One log line per request with its id, status and duration.

    The caller's X-Request-ID is reused (sanitized) or a new one is issued.
    It is echoed back and attached to security events raised while the
    request runs. Request and response bodies are never logged: they carry
    contact names and notes.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        started = time.perf_counter()
        request_id = sanitize_for_logging(
            request.headers.get("X-Request-ID") or uuid.uuid4().hex, max_length=MAX_REQUEST_ID_LENGTH
        )
        request.state.request_id = request_id
        client_ip = request.client.host if request.client else ""
        token = bind_request_context(request_id, client_ip)

        method = request.method
        path = sanitize_for_logging(request.url.path)
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "%s %s failed after %dms: %s request_id=%s",
                method, path, _elapsed_ms(started), type(exc).__name__, request_id,
            )
            raise
        finally:
            reset_request_context(token)

        elapsed = _elapsed_ms(started)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Time-MS"] = str(elapsed)
        logger.info("%s %s -> %d in %dms request_id=%s", method, path, response.status_code, elapsed, request_id)
        return response


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


# ============================================
# ERROR ENVELOPE
# ============================================

def create_error_response(
    code: str,
    message: str,
    status_code: int = 500,
    field: str = None,
    suggestion: str = None,
) -> JSONResponse:
    """Build the error envelope; ``field`` and ``suggestion`` are left out when empty."""
    error_detail = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if field:
        error_detail["field"] = field
    if suggestion:
        error_detail["suggestion"] = suggestion
    return JSONResponse(status_code=status_code, content={"error": error_detail})


# Domain exception -> (status, code). First isinstance match wins, so
# subclasses of ValueError must come before it.
ERROR_MAPPING = (
    (EntityNotFoundError, 404, "NOT_FOUND"),
    (AccessDeniedError, 403, "ACCESS_DENIED"),
    (AuthenticationError, 401, "AUTHENTICATION_FAILED"),
    (DuplicateEntityError, 400, "DUPLICATE_ENTITY"),
    (BusinessRuleError, 400, "BUSINESS_RULE_VIOLATION"),
    (ValueError, 400, "VALIDATION_ERROR"),
)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


async def domain_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Repository, service and validation errors. Their messages are client-facing."""
    for error_type, status_code, code in ERROR_MAPPING:
        if not isinstance(exc, error_type):
            continue

        message = str(exc)
        logger.warning(
            "%s rejected with %d %s: %s request_id=%s",
            sanitize_for_logging(request.url.path), status_code, code,
            sanitize_for_logging(message), _request_id(request),
        )
        if isinstance(exc, AccessDeniedError):
            get_security_logger(log_dir=os.getenv("LOG_DIR", "logs")).log_access_denied(
                getattr(request.state, "user_id", None), request.url.path, message
            )
        return create_error_response(code=code, message=message, status_code=status_code)

    return await unexpected_exception_handler(request, exc)


async def configuration_exception_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Configuration error: %s request_id=%s", sanitize_for_logging(str(exc)), _request_id(request))
    return create_error_response(
        code="CONFIGURATION_ERROR",
        message="Service configuration is invalid. Please contact administrator.",
        status_code=503,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing errors and HTTPExceptions raised by endpoints, as ``HTTP_<status>``."""
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    logger.warning(
        "HTTP %d on %s: %s request_id=%s",
        exc.status_code, sanitize_for_logging(request.url.path),
        sanitize_for_logging(detail), _request_id(request),
    )
    response = create_error_response(code=f"HTTP_{exc.status_code}", message=detail, status_code=exc.status_code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def unexpected_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything else is a 500 whose message reveals nothing about the cause."""
    logger.error("Unhandled %s request_id=%s", type(exc).__name__, _request_id(request), exc_info=exc)
    return create_error_response(
        code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
        status_code=500,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    for error_type, _, _ in ERROR_MAPPING:
        app.add_exception_handler(error_type, domain_exception_handler)
    app.add_exception_handler(ConfigurationError, configuration_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unexpected_exception_handler)
