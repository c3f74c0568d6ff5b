"""HTTP middleware for the observer API.

Three cross-cutting concerns, installed together by install_middleware():

1. Request IDs. Honour an incoming X-Request-ID header or generate a
   UUID4, expose it as request.state.request_id, and echo it back.
2. Rate limiting. slowapi fixed window per client IP with the standard
   X-RateLimit-* headers and a 429 + Retry-After when exceeded. Health
   checks are never limited.
3. Error formatting. Every error leaves the API in one shape:
       {"error", "code", "retryable", "requestId", "timestamp"}
   AppError carries its own status and retryable flag; anything unexpected
   becomes a retryable 500 without leaking internals.
"""

import logging
import uuid
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
EXEMPT_PATHS = ("/health",)
RATE_LIMIT_HEADERS = (
    "X-RateLimit-Limit",
    "X-RateLimit-Remaining",
    "X-RateLimit-Reset",
    "Retry-After",
)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class AppError(Exception):
    """An error the API reports to the caller as-is.

    Attributes:
        message: Safe, caller-facing description.
        status_code: HTTP status to respond with.
        retryable: Whether the caller may reasonably retry the request.
        code: Stable machine-readable error code (e.g. "NOT_FOUND").
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        retryable: bool = False,
        code: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retryable = retryable
        self.code = code

    @classmethod
    def bad_request(cls, message: str, code: str | None = None) -> "AppError":
        return cls(message, 400, False, code or "BAD_REQUEST")

    @classmethod
    def not_found(cls, message: str = "Not Found") -> "AppError":
        return cls(message, 404, False, "NOT_FOUND")

    @classmethod
    def internal(cls, message: str = "Internal Server Error") -> "AppError":
        return cls(message, 500, True, "INTERNAL_ERROR")

    @classmethod
    def service_unavailable(cls, message: str = "Service Unavailable") -> "AppError":
        return cls(message, 503, True, "SERVICE_UNAVAILABLE")


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or "unknown"


def _error_response(request: Request, err: AppError, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=err.status_code,
        content={
            "error": err.message,
            "code": err.code or "ERROR",
            "retryable": err.retryable,
            "requestId": _request_id(request),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **extra,
        },
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    logger.error("[%s] Error: %s", _request_id(request), exc.message)
    return _error_response(request, exc)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return _error_response(
            request,
            AppError.not_found(),
            message=f"Route {request.method} {request.url.path} not found",
        )
    return _error_response(
        request,
        AppError(str(exc.detail), exc.status_code, exc.status_code >= 500, "HTTP_ERROR"),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(request, AppError.bad_request(f"Invalid request: {exc.errors()}"))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Unknown errors might be transient; never expose their details.
    logger.exception("[%s] Unhandled error: %s", _request_id(request), exc)
    return _error_response(request, AppError.internal())


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

def get_remote_address_exempt(request: Request) -> str | None:
    """Client IP for rate limiting, or None for paths that are never limited."""
    if any(request.url.path.startswith(path) for path in EXEMPT_PATHS):
        return None
    return get_remote_address(request)


def rate_limit_string(window_ms: int, max_requests: int) -> str:
    """slowapi limit for the configured window, e.g. "100 per 60 seconds"."""
    seconds = max(1, -(-window_ms // 1000))
    return f"{max_requests} per {seconds} seconds"


def create_limiter(window_ms: int = 60_000, max_requests: int = 100) -> Limiter:
    """In-memory limiter with one window per client shared by every route."""
    return Limiter(
        key_func=get_remote_address_exempt,
        application_limits=[rate_limit_string(window_ms, max_requests)],
        headers_enabled=True,
        storage_uri="memory://",
    )


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with the X-RateLimit-* headers and a retryAfter hint.

    Must stay synchronous: SlowAPIMiddleware swaps coroutine handlers for
    its own default.
    """
    limiter: Limiter = request.app.state.limiter
    stamped = limiter._inject_headers(Response(), request.state.view_rate_limit)
    headers = {name: stamped.headers[name] for name in RATE_LIMIT_HEADERS if name in stamped.headers}
    retry_after = max(0, int(headers.get("Retry-After", "0")))
    headers["Retry-After"] = str(retry_after)

    logger.warning(
        "Rate limit %s exceeded for %s on %s.",
        exc.detail,
        get_remote_address(request),
        request.url.path,
    )
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too Many Requests",
            "message": f"Rate limit exceeded. Try again in {retry_after} seconds.",
            "retryAfter": retry_after,
            "retryable": True,
        },
        headers=headers,
    )


# ---------------------------------------------------------------------------
# Installation
# ---------------------------------------------------------------------------

def install_middleware(app: FastAPI, limiter: Limiter) -> None:
    """Register error handlers, rate limiting, and request IDs on the app.

    Request IDs are registered last so they wrap everything else. Even a
    429 from the rate limiter carries an X-Request-ID.
    """
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    @app.middleware("http")
    async def request_id(request: Request, call_next):
        rid = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = rid
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = rid
        return response
