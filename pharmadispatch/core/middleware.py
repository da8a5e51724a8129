"""
HTTP middleware and exception handlers.

Every response carries the request's correlation id. Wallet and delivery
payloads are never cached by intermediaries.
"""
import time
from typing import Any, Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from pharmadispatch.core.exceptions import AppException, ErrorCode, StorageFaultError
from pharmadispatch.core.logging import get_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

# Seconds a client should wait before retrying after a storage fault
STORAGE_RETRY_AFTER = 1


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Correlation id in and out, one log line per request with its duration"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = set_correlation_id(request.headers.get(CORRELATION_HEADER))
        request.state.correlation_id = correlation_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                f"{request.method} {request.url.path} crashed",
                extra_data={"duration_ms": round((time.perf_counter() - started) * 1000, 1)},
                exc_info=True
            )
            raise

        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
        response.headers[CORRELATION_HEADER] = correlation_id

        # Liveness probes would drown everything else at INFO
        if request.url.path == "/health":
            return response

        log = logger.info if response.status_code < 400 else logger.warning
        log(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra_data={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
            }
        )
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Fixed security headers; HSTS only outside DEBUG"""

    HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "no-referrer",
    }

    def __init__(self, app: FastAPI, *, debug: bool = False) -> None:
        super().__init__(app)
        self._debug = debug

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.update(self.HEADERS)
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store"
        if not self._debug:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


def _error_response(status_code: int, body: dict[str, Any], **headers: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body,
        headers={CORRELATION_HEADER: get_correlation_id(), **headers},
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{exc.error_code.value}: {exc.message}",
        extra_data={"path": request.url.path, "details": exc.details}
    )

    if isinstance(exc, StorageFaultError):
        return _error_response(exc.status_code, exc.to_dict(), **{"Retry-After": str(STORAGE_RETRY_AFTER)})
    return _error_response(exc.status_code, exc.to_dict())


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.url.path}",
        extra_data={"error": str(exc)},
        exc_info=True
    )
    return _error_response(
        500,
        {
            "error": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": "An unexpected error occurred",
                "details": {},
            }
        },
    )


def setup_middleware(app: FastAPI) -> None:
    from pharmadispatch.core.config import settings

    # Added last runs first: security headers wrap the request context
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, debug=settings.DEBUG)


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
