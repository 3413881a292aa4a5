"""Analytics error taxonomy and the FastAPI handlers that surface it."""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class AnalyticsError(Exception):
    """Base class for errors raised by the analytics core."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AnalyticsError):
    """Missing or out-of-range parameters. Never retried."""
    status_code = 400


class NotFoundError(AnalyticsError):
    """A referenced alert, template or product does not exist."""
    status_code = 404


class DataInsufficiencyError(AnalyticsError):
    """Not enough data for one item (e.g. a series pair).

    Always recorded on the item as a null result with ``reason``;
    never escalated to a request-level failure.
    """
    status_code = 422

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason)
        self.reason = reason


class ComputationError(AnalyticsError):
    """Unexpected numeric failure for a single item (e.g. zero baseline)."""


def setup_error_handlers(app: FastAPI):
    """Map analytics errors onto JSON responses."""

    @app.exception_handler(AnalyticsError)
    async def analytics_error_handler(request: Request, exc: AnalyticsError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error": type(exc).__name__},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # Out-of-range query params and malformed bodies share the ValidationError shape
        problems = [
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=ValidationError.status_code,
            content={"detail": "; ".join(problems) or "Invalid request", "error": ValidationError.__name__},
        )
