"""Rate limiting middleware: per-client, settings-driven default limit."""

from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from fastapi import Request, FastAPI
from fastapi.responses import JSONResponse

from app.core.config import settings


def _client_key(request: Request) -> str:
    """Rate limit key: the caller's X-Client-Id header, falling back to IP."""
    client_id = request.headers.get("x-client-id")
    if client_id:
        return f"client:{client_id[:64]}"
    return get_remote_address(request)


limiter = Limiter(key_func=_client_key, default_limits=[settings.rate_limit_default])


def setup_rate_limiting(app: FastAPI):
    """Attach SlowAPI rate limiting to the FastAPI app."""
    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content={
                "detail": f"Rate limit exceeded: {exc.detail}",
                "error": "RateLimitExceeded",
            },
        )

    app.add_middleware(SlowAPIMiddleware)
