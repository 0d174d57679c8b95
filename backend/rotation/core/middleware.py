import logging
import uuid as uuid_mod

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from rotation.config import settings
from rotation.core.security import decode_token

logger = logging.getLogger(__name__)

EPOCH_HEADER = "X-Stream-Epoch"


def listener_rate_key(request: Request) -> str:
    """Rate-limit bucket: the token's subject, so listeners sharing a NAT don't starve each other."""
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        try:
            subject = decode_token(auth[7:]).get("sub")
        except ValueError:
            subject = None
        if subject:
            return f"listener:{subject}"
    return get_remote_address(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.APP_ENV == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


class StreamContextMiddleware(BaseHTTPMiddleware):
    """Echo (or assign) X-Request-ID, and stamp radio responses with the stream epoch.

    Players compare the epoch header against the one they hold to notice a
    song change without re-parsing the body.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid_mod.uuid4())[:8]
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        radio = getattr(request.app.state, "radio", None)
        if radio is not None and "/radio" in request.url.path:
            response.headers[EPOCH_HEADER] = str(radio.state.current().epoch)
        return response


def setup_middleware(app: FastAPI) -> None:
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(StreamContextMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID", EPOCH_HEADER],
    )

    limiter = Limiter(
        key_func=listener_rate_key,
        default_limits=[settings.RATE_LIMIT_DEFAULT],
        storage_uri="memory://",
        enabled=settings.RATE_LIMIT_ENABLED,
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    logger.info(
        "Rate limiting %s (%s per listener)",
        "enabled" if limiter.enabled else "disabled", settings.RATE_LIMIT_DEFAULT,
    )
