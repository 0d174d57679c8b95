import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rotation.config import settings
from rotation.core.exceptions import InvariantViolation
from rotation.core.middleware import setup_middleware

logger = logging.getLogger(__name__)

_tables_created = False


async def ensure_tables():
    """Create DB tables if they haven't been created yet."""
    global _tables_created
    if _tables_created:
        return
    from rotation.db.engine import engine
    from rotation.db.base import Base
    import rotation.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    _tables_created = True


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Startup — create tables, restore the stream and start the background tasks
    try:
        await ensure_tables()
    except Exception as e:
        logger.warning("Table creation skipped: %s", e)

    from rotation.db.engine import async_session_factory
    from rotation.services.radio_runtime import RadioRuntime

    radio = RadioRuntime.build(async_session_factory, settings)
    app.state.radio = radio
    await radio.start()
    logger.info("Rotation service started at epoch %d", radio.state.current().epoch)

    yield

    # Shutdown — stop advancing, then flush pending play events
    await radio.stop()
    logger.info("Rotation service stopped")


async def invariant_violation_handler(request: Request, exc: InvariantViolation) -> JSONResponse:
    logger.error(
        "Invariant violation on %s %s: %s", request.method, request.url.path, exc, exc_info=exc
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Radio Rotation API",
        version="0.1.0",
        description="Shared-stream rotation scheduler with promotional credits and fairness",
        debug=settings.APP_DEBUG,
        lifespan=lifespan,
    )

    setup_middleware(app)
    app.add_exception_handler(InvariantViolation, invariant_violation_handler)

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    # Register API routers
    from rotation.api.v1 import router as api_v1_router
    app.include_router(api_v1_router, prefix="/api/v1")

    return app


app = create_app()
