import logging
import time

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from rotation.config import settings

logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    if url.startswith("postgresql+asyncpg"):
        # PgBouncer in transaction mode can't keep prepared statements
        return {"statement_cache_size": 0, "prepared_statement_cache_size": 0}
    return {}


def build_engine(url: str, echo: bool = False, slow_query_seconds: float | None = None) -> AsyncEngine:
    """Async engine with the rotation tables' expectations wired in.

    SQLite only enforces foreign keys (play events -> songs) when asked per
    connection, so the pragma is set on connect. Queries slower than
    ``slow_query_seconds`` are logged.
    """
    threshold = settings.SLOW_QUERY_SECONDS if slow_query_seconds is None else slow_query_seconds
    kwargs = {"echo": echo, "connect_args": _connect_args(url)}
    if not url.startswith("sqlite"):
        kwargs.update(pool_pre_ping=True, pool_recycle=300)
    new_engine = create_async_engine(url, **kwargs)

    if url.startswith("sqlite"):
        @event.listens_for(new_engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    @event.listens_for(new_engine.sync_engine, "before_cursor_execute")
    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info["query_start_time"] = time.monotonic()

    @event.listens_for(new_engine.sync_engine, "after_cursor_execute")
    def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        start = conn.info.pop("query_start_time", None)
        if start is None:
            return
        elapsed = time.monotonic() - start
        if elapsed >= threshold:
            logger.warning("SLOW QUERY (%.3fs): %s", elapsed, statement[:300])

    return new_engine


engine = build_engine(settings.DATABASE_URL, echo=settings.APP_DEBUG)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)
