import os
import uuid
from collections.abc import AsyncIterator
from datetime import datetime, timezone

# Settings are read at import time; point them at test values first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("REDIS_URL", "")

import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from rotation.config import settings  # noqa: E402
from rotation.db.base import Base  # noqa: E402
from rotation.db.engine import build_engine  # noqa: E402
from rotation.db.session import get_db  # noqa: E402
from rotation.main import create_app  # noqa: E402
from rotation.models.credit_balance import CreditBalance  # noqa: E402
from rotation.models.song import Song, SongStatus  # noqa: E402
from rotation.services.radio_runtime import RadioRuntime  # noqa: E402

from fakes import FakeClock  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def engine(tmp_path):
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db")

    import rotation.models  # noqa: F401

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def add_song(session_factory):
    """Insert an approved song (and optionally its artist's credits); returns the Song."""

    async def _add(
        title: str = "Song",
        artist_id: uuid.UUID | None = None,
        credits: int | None = None,
        duration: float | None = 180.0,
        status: SongStatus = SongStatus.APPROVED,
    ) -> Song:
        artist_id = artist_id or uuid.uuid4()
        async with session_factory() as db:
            song = Song(
                artist_id=artist_id,
                artist_name=f"Artist of {title}",
                title=title,
                audio_url=f"https://cdn.example.com/{title}.mp3",
                duration_seconds=duration,
                status=status,
                approved_at=datetime.now(timezone.utc) if status == SongStatus.APPROVED else None,
            )
            db.add(song)
            if credits is not None:
                db.add(CreditBalance(artist_id=artist_id, balance=credits, total_used=0))
            await db.commit()
        return song

    return _add


@pytest.fixture
def test_settings():
    return settings.model_copy(update={"ROTATION_SEED": 1234, "REDIS_URL": ""})


@pytest.fixture
def runtime(session_factory, test_settings) -> RadioRuntime:
    # Background tasks stay off; tests drive advancement and drain the sink themselves
    return RadioRuntime.build(session_factory, test_settings)


@pytest_asyncio.fixture
async def client(session_factory, runtime: RadioRuntime) -> AsyncIterator[AsyncClient]:
    app = create_app()
    app.state.radio = runtime

    async def override_get_db():
        async with session_factory() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def make_token(role: str = "listener", subject: str | None = None) -> str:
    return jwt.encode(
        {"sub": subject or str(uuid.uuid4()), "role": role, "type": "access"},
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )


@pytest.fixture
def listener_headers() -> dict:
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {make_token('admin')}"}
