"""Seed script: a small approved catalog with a couple of credited artists."""
import asyncio
import uuid
from datetime import datetime, timezone

from sqlalchemy import select

from rotation.db.engine import async_session_factory
from rotation.main import ensure_tables
from rotation.models.credit_balance import CreditBalance
from rotation.models.song import Song, SongStatus

ARTISTS = [
    ("The Static", 5),
    ("Low Orbit", 2),
    ("Marigold", 0),
    ("Night Shift", 0),
]
SONGS_PER_ARTIST = 3


async def seed():
    print("Seeding database...")
    await ensure_tables()

    async with async_session_factory() as db:
        result = await db.execute(select(Song).limit(1))
        if result.scalar_one_or_none():
            print("Seed data already exists, skipping.")
            return

        now = datetime.now(timezone.utc)
        for name, credits in ARTISTS:
            artist_id = uuid.uuid4()
            for n in range(1, SONGS_PER_ARTIST + 1):
                slug = f"{name.lower().replace(' ', '-')}-{n}"
                db.add(Song(
                    artist_id=artist_id,
                    artist_name=name,
                    title=f"{name} Track {n}",
                    audio_url=f"https://cdn.example.com/audio/{slug}.mp3",
                    duration_seconds=150 + 15 * n,
                    status=SongStatus.APPROVED,
                    approved_at=now,
                ))
            if credits:
                db.add(CreditBalance(artist_id=artist_id, balance=credits, total_used=0))

        await db.commit()
        print(f"Seeded {len(ARTISTS) * SONGS_PER_ARTIST} songs from {len(ARTISTS)} artists")


if __name__ == "__main__":
    asyncio.run(seed())
