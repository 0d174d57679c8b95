"""Pydantic schemas for the radio endpoints."""
from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# --- Now playing ---

class CurrentTrackResponse(BaseModel):
    song_id: str
    started_at: datetime
    epoch: int
    remaining_seconds: float
    duration_seconds: float
    title: str | None = None
    artist_name: str | None = None
    audio_url: str | None = None
    artwork_url: str | None = None


class NoContentResponse(BaseModel):
    no_content: bool = True
    message: str = "No content available"


class UpcomingSong(BaseModel):
    song_id: str
    title: str
    artist_name: str | None = None
    reason: str  # credits | organic | fallback
    weight: float
    last_played_at: datetime | None = None


# --- Listener reports ---

class HeartbeatRequest(BaseModel):
    epoch: int = Field(ge=0)
    song_id: str


class HeartbeatResponse(BaseModel):
    ok: bool = False
    stale: bool = False
    current_epoch: int


class PlayReportRequest(BaseModel):
    epoch: int = Field(ge=0)
    song_id: str
    outcome: Literal["completed", "skipped"]


class PlayReportResponse(BaseModel):
    ok: bool = False
    stale: bool = False
    current_epoch: int


# --- Admin ---

class PlayDecisionOut(BaseModel):
    id: UUID | str
    song_id: UUID | str
    epoch: int
    selection_reason: str
    weight: float
    competing_songs: int
    credits_at_selection: int | None = None
    selected_at: datetime
    title: str | None = None

    model_config = ConfigDict(from_attributes=True)


class LiveListenersResponse(BaseModel):
    active_listeners: int
    window_seconds: int
    current_epoch: int
