# Schemas package
from rotation.schemas.radio import (
    CurrentTrackResponse,
    HeartbeatRequest,
    HeartbeatResponse,
    LiveListenersResponse,
    NoContentResponse,
    PlayDecisionOut,
    PlayReportRequest,
    PlayReportResponse,
    UpcomingSong,
)

__all__ = [
    "CurrentTrackResponse",
    "HeartbeatRequest",
    "HeartbeatResponse",
    "LiveListenersResponse",
    "NoContentResponse",
    "PlayDecisionOut",
    "PlayReportRequest",
    "PlayReportResponse",
    "UpcomingSong",
]
