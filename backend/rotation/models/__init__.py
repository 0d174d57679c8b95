from rotation.models.song import Song, SongStatus
from rotation.models.credit_balance import CreditBalance
from rotation.models.play_event import PlayEvent, PlayEventKind
from rotation.models.play_decision import PlayDecision
from rotation.models.stream_state import StreamStateRecord, STREAM_STATE_ROW_ID
from rotation.models.listener_session import ListenerSession

__all__ = [
    "Song", "SongStatus",
    "CreditBalance",
    "PlayEvent", "PlayEventKind",
    "PlayDecision",
    "StreamStateRecord", "STREAM_STATE_ROW_ID",
    "ListenerSession",
]
