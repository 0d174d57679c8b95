"""Listener analytics (admin)."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rotation.core.dependencies import get_radio, require_admin
from rotation.db.session import get_db
from rotation.schemas.radio import LiveListenersResponse
from rotation.services.listener_service import ListenerService
from rotation.services.play_ingestion_service import ListenerIdentity
from rotation.services.radio_runtime import RadioRuntime

router = APIRouter(prefix="/radio/listeners", tags=["listeners"])


@router.get("/live", response_model=LiveListenersResponse)
async def live_listeners(
    db: AsyncSession = Depends(get_db),
    radio: RadioRuntime = Depends(get_radio),
    _admin: ListenerIdentity = Depends(require_admin),
):
    """Listeners with a matching heartbeat inside the activity window."""
    service = ListenerService(db)
    return LiveListenersResponse(
        active_listeners=await service.active_count(),
        window_seconds=service.active_seconds,
        current_epoch=radio.state.current().epoch,
    )
