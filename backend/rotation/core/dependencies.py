from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from rotation.core.exceptions import ForbiddenError, UnauthorizedError
from rotation.core.security import decode_token
from rotation.db.session import get_db
from rotation.services.listener_service import ListenerService
from rotation.services.play_ingestion_service import ListenerIdentity, PlayIngestionService
from rotation.services.radio_runtime import RadioRuntime

bearer_scheme = HTTPBearer()


def get_radio(request: Request) -> RadioRuntime:
    return request.app.state.radio


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> ListenerIdentity:
    try:
        payload = decode_token(credentials.credentials)
    except ValueError:
        raise UnauthorizedError()

    if payload.get("type", "access") != "access":
        raise UnauthorizedError("Invalid token type")

    subject = payload.get("sub")
    if not subject:
        raise UnauthorizedError()

    return ListenerIdentity(subject=str(subject), role=payload.get("role", "listener"))


async def require_admin(identity: ListenerIdentity = Depends(get_current_identity)) -> ListenerIdentity:
    if identity.role != "admin":
        raise ForbiddenError("Admin access required")
    return identity


async def get_ingestion(
    radio: RadioRuntime = Depends(get_radio),
    db: AsyncSession = Depends(get_db),
) -> PlayIngestionService:
    return PlayIngestionService(radio.scheduler, ListenerService(db))
