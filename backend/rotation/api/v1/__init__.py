from fastapi import APIRouter

from rotation.api.v1.radio import router as radio_router
from rotation.api.v1.listeners import router as listeners_router

router = APIRouter()
router.include_router(radio_router)
router.include_router(listeners_router)
