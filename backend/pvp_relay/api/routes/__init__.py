from fastapi import APIRouter

from pvp_relay.api.routes.health import router as health_router
from pvp_relay.api.routes.pvp import router as pvp_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(pvp_router, prefix="/pvp", tags=["pvp"])
