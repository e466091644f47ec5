from fastapi import APIRouter, Depends

from pvp_relay.api.deps import get_relay
from pvp_relay.realtime.relay import RelayService

router = APIRouter()


@router.get("/health")
async def health(relay: RelayService = Depends(get_relay)) -> dict:
    return {
        "status": "ok",
        "rooms": len(relay.registry),
        "keepalives": relay.active_keepalives,
    }
