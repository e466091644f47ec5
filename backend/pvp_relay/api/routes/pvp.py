from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from pvp_relay.api.deps import ensure_seat, get_app_settings, get_relay, get_seat_claims
from pvp_relay.core.config import Settings
from pvp_relay.core.security import create_seat_token
from pvp_relay.realtime.channels import SSE_HEADERS, QueueChannel, encode_sse
from pvp_relay.realtime.relay import RelayService
from pvp_relay.schemas.pvp import (
    ParticipantRead,
    PendingActionRead,
    RelayAck,
    RelayRequest,
    RoomCreateRead,
    RoomCreateRequest,
    RoomJoinRead,
    RoomJoinRequest,
    RoomStateRead,
)
from pvp_relay.services.room_registry import (
    InvalidRoomStateError,
    Participant,
    Room,
    RoomFullError,
    RoomNotFoundError,
)

router = APIRouter()


@router.post("/create", response_model=RoomCreateRead, status_code=status.HTTP_201_CREATED)
async def create_room(
    payload: RoomCreateRequest,
    relay: RelayService = Depends(get_relay),
    settings: Settings = Depends(get_app_settings),
) -> RoomCreateRead:
    wallet_address = payload.wallet_address.strip()
    if not wallet_address:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="walletAddress required")
    room = relay.registry.create(
        Participant(wallet_address=wallet_address, session_pub=payload.session_pub or "")
    )
    return RoomCreateRead(
        code=room.code,
        seat_token=create_seat_token(settings, room.code, wallet_address, "host"),
    )


@router.post("/join", response_model=RoomJoinRead)
async def join_room(
    payload: RoomJoinRequest,
    relay: RelayService = Depends(get_relay),
    settings: Settings = Depends(get_app_settings),
) -> RoomJoinRead:
    wallet_address = payload.wallet_address.strip()
    if not wallet_address:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="walletAddress required")
    guest = Participant(wallet_address=wallet_address, session_pub=payload.session_pub or "")
    try:
        room = relay.join(payload.code, guest)
    except RoomNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RoomFullError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except InvalidRoomStateError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return RoomJoinRead(
        host_address=room.host.wallet_address,
        seat_token=create_seat_token(settings, room.code, wallet_address, "guest"),
    )


async def _stream_events(
    relay: RelayService,
    room: Room,
    wallet_address: str,
    channel: QueueChannel,
) -> AsyncIterator[bytes]:
    try:
        while True:
            event = await channel.next_event()
            if event is None:
                break
            yield encode_sse(event)
    finally:
        channel.close()
        relay.close_channel(room, wallet_address, channel)


@router.get("/room/{code}")
async def room_stream(
    code: str,
    wallet: str = Query(min_length=1, max_length=120),
    relay: RelayService = Depends(get_relay),
) -> StreamingResponse:
    channel = QueueChannel()
    try:
        room = relay.open_channel(code, wallet, channel)
    except RoomNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return StreamingResponse(
        _stream_events(relay, room, wallet, channel),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/action", response_model=RelayAck)
async def relay_action(
    payload: RelayRequest,
    relay: RelayService = Depends(get_relay),
    claims: dict[str, Any] | None = Depends(get_seat_claims),
) -> RelayAck:
    ensure_seat(claims, payload.code, None if payload.sender_role == "chat" else payload.sender_role)
    try:
        relay.relay(payload.code, payload.sender_role, payload.payload)
    except RoomNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidRoomStateError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return RelayAck()


@router.get("/pending/{code}", response_model=PendingActionRead)
async def poll_pending_action(
    code: str,
    relay: RelayService = Depends(get_relay),
    claims: dict[str, Any] | None = Depends(get_seat_claims),
) -> PendingActionRead:
    ensure_seat(claims, code, "host")
    return PendingActionRead(action=relay.poll_pending(code))


@router.get("/state/{code}", response_model=RoomStateRead)
async def room_state(code: str, relay: RelayService = Depends(get_relay)) -> RoomStateRead:
    snapshot = relay.snapshot(code)
    return RoomStateRead(
        game_state=snapshot.game_state,
        host_identity=_participant_read(snapshot.host),
        guest_identity=_participant_read(snapshot.guest),
        has_guest=snapshot.has_guest,
    )


def _participant_read(participant: Participant | None) -> ParticipantRead | None:
    if participant is None:
        return None
    return ParticipantRead(
        wallet_address=participant.wallet_address,
        session_pub=participant.session_pub,
    )
