"""Socket.IO transport for PvP push channels.

A client connects, then emits ``subscribe`` with ``{"code": ..., "wallet": ...}``.
Relay events arrive on the ``pvp`` event.  A socket holds at most one
subscription; subscribing again moves it.
"""

from dataclasses import dataclass
import logging

import socketio

from pvp_relay.realtime.channels import SocketIOChannel
from pvp_relay.realtime.relay import RelayService
from pvp_relay.services.room_registry import Room, RoomNotFoundError, normalize_code

logger = logging.getLogger(__name__)

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")


@dataclass
class Subscription:
    room: Room
    wallet_address: str
    channel: SocketIOChannel


_relay: RelayService | None = None
_sid_subscriptions: dict[str, Subscription] = {}


def _payload_string(payload: object, key: str) -> str:
    value = payload.get(key) if isinstance(payload, dict) else None
    return value.strip() if isinstance(value, str) else ""


def _is_same_seat(subscription: Subscription | None, code: str, wallet_address: str) -> bool:
    if subscription is None:
        return False
    return (
        subscription.room.code == normalize_code(code)
        and subscription.wallet_address == wallet_address
        and not subscription.channel.closed
    )


def _release_sid(sid: str) -> None:
    subscription = _sid_subscriptions.pop(sid, None)
    if subscription is None or _relay is None:
        return
    _relay.close_channel(subscription.room, subscription.wallet_address, subscription.channel)
    logger.debug("Released socket %s from room %s", sid, subscription.room.code)


def subscription_for(sid: str) -> Subscription | None:
    return _sid_subscriptions.get(sid)


@sio.event
async def connect(sid: str, environ: dict, auth: dict | None = None) -> bool:
    return _relay is not None


@sio.event
async def subscribe(sid: str, data: dict | None = None) -> dict:
    if _relay is None:
        return {"ok": False, "error": "relay unavailable"}
    code = _payload_string(data, "code")
    wallet_address = _payload_string(data, "wallet")
    if not code or not wallet_address:
        return {"ok": False, "error": "code and wallet are required"}

    previous = _sid_subscriptions.get(sid)
    same_seat = _is_same_seat(previous, code, wallet_address)
    # Same seat: re-open the existing channel, the opponent sees no disconnect.
    channel = previous.channel if same_seat else SocketIOChannel(sio, sid)
    try:
        room = _relay.open_channel(code, wallet_address, channel)
    except RoomNotFoundError:
        return {"ok": False, "error": "Room not found"}

    if previous is not None and not same_seat:
        _relay.close_channel(previous.room, previous.wallet_address, previous.channel)
    _sid_subscriptions[sid] = Subscription(room, wallet_address, channel)
    return {"ok": True, "code": room.code}


@sio.event
async def disconnect(sid: str, *args) -> None:
    _release_sid(sid)


def build_socket_app(api_app, relay: RelayService) -> socketio.ASGIApp:
    global _relay
    _relay = relay
    return socketio.ASGIApp(sio, other_asgi_app=api_app, socketio_path="socket.io")
