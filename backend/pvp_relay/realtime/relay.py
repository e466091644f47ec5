"""Message routing between the host and guest of a PvP room.

The host owns the game state, the guest proposes actions, and either side may
chat.  Pushes are best-effort: a failed send is logged and dropped, and the
guest's last action stays in the room until the host polls it.
"""

import asyncio
from dataclasses import dataclass
import logging
import time
from typing import Any

from pvp_relay.realtime.channels import PushChannel
from pvp_relay.services.room_registry import (
    InvalidRoomStateError,
    Participant,
    Room,
    SessionRegistry,
)

logger = logging.getLogger(__name__)

SENDER_ROLES = ("host", "guest", "chat")
DEFAULT_KEEPALIVE_SECONDS = 25.0
DEFAULT_CHAT_MAX_LENGTH = 500
REQUEST_STATE_ACTION = {"type": "requestState"}


@dataclass
class RoomSnapshot:
    game_state: Any
    host: Participant | None
    guest: Participant | None
    has_guest: bool


def waiting_event(code: str) -> dict:
    return {"type": "waiting", "code": code}


def session_start_event(room: Room) -> dict:
    return {
        "type": "session_start",
        "host": room.host.to_payload(),
        "guest": room.guest.to_payload() if room.guest else None,
    }


def state_update_event(state: Any) -> dict:
    return {"type": "state_update", "state": state}


def action_request_event(action: Any) -> dict:
    return {"type": "action_request", "action": action}


def _deliver(room: Room, wallet_address: str, channel: PushChannel, event: dict) -> bool:
    try:
        delivered = channel.send(event)
    except Exception:
        logger.debug(
            "Send of %s to %s in room %s raised",
            event.get("type"),
            wallet_address,
            room.code,
            exc_info=True,
        )
        return False
    if not delivered:
        logger.debug("Dropped %s for %s in room %s", event.get("type"), wallet_address, room.code)
    return delivered


def send_to(room: Room, wallet_address: str, event: dict) -> bool:
    channel = room.subscribers.get(wallet_address)
    if channel is None:
        return False
    return _deliver(room, wallet_address, channel, event)


def broadcast(room: Room, event: dict, exclude: str | None = None) -> int:
    delivered = 0
    for wallet_address, channel in list(room.subscribers.items()):
        if wallet_address == exclude:
            continue
        if _deliver(room, wallet_address, channel, event):
            delivered += 1
    return delivered


class RelayService:
    def __init__(
        self,
        registry: SessionRegistry,
        *,
        keepalive_seconds: float = DEFAULT_KEEPALIVE_SECONDS,
        chat_max_length: int = DEFAULT_CHAT_MAX_LENGTH,
    ) -> None:
        self.registry = registry
        self.keepalive_seconds = keepalive_seconds
        self.chat_max_length = chat_max_length
        self._keepalive_tasks: set[asyncio.Task] = set()

    # -- channel lifecycle -------------------------------------------------

    def open_channel(self, code: str, wallet_address: str, channel: PushChannel) -> Room:
        room = self.registry.require(code)
        previous = room.subscribers.get(wallet_address)
        room.subscribers[wallet_address] = channel
        if previous is not None and previous is not channel:
            logger.info("Channel for %s in room %s superseded", wallet_address, room.code)
            previous.close()

        if room.guest is None:
            _deliver(room, wallet_address, channel, waiting_event(room.code))
        else:
            _deliver(room, wallet_address, channel, session_start_event(room))
            if room.game_state is not None:
                _deliver(room, wallet_address, channel, state_update_event(room.game_state))
            elif wallet_address == room.guest.wallet_address:
                send_to(room, room.host.wallet_address, action_request_event(REQUEST_STATE_ACTION))

        if previous is not channel:
            self._start_keepalive(room, wallet_address, channel)
        logger.info("Channel opened for %s in room %s", wallet_address, room.code)
        return room

    def close_channel(self, room: Room, wallet_address: str, channel: PushChannel) -> bool:
        if room.subscribers.get(wallet_address) is not channel:
            return False
        del room.subscribers[wallet_address]
        logger.info("Channel closed for %s in room %s", wallet_address, room.code)
        broadcast(room, {"type": "opponent_disconnected"}, exclude=wallet_address)
        return True

    def _start_keepalive(self, room: Room, wallet_address: str, channel: PushChannel) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._keepalive(room, wallet_address, channel))
        self._keepalive_tasks.add(task)
        task.add_done_callback(self._keepalive_tasks.discard)

    async def _keepalive(self, room: Room, wallet_address: str, channel: PushChannel) -> None:
        while True:
            await asyncio.sleep(self.keepalive_seconds)
            if room.subscribers.get(wallet_address) is not channel:
                return
            _deliver(room, wallet_address, channel, {"type": "ping"})

    @property
    def active_keepalives(self) -> int:
        return len(self._keepalive_tasks)

    async def shutdown(self) -> None:
        tasks = list(self._keepalive_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._keepalive_tasks.clear()
        self.registry.clear()

    # -- session -----------------------------------------------------------

    def join(self, code: str, guest: Participant) -> Room:
        room = self.registry.set_guest(code, guest)
        broadcast(room, session_start_event(room))
        return room

    # -- relay -------------------------------------------------------------

    def relay(self, code: str, sender_role: str, payload: Any) -> Room:
        if sender_role not in SENDER_ROLES:
            raise InvalidRoomStateError(f"Unknown sender role: {sender_role}")
        room = self.registry.require(code)
        if room.guest is None:
            raise InvalidRoomStateError("Game not started")

        if sender_role == "host":
            self.registry.set_game_state(room.code, payload)
            send_to(room, room.guest.wallet_address, state_update_event(payload))
        elif sender_role == "guest":
            self.registry.set_pending_action(room.code, payload)
            send_to(room, room.host.wallet_address, action_request_event(payload))
        else:
            broadcast(room, self._chat_event(payload))
        return room

    def _chat_event(self, payload: Any) -> dict:
        if not isinstance(payload, dict):
            raise InvalidRoomStateError("Chat payload must be an object")
        text = payload.get("text")
        if not isinstance(text, str) or not text.strip():
            raise InvalidRoomStateError("Chat text is required")
        if len(text) > self.chat_max_length:
            raise InvalidRoomStateError(f"Chat text exceeds {self.chat_max_length} characters")
        ts = payload.get("ts")
        if not isinstance(ts, (int, float)) or isinstance(ts, bool):
            ts = int(time.time() * 1000)
        return {"type": "chat", "from": payload.get("from"), "text": text, "ts": ts}

    def poll_pending(self, code: str | None) -> Any:
        return self.registry.consume_pending_action(code)

    def snapshot(self, code: str | None) -> RoomSnapshot:
        room = self.registry.lookup(code)
        if room is None:
            return RoomSnapshot(game_state=None, host=None, guest=None, has_guest=False)
        return RoomSnapshot(
            game_state=room.game_state,
            host=room.host,
            guest=room.guest,
            has_guest=room.has_guest,
        )
