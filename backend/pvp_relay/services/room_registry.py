"""In-memory registry of two-player PvP rooms.

Rooms live only in this process.  There is no background sweeper: stale rooms
are evicted when ``create`` or ``lookup`` is called, so a quiet server can hold
an expired room past its window until the next request arrives.

Every method runs without awaiting, so on a single event loop each call is one
uninterrupted step relative to other requests.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Any
from uuid import uuid4

from pvp_relay.realtime.channels import PushChannel

logger = logging.getLogger(__name__)

DEFAULT_ROOM_TTL_SECONDS = 2 * 60 * 60
DEFAULT_CODE_LENGTH = 6


class RoomNotFoundError(LookupError):
    pass


class InvalidRoomStateError(ValueError):
    pass


class RoomFullError(InvalidRoomStateError):
    pass


@dataclass
class Participant:
    wallet_address: str
    session_pub: str = ""

    def to_payload(self) -> dict[str, str]:
        return {"walletAddress": self.wallet_address, "sessionPub": self.session_pub}


@dataclass
class Room:
    code: str
    host: Participant
    guest: Participant | None = None
    game_state: Any = None
    pending_guest_action: Any = None
    created_at: datetime = field(default_factory=lambda: _utc_now())
    subscribers: dict[str, PushChannel] = field(default_factory=dict)

    @property
    def has_guest(self) -> bool:
        return self.guest is not None

    def role_of(self, wallet_address: str) -> str | None:
        if wallet_address == self.host.wallet_address:
            return "host"
        if self.guest and wallet_address == self.guest.wallet_address:
            return "guest"
        return None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_code(code: str | None) -> str:
    return code.strip().upper() if isinstance(code, str) else ""


class SessionRegistry:
    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_ROOM_TTL_SECONDS,
        code_length: int = DEFAULT_CODE_LENGTH,
    ) -> None:
        self._rooms: dict[str, Room] = {}
        self._ttl = timedelta(seconds=max(1, ttl_seconds))
        self._code_length = min(32, max(4, code_length))

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, code: str) -> bool:
        return normalize_code(code) in self._rooms

    def _generate_code(self) -> str:
        return uuid4().hex[: self._code_length].upper()

    def create(self, host: Participant) -> Room:
        self.sweep()
        code = self._generate_code()
        while code in self._rooms:
            code = self._generate_code()
        room = Room(code=code, host=host)
        self._rooms[code] = room
        logger.info("Room %s created by %s", code, host.wallet_address)
        return room

    def lookup(self, code: str | None) -> Room | None:
        self.sweep()
        return self._rooms.get(normalize_code(code))

    def require(self, code: str | None) -> Room:
        room = self.lookup(code)
        if room is None:
            raise RoomNotFoundError("Room not found")
        return room

    def set_guest(self, code: str, guest: Participant) -> Room:
        room = self.require(code)
        if room.guest is not None:
            raise RoomFullError("Room is full")
        if guest.wallet_address == room.host.wallet_address:
            raise InvalidRoomStateError("Cannot join your own room")
        room.guest = guest
        logger.info("Room %s joined by %s", room.code, guest.wallet_address)
        return room

    def set_game_state(self, code: str, state: Any) -> Room:
        room = self.require(code)
        room.game_state = state
        return room

    def set_pending_action(self, code: str, action: Any) -> Room:
        room = self.require(code)
        room.pending_guest_action = action
        return room

    def consume_pending_action(self, code: str | None) -> Any:
        room = self.lookup(code)
        if room is None:
            return None
        action, room.pending_guest_action = room.pending_guest_action, None
        return action

    def sweep(self) -> list[str]:
        cutoff = _utc_now() - self._ttl
        expired = [code for code, room in self._rooms.items() if room.created_at < cutoff]
        for code in expired:
            room = self._rooms.pop(code)
            _close_subscribers(room)
        if expired:
            logger.info("Evicted %d stale room(s): %s", len(expired), ", ".join(expired))
        return expired

    def clear(self) -> None:
        for room in self._rooms.values():
            _close_subscribers(room)
        self._rooms.clear()


def _close_subscribers(room: Room) -> None:
    channels = list(room.subscribers.values())
    room.subscribers.clear()
    for channel in channels:
        try:
            channel.close()
        except Exception:
            logger.debug("Closing channel for room %s failed", room.code, exc_info=True)
