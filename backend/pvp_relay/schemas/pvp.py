from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RoomCreateRequest(CamelModel):
    wallet_address: str = Field(min_length=1, max_length=120)
    session_pub: str | None = Field(default=None, max_length=256)


class RoomCreateRead(CamelModel):
    code: str
    seat_token: str


class RoomJoinRequest(CamelModel):
    code: str = Field(min_length=1, max_length=32)
    wallet_address: str = Field(min_length=1, max_length=120)
    session_pub: str | None = Field(default=None, max_length=256)


class RoomJoinRead(CamelModel):
    host_address: str
    seat_token: str


class RelayRequest(CamelModel):
    code: str = Field(min_length=1, max_length=32)
    sender_role: Literal["host", "guest", "chat"]
    payload: Any = None


class RelayAck(CamelModel):
    ok: bool = True


class PendingActionRead(CamelModel):
    action: Any = None


class ParticipantRead(CamelModel):
    wallet_address: str
    session_pub: str = ""


class RoomStateRead(CamelModel):
    game_state: Any = None
    host_identity: ParticipantRead | None = None
    guest_identity: ParticipantRead | None = None
    has_guest: bool = False
