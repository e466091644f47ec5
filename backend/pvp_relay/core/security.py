from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from jose import JWTError, jwt

from pvp_relay.core.config import Settings

ALGORITHM = "HS256"
SEAT_ROLES = ("host", "guest")


def create_seat_token(settings: Settings, code: str, wallet_address: str, role: str) -> str:
    """Sign a token binding a wallet to one seat of one room."""
    if role not in SEAT_ROLES:
        raise ValueError(f"Unknown seat role: {role}")
    issued_at = datetime.now(timezone.utc)
    expire = issued_at + timedelta(minutes=settings.seat_token_expire_minutes)
    payload: dict[str, Any] = {
        "sub": wallet_address,
        "room": code.upper(),
        "role": role,
        "exp": expire,
        "iat": issued_at,
        "jti": uuid4().hex,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_seat_token(settings: Settings, token: str) -> dict[str, Any] | None:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if not isinstance(payload, dict):
        return None
    if payload.get("role") not in SEAT_ROLES:
        return None
    if not isinstance(payload.get("room"), str) or not isinstance(payload.get("sub"), str):
        return None
    return payload
