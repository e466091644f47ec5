from typing import Any

from fastapi import Depends, HTTPException, Request, status

from pvp_relay.core.config import Settings, get_settings
from pvp_relay.core.request_meta import extract_bearer_token
from pvp_relay.core.security import decode_seat_token
from pvp_relay.realtime.relay import RelayService
from pvp_relay.services.room_registry import normalize_code


def get_relay(request: Request) -> RelayService:
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relay not initialised",
        )
    return relay


def get_app_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


def get_seat_claims(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any] | None:
    token = extract_bearer_token(request)
    if token is None:
        if settings.require_seat_token:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Seat token required",
            )
        return None
    claims = decode_seat_token(settings, token)
    if not claims:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired seat token",
        )
    return claims


def ensure_seat(claims: dict[str, Any] | None, code: str, role: str | None = None) -> None:
    """Reject a token issued for another room or, when ``role`` is given, another seat."""
    if claims is None:
        return
    if claims["room"] != normalize_code(code):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Seat token is for another room",
        )
    if role is not None and claims["role"] != role:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Seat token does not grant the {role} role",
        )

