from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "PvP Relay API"
    debug: bool = True
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"

    secret_key: str = "change-this-secret-key"
    seat_token_expire_minutes: int = 60 * 3
    require_seat_token: bool = False

    room_code_length: int = 6
    room_ttl_seconds: int = 2 * 60 * 60
    keepalive_interval_seconds: float = 25.0
    chat_max_length: int = 500

    rate_limit_enabled: bool = True
    rate_limit_global_limit: int = 180
    rate_limit_global_window_seconds: int = 60
    rate_limit_poll_limit: int = 600
    rate_limit_poll_window_seconds: int = 60
    rate_limit_relay_limit: int = 240
    rate_limit_relay_window_seconds: int = 60

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
