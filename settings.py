# -----------------------------
# settings.py
# -----------------------------
# Runtime configuration, read from the environment via pydantic-settings.

from __future__ import annotations

from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server, chat-limit and logging options."""

    model_config = SettingsConfigDict(
        env_prefix="ANONCHAT_", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # --- Server ---
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8080, validation_alias=AliasChoices("PORT", "ANONCHAT_PORT"))
    allowed_origin: str = Field(
        default="*",
        validation_alias=AliasChoices("CLIENT_URL", "ANONCHAT_ALLOWED_ORIGIN"),
        description="Origin allowed for CORS and websocket upgrades; '*' allows any",
    )
    static_dir: str = Field(default="static")
    ping_interval: float = Field(default=25.0, description="Websocket keepalive ping interval (s)")
    ping_timeout: float = Field(default=20.0, description="Websocket keepalive timeout (s)")
    http_requests_per_minute: int = Field(default=100)

    # --- Chat ---
    max_message_length: int = Field(default=500)
    max_messages_per_minute: int = Field(default=60)
    stats_interval: float = Field(default=5.0, description="Periodic stats broadcast interval (s)")
    stats_min_gap: float = Field(default=1.0, description="Minimum gap between change-triggered broadcasts (s)")
    outbox_size: int = Field(default=256, description="Queued outbound frames per connection")

    # --- Logging ---
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    @field_validator(
        "max_message_length",
        "max_messages_per_minute",
        "http_requests_per_minute",
        "outbox_size",
        "stats_interval",
        "ping_interval",
        "ping_timeout",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("stats_min_gap")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @property
    def allow_any_origin(self) -> bool:
        return self.allowed_origin.strip() in ("", "*")


@lru_cache
def get_settings() -> Settings:
    return Settings()
