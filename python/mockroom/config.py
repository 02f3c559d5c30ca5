"""
Configuration for the session gateway.

Settings are read from environment variables prefixed with ``MOCKROOM_``
(or a ``.env`` file). Capacity, grace period and history sizes are
placeholders chosen for a handful of interview participants.
"""

from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="MOCKROOM_", env_file=".env", extra="ignore")

    app_name: str = Field(default="Mockroom Session Gateway", description="Human readable service name")
    ws_path: str = Field(default="/ws", description="WebSocket route")
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:5173"],
        description="Origins allowed to call the API (the web client)",
    )

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=5000, ge=1, le=65535)
    log_level: str = Field(default="info")

    max_participants: int = Field(default=8, ge=1, description="Room capacity")
    rejoin_grace_seconds: float = Field(
        default=30.0, ge=0, description="How long a dropped participant keeps its seat"
    )
    history_limit: int = Field(
        default=1000, ge=1, description="Accepted operations retained per room for transforming stale edits"
    )
    chat_history_limit: int = Field(default=500, ge=1, description="Chat messages retained per room")
    max_document_length: int = Field(default=1_000_000, ge=1)
    max_chat_length: int = Field(default=4000, ge=1)

    max_message_size: int = Field(default=1024 * 1024, ge=1, description="Maximum inbound frame size")
    rate_limit: float = Field(default=100.0, gt=0, description="Inbound messages per second per connection")
    message_timeout: float = Field(default=60.0, gt=0, description="Idle seconds before a server ping")
    outbox_size: int = Field(default=1024, ge=1, description="Queued outbound messages per connection")

    @field_validator("ws_path")
    @classmethod
    def ensure_leading_slash(cls, value: str) -> str:
        return value if value.startswith("/") else f"/{value}"

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.lower()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""
    return Settings()


__all__ = ["Settings", "get_settings"]
