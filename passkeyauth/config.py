"""Process configuration.

Every setting can be overridden with a ``PASSKEY_`` prefixed environment
variable or a ``.env`` file, e.g. ``PASSKEY_RP_ID=example.com`` or
``PASSKEY_ORIGINS='["https://example.com"]'``.
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PASSKEY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    rp_id: str = Field(default="localhost", description="Relying party id (domain)")
    rp_name: str = Field(default="Passkey Auth", description="Relying party display name")
    origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Origins accepted in clientDataJSON and allowed by CORS",
    )
    user_verification: Literal["required", "preferred", "discouraged"] = "preferred"

    store_path: str = Field(default="passkeys.json", description="JSON file holding users and credentials")

    session_ttl_seconds: int = Field(default=24 * 60 * 60, gt=0)
    ceremony_ttl_seconds: int = Field(default=300, gt=0)
    cookie_name: str = "sessionID"
    cookie_secure: bool = False

    host: str = "localhost"
    port: int = 8080
    log_level: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings"]
