# mclink/config.py
from __future__ import annotations

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MCLINK_", env_file=".env", extra="ignore")

    # Service metadata
    SERVICE_NAME: str = "mc-link-service"
    ENV: str = "local"
    PORT: int = 8040
    LOG_LEVEL: str = "INFO"
    CORS_ALLOW_ORIGINS: List[str] = Field(default_factory=list)

    # MongoDB
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB: str = "mclink"

    # Collections
    COL_LINK_CODES: str = "link_codes"
    COL_ACCOUNTS: str = "accounts"
    COL_SECURITY_LOGS: str = "security_logs"

    # Link codes
    LINK_CODE_TTL_MINUTES: int = 1440
    LINK_CODE_MAX_TTL_MINUTES: int = 10080
    LINK_CODE_LENGTH: int = Field(default=8, ge=5, le=16)
    SWEEP_INTERVAL_SECONDS: int = 300

    # Web sessions (signed by the login flow, verified here)
    SESSION_SIGNING_SECRET: str = Field(...)
    SESSION_COOKIE_NAME: str = "token"
    SESSION_TTL_SECONDS: int = 7 * 24 * 3600

    # Messaging (topic exchange); unset = in-process sink only
    RABBITMQ_URI: Optional[str] = None
    RABBITMQ_EXCHANGE: str = "mclink.events"
    # Final RK shape => <EVENTS_ORG>.mclink.<event>.v1
    EVENTS_ORG: str = "platform"

    # LuckPerms REST bridge; unset = rank sync disabled
    LUCKPERMS_API_URL: Optional[str] = None
    LUCKPERMS_TIMEOUT_SECONDS: int = 5


settings = Settings()  # type: ignore
