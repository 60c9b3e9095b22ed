from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_BASE_URL: str = "http://localhost:3001/api/v1"
    WS_URL: str = "ws://localhost:3001/cable"
    HTTP_TIMEOUT_SECONDS: float = 10.0

    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"

    WS_HEALTH_CHECK_SECONDS: float = 1.0
    WS_CONNECT_TIMEOUT_SECONDS: float = 30.0
    WS_RECONNECT_BASE_SECONDS: float = 1.0
    WS_RECONNECT_MAX_SECONDS: float = 30.0
    WS_MAX_RECONNECT_ATTEMPTS: int = 5
    WS_SUBSCRIBE_DELAY_SECONDS: float = 2.0

    POLL_FOCUSED_SECONDS: float = 5.0
    POLL_BACKGROUND_SECONDS: float = 30.0

    UNREAD_POLL_SECONDS: float = 30.0
    UNREAD_UNAVAILABLE_POLL_SECONDS: float = 300.0
    UNREAD_REFRESH_DELAY_SECONDS: float = 1.0

    TYPING_PEER_EXPIRY_SECONDS: float = 3.0
    TYPING_IDLE_SECONDS: float = 2.0
    TYPING_REFRESH_SECONDS: float = 1.0

    SEND_ACK_TIMEOUT_SECONDS: float = 10.0
    MESSAGE_MAX_LENGTH: int = 1000

    REDIS_URL: str | None = None
    REDIS_SIGNAL_CHANNEL: str = "messaging.signals"

    LOG_LEVEL: str = "INFO"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
