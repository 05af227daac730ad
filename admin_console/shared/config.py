"""
MODULE OVERVIEW:
Application-wide configuration using Pydantic Settings.
Where it fits: every client component reads its defaults from here, but each one also
accepts explicit constructor arguments so tests can build fully isolated instances.

WHAT IS HAPPENING HERE:
We declare the endpoint paths, reconnect timings and buffer sizes once. If the backend
moves the refresh endpoint or we want a gentler reconnect curve, it is a one-line change
(or an ADMIN_CONSOLE_* environment variable) instead of a hunt through the code.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    API_BASE_URL: str = "http://127.0.0.1:8000/api"
    LOG_LEVEL: str = "INFO"
    REQUEST_TIMEOUT_S: float = 30.0

    # Auth
    LOGIN_PATH: str = "/auth/login"
    REFRESH_PATH: str = "/auth/refresh"
    LOGOUT_PATH: str = "/auth/logout"
    ME_PATH: str = "/auth/me"
    SIGN_IN_URL: str = "/login"
    ADMIN_ROLE_ID: int = 1

    # Credential persistence
    CREDENTIALS_FILE: str = ".admin_console/credentials.json"
    CREDENTIALS_KEY: str = "mg_admin_token"

    # Event stream
    EVENTS_PATH: str = "/events/sse"
    EVENTS_TRANSPORT: str = "sse"
    EVENT_TOPICS: list[str] = ["notifications"]
    STREAM_READ_TIMEOUT_S: float = 90.0

    # Reconnect backoff
    RECONNECT_FLOOR_MS: int = 1000
    RECONNECT_GROWTH: float = 1.8
    RECONNECT_CEILING_MS: int = 60000

    # Notifications
    NOTIFICATIONS_PATH: str = "/notifications"
    LATEST_CAPACITY: int = 12
    LATEST_SNAPSHOT_LIMIT: int = 8
    PAGE_LIMIT: int = 20
    NOTIFY_SOUND: bool = True

    # Tolerate missing env vars to allow easy out-of-the-box execution
    model_config = SettingsConfigDict(
        env_prefix="ADMIN_CONSOLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
