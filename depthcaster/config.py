"""
Depthcaster – Application configuration.
Reads environment variables from a .env file via pydantic-settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ── App ──
    APP_NAME: str = "Depthcaster"
    APP_URL: str = "http://127.0.0.1:8000"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # ── Database ──
    DATABASE_URL: str = "sqlite+aiosqlite:///./depthcaster.db"

    # ── Neynar ──
    NEYNAR_API_KEY: str = ""
    NEYNAR_API_URL: str = "https://api.neynar.com/v2/farcaster"
    NEYNAR_TIMEOUT_SECONDS: int = 15

    # ── Webhooks ──
    WEBHOOK_SECRET: str = ""

    # ── Push relay (simulated when empty) ──
    PUSH_RELAY_URL: str = ""

    # ── Caching ──
    FEED_CACHE_TTL_SECONDS: int = 30
    CURATOR_CACHE_TTL_SECONDS: int = 300

    # ── Feed ──
    FEED_DEFAULT_LIMIT: int = 30
    FEED_MAX_LIMIT: int = 100

    # ── Conversations ──
    CONVERSATION_MAX_DEPTH: int = 5
    CONVERSATION_MAX_REPLIES: int = 50
    # "promote" lifts replies whose parent is missing to the top level, "drop" hides them
    ORPHAN_REPLY_POLICY: str = "promote"


settings = Settings()
