"""Centralized settings module — single source of truth for all config.

All secrets loaded exclusively from env vars. Never committed, never logged.
Redaction enforced everywhere via observability.redaction.
"""
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

_ROOT = Path(__file__).resolve().parent.parent

DEMO_FALLBACK_TEXT = (
    "I'm the Miktsoan AI (Demo Mode). Since there is no API Key configured, "
    "I can't analyze your request deeply, but I'd suggest checking out our top "
    "rated Plumbers or Electricians via the search tab!"
)


class Settings(BaseSettings):
    # ── Environment ──────────────────────────────────────────────
    ENV: Literal["dev", "staging", "prod"] = Field(default="dev")

    # ── Document store ───────────────────────────────────────────
    PROFILE_STORE: Literal["memory", "mongo"] = Field(default="memory")
    MONGO_URL: str = Field(default="mongodb://localhost:27017")
    DB_NAME: str = Field(default="miktsoan_dev")

    # ── Auth / Signing ───────────────────────────────────────────
    JWT_SECRET: str = Field(default="")
    JWT_ALGORITHM: str = Field(default="HS256")
    JWT_EXPIRY_SECONDS: int = Field(default=7 * 24 * 3600)  # 1 week

    # ── One-time codes ───────────────────────────────────────────
    OTP_LENGTH: int = Field(default=6)
    OTP_TTL_SECONDS: int = Field(default=300)
    OTP_MAX_ATTEMPTS: int = Field(default=3)
    # Demo shortcut: one code for every identifier. MUST be empty in prod.
    OTP_STATIC_CODE: str = Field(default="")
    OTP_MIN_IDENTIFIER_LENGTH: int = Field(default=9)
    OTP_REQUESTS_PER_WINDOW: int = Field(default=5)
    OTP_WINDOW_SECONDS: int = Field(default=600)
    # Demo throttle: identifiers ending with this suffix are always rejected
    OTP_DEMO_THROTTLE_SUFFIX: str = Field(default="")

    # ── AI assistant ─────────────────────────────────────────────
    GEMINI_API_KEY: str = Field(default="")
    GEMINI_MODEL: str = Field(default="gemini-2.5-flash")
    AI_MAX_OUTPUT_TOKENS: int = Field(default=500)
    AI_TIMEOUT_S: float = Field(default=30.0)
    AI_FALLBACK_DELAY_S: float = Field(default=1.0)
    AI_FALLBACK_TEXT: str = Field(default=DEMO_FALLBACK_TEXT)

    # ── Client runtime ───────────────────────────────────────────
    DEFAULT_LANGUAGE: Literal["he", "en", "ar"] = Field(default="he")
    STATE_SNAPSHOT_PATH: str = Field(default=str(_ROOT / ".state" / "miktsoan-storage.json"))
    API_BASE_URL: str = Field(default="http://localhost:3001")
    API_TIMEOUT_S: float = Field(default=10.0)

    # ── Relay ────────────────────────────────────────────────────
    WS_AUTH_TIMEOUT_S: float = Field(default=30.0)

    # ── Observability ────────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")
    LOG_REDACTION_ENABLED: bool = Field(default=True)

    model_config = {
        "env_file": str(_ROOT / ".env"),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
