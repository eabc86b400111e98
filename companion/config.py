"""
CareCompanion — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from companion/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram (thin transport + caregiver alert delivery)
    TELEGRAM_BOT_TOKEN: str

    # LLM — provider-agnostic (gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "gemini"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str
    LLM_TIMEOUT_SECONDS: float = 20.0

    # OpenAI — Whisper transcription and memory embeddings
    OPENAI_API_KEY: str = ""
    EMBEDDING_MODEL: str = "text-embedding-3-small"

    # SQLite
    DATABASE_PATH: str = "data/companion.db"

    # Security
    ALLOWED_USER_IDS: list[int] = []

    # Routine baseline
    TIMEZONE: str = "Asia/Kolkata"
    BASELINE_REBUILD_HOUR: int = 2
    BASELINE_LOOKBACK_DAYS: int = 30

    # Conversation
    DEFAULT_LANGUAGE: str = "English"
    MEMORY_TOP_K: int = 5
    CONVERSATION_CONTEXT_TURNS: int = 10
    PENDING_FOLLOW_UP_MINUTES: int = 30

    # Risk guard
    MISSED_DOSE_GRACE_MINUTES: int = 120
    CAREGIVER_CHAT_ID: int | None = None

    # OpenWeatherMap (optional — heat/medication interaction check)
    OPENWEATHER_API_KEY: str = ""
    DEFAULT_LOCATION: str = ""

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("CAREGIVER_CHAT_ID", mode="before")
    @classmethod
    def parse_caregiver_chat(cls, v: str | int | None) -> int | None:
        if v is None or v == "":
            return None
        return int(v)

    @field_validator(
        "BASELINE_REBUILD_HOUR",
        "BASELINE_LOOKBACK_DAYS",
        "MEMORY_TOP_K",
        "CONVERSATION_CONTEXT_TURNS",
        "PENDING_FOLLOW_UP_MINUTES",
        "MISSED_DOSE_GRACE_MINUTES",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    llm_api_key = os.getenv("LLM_API_KEY", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not llm_api_key or llm_api_key.startswith("your-"):
        print("ERROR: LLM_API_KEY is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "gemini"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        LLM_TIMEOUT_SECONDS=float(os.getenv("LLM_TIMEOUT_SECONDS", "20")),
        OPENAI_API_KEY=os.getenv("OPENAI_API_KEY", ""),
        EMBEDDING_MODEL=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/companion.db"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Kolkata"),
        BASELINE_REBUILD_HOUR=os.getenv("BASELINE_REBUILD_HOUR", "2"),
        BASELINE_LOOKBACK_DAYS=os.getenv("BASELINE_LOOKBACK_DAYS", "30"),
        DEFAULT_LANGUAGE=os.getenv("DEFAULT_LANGUAGE", "English"),
        MEMORY_TOP_K=os.getenv("MEMORY_TOP_K", "5"),
        CONVERSATION_CONTEXT_TURNS=os.getenv("CONVERSATION_CONTEXT_TURNS", "10"),
        PENDING_FOLLOW_UP_MINUTES=os.getenv("PENDING_FOLLOW_UP_MINUTES", "30"),
        MISSED_DOSE_GRACE_MINUTES=os.getenv("MISSED_DOSE_GRACE_MINUTES", "120"),
        CAREGIVER_CHAT_ID=os.getenv("CAREGIVER_CHAT_ID", ""),
        OPENWEATHER_API_KEY=os.getenv("OPENWEATHER_API_KEY", ""),
        DEFAULT_LOCATION=os.getenv("DEFAULT_LOCATION", ""),
    )


# Singleton — imported by all other modules as:
#   from companion.config import settings
settings = _load_settings()
