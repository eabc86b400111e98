"""Shared test fixtures and configuration.

Sets up fake environment variables so companion.config doesn't sys.exit(),
and provides common fixtures like a temp DB.
"""

import os

# Patch env vars BEFORE any companion imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "gemini")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("OPENWEATHER_API_KEY", "")
os.environ.setdefault("TIMEZONE", "UTC")

from datetime import datetime, timezone

import pytest

USER_ID = 12345
NOW = datetime(2026, 3, 10, 13, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, day: int = 10) -> datetime:
    """A UTC timestamp on the test day (March 2026)."""
    return datetime(2026, 3, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_companion.db")


@pytest.fixture
def health_db(tmp_db_path):
    """Return a HealthDB instance backed by a temp file."""
    from companion.data.db import HealthDB
    return HealthDB(db_path=tmp_db_path)
