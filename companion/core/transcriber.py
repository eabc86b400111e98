"""
CareCompanion — Audio Transcriber.

Many older users find speaking easier than typing. After transcription,
text flows into the same turn handler as typed messages.

OpenAI is used here for Whisper transcription only; conversational LLM
calls go through the provider-agnostic `complete()` in core/llm.py.
"""

from __future__ import annotations

import logging
from pathlib import Path

from openai import AsyncOpenAI

from companion.config import settings

logger = logging.getLogger(__name__)

_client: AsyncOpenAI | None = None


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        _client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


async def transcribe_audio(file_path: str, language: str | None = None) -> str:
    """Transcribe an audio file using OpenAI Whisper.

    Args:
        file_path: Path to the audio file (OGG, MP3, etc.).
        language: Optional ISO-639-1 hint ("en", "hi").

    Raises:
        Exception: If the Whisper API call fails.
    """
    kwargs = {"language": language} if language else {}
    try:
        with open(file_path, "rb") as audio_file:
            response = await _get_client().audio.transcriptions.create(
                model="whisper-1",
                file=audio_file,
                **kwargs,
            )
        text = response.text.strip()
        logger.info("Transcribed %d chars from %s", len(text), Path(file_path).name)
        return text
    except Exception as exc:
        logger.error("Whisper transcription failed for %s: %s", file_path, exc)
        raise
