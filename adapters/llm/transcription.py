from __future__ import annotations

import re
from typing import Any

from openai import OpenAI

from core.config import OpenAIConfig
from core.logging.audit import audit_event, safe_excerpt

_LEADING_FILLER = re.compile(r"^(?:eh+|ah+|mm+|um+|este|bueno|o sea)\s+", re.IGNORECASE)
_TRAILING_FILLER = re.compile(r"\s+(?:eh+|ah+|mm+|um+|este|bueno|o sea)$", re.IGNORECASE)
# noise tokens stay when they sit right before a list separator
_NOISE = re.compile(r"\b(?:uhm|umm|hmm|mhm)\b(?!\s*[,y])", re.IGNORECASE)


class TranscriptionError(Exception):
    """Voice note could not be turned into text."""


def clean_transcription(text: str) -> str:
    """Drop filler words and noise without rewriting content.

    Falls back to the trimmed raw text when cleanup would leave almost
    nothing or strip more than half of it.
    """
    if not text or not text.strip():
        return text
    cleaned = _LEADING_FILLER.sub("", text)
    cleaned = _TRAILING_FILLER.sub("", cleaned)
    cleaned = _NOISE.sub("", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned)
    cleaned = re.sub(r"\s*,\s*", ", ", cleaned).strip()
    if len(cleaned) < 3 or len(cleaned) < len(text) * 0.5:
        audit_event("transcription.cleanup_reverted", excerpt=safe_excerpt(text, max_len=40))
        return text.strip()
    return cleaned


class OpenAITranscriber:
    def __init__(self, config: OpenAIConfig, client: Any | None = None) -> None:
        self.model = config.transcription_model
        self.language = config.transcription_language
        self.client = client or OpenAI(api_key=config.api_key)

    def transcribe(self, audio: bytes, filename: str = "audio.ogg") -> str:
        try:
            response = self.client.audio.transcriptions.create(
                file=(filename, audio, "audio/ogg"),
                model=self.model,
                language=self.language,
            )
        except Exception as exc:
            raise TranscriptionError("Could not transcribe the audio.") from exc
        raw = getattr(response, "text", None) or ""
        audit_event("transcription.done", chars=len(raw))
        return clean_transcription(raw)
