from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from adapters.llm.transcription import OpenAITranscriber, TranscriptionError, clean_transcription
from core.config import OpenAIConfig

CONFIG = OpenAIConfig(api_key="sk-test", model="gpt-4o-mini", transcription_model="whisper-1", transcription_language="es")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("eh agrega 10 sacos de cemento", "agrega 10 sacos de cemento"),
        ("10 cemento ,5 clavos   bueno", "10 cemento, 5 clavos"),
        ("agregar  hmm arena", "agregar arena"),
    ],
)
def test_cleanup_drops_fillers(raw: str, expected: str) -> None:
    assert clean_transcription(raw) == expected


def test_cleanup_keeps_raw_text_when_too_much_is_removed() -> None:
    assert clean_transcription("eh mm") == "eh mm"


def test_transcriber_cleans_whisper_output() -> None:
    client = MagicMock()
    client.audio.transcriptions.create.return_value = MagicMock(text="este 5 clavos")
    transcriber = OpenAITranscriber(CONFIG, client=client)
    assert transcriber.transcribe(b"ogg-bytes") == "5 clavos"
    kwargs = client.audio.transcriptions.create.call_args.kwargs
    assert kwargs["model"] == "whisper-1"
    assert kwargs["language"] == "es"


def test_transcriber_wraps_client_errors() -> None:
    client = MagicMock()
    client.audio.transcriptions.create.side_effect = RuntimeError("network down")
    with pytest.raises(TranscriptionError):
        OpenAITranscriber(CONFIG, client=client).transcribe(b"ogg-bytes")
