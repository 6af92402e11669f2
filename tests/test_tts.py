"""
Tests for OpenAI speech synthesis: file naming, reuse and error mapping.
"""

import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import httpx
import openai
import pytest

from llm_flashdeck import tts
from llm_flashdeck.errors import SynthesisError, TransientSynthesisError, ValidationError

SPEECH_URL = "https://api.openai.com/v1/audio/speech"


class FakeSpeech:
    def __init__(self, content: bytes = b"ID3-audio", error: Optional[Exception] = None) -> None:
        self.content = content
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=self.content)


def fake_client(speech: FakeSpeech) -> Any:
    return SimpleNamespace(audio=SimpleNamespace(speech=speech))


def _response(status: int) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", SPEECH_URL))


def test_audio_filename_is_stable_per_language() -> None:
    name = tts.audio_filename("こんにちは", "ja-JP")
    assert name.startswith("tts-audio/") and name.endswith(".mp3")
    assert name == tts.audio_filename("こんにちは", "ja-JP")
    assert name != tts.audio_filename("こんにちは", "en-US")


def test_voice_selection_by_language() -> None:
    synth = tts.OpenAISpeechSynthesizer(fake_client(FakeSpeech()), "audio")
    assert synth.voice_for("ja-JP") == "nova"
    assert synth.voice_for("en-US") == "alloy"
    assert synth.voice_for("fr-FR") == tts.DEFAULT_VOICE


def test_synthesize_writes_file_once(tmp_path: Any) -> None:
    speech = FakeSpeech()
    synth = tts.OpenAISpeechSynthesizer(fake_client(speech), str(tmp_path), model="tts-test")

    reference = asyncio.run(synth.synthesize("ありがとう", "ja-JP"))
    assert synth.resolve(reference).read_bytes() == b"ID3-audio"
    assert speech.calls == [{
        "model": "tts-test",
        "voice": "nova",
        "input": "ありがとう",
        "response_format": "mp3",
    }]

    assert asyncio.run(synth.synthesize("ありがとう", "ja-JP")) == reference
    assert len(speech.calls) == 1


@pytest.mark.parametrize("text,language", [("", "en-US"), ("   ", "en-US"), ("hello", "")])
def test_synthesize_validates_input(tmp_path: Any, text: str, language: str) -> None:
    speech = FakeSpeech()
    synth = tts.OpenAISpeechSynthesizer(fake_client(speech), str(tmp_path))
    with pytest.raises(ValidationError):
        asyncio.run(synth.synthesize(text, language))
    assert speech.calls == []


@pytest.mark.parametrize(
    "error",
    [
        openai.RateLimitError("slow down", response=_response(429), body=None),
        openai.InternalServerError("upstream", response=_response(500), body=None),
        openai.APIConnectionError(request=httpx.Request("POST", SPEECH_URL)),
    ],
)
def test_transient_provider_errors(tmp_path: Any, error: Exception) -> None:
    synth = tts.OpenAISpeechSynthesizer(fake_client(FakeSpeech(error=error)), str(tmp_path))
    with pytest.raises(TransientSynthesisError) as exc_info:
        asyncio.run(synth.synthesize("hello", "en-US"))
    assert exc_info.value.retryable is True


def test_permanent_provider_error(tmp_path: Any) -> None:
    error = openai.BadRequestError("bad voice", response=_response(400), body=None)
    synth = tts.OpenAISpeechSynthesizer(fake_client(FakeSpeech(error=error)), str(tmp_path))
    with pytest.raises(SynthesisError) as exc_info:
        asyncio.run(synth.synthesize("hello", "en-US"))
    assert not isinstance(exc_info.value, TransientSynthesisError)
    assert exc_info.value.retryable is False


def test_empty_audio_is_an_error(tmp_path: Any) -> None:
    synth = tts.OpenAISpeechSynthesizer(fake_client(FakeSpeech(content=b"")), str(tmp_path))
    with pytest.raises(SynthesisError):
        asyncio.run(synth.synthesize("hello", "en-US"))
    assert not (tmp_path / "tts-audio").exists()


def test_build_synthesizer_without_key() -> None:
    assert tts.build_synthesizer(None, "audio", "gpt-4o-mini-tts") is None
    assert tts.build_synthesizer("", "audio", "gpt-4o-mini-tts") is None


def test_unwritable_audio_dir_is_a_synthesis_error(tmp_path: Any) -> None:
    blocked = tmp_path / "audio"
    blocked.write_text("not a directory")
    speech = FakeSpeech()
    synth = tts.OpenAISpeechSynthesizer(fake_client(speech), str(blocked))
    with pytest.raises(SynthesisError) as exc_info:
        asyncio.run(synth.synthesize("hello", "en-US"))
    assert isinstance(exc_info.value.__cause__, OSError)
    assert exc_info.value.retryable is False
    assert len(speech.calls) == 1
