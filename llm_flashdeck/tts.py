"""
Text-to-speech for card sides via the OpenAI speech API.

Audio files are written under ``<audio_dir>/tts-audio/`` and named after a hash
of language and text, so identical requests reuse the same file.
"""

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import openai

from .errors import SynthesisError, TransientSynthesisError, ValidationError
from .stores import Synthesizer

logger = logging.getLogger(__name__)

AUDIO_SUBDIR = "tts-audio"
DEFAULT_VOICE = "alloy"
DEFAULT_VOICES: Dict[str, str] = {
    "en": "alloy",
    "ja": "nova",
}

_TRANSIENT_ERRORS = (
    openai.APIConnectionError,  # includes APITimeoutError
    openai.RateLimitError,
    openai.InternalServerError,
)


def audio_filename(text: str, language: str) -> str:
    digest = hashlib.sha1(f"{language}\n{text}".encode("utf-8")).hexdigest()
    return f"{AUDIO_SUBDIR}/{digest}.mp3"


class OpenAISpeechSynthesizer(Synthesizer):
    def __init__(
        self,
        client: Any,
        audio_dir: str,
        model: str = "gpt-4o-mini-tts",
        voices: Optional[Dict[str, str]] = None,
    ) -> None:
        self.client = client
        self.audio_dir = Path(audio_dir)
        self.model = model
        self.voices = voices if voices is not None else dict(DEFAULT_VOICES)

    def voice_for(self, language: str) -> str:
        return self.voices.get(language.split("-")[0].lower(), DEFAULT_VOICE)

    def resolve(self, reference: str) -> Path:
        """Absolute location of a reference returned by :meth:`synthesize`."""
        return self.audio_dir / reference

    async def synthesize(self, text: str, language: str) -> str:
        if not text or not text.strip():
            raise ValidationError("Text to synthesize must not be empty.")
        if not language:
            raise ValidationError("A language is required for speech synthesis.")

        reference = audio_filename(text, language)
        target = self.resolve(reference)
        if target.exists():
            logger.debug("Reusing synthesized audio %s", reference)
            return reference

        logger.info("Synthesizing speech (%s, %d chars)", language, len(text))
        try:
            response = await self.client.audio.speech.create(
                model=self.model,
                voice=self.voice_for(language),
                input=text,
                response_format="mp3",
            )
        except _TRANSIENT_ERRORS as e:
            logger.warning("Transient TTS failure: %s", e)
            raise TransientSynthesisError(f"Speech synthesis temporarily unavailable: {e}") from e
        except openai.OpenAIError as e:
            logger.error("TTS request failed: %s", e)
            raise SynthesisError(f"Speech synthesis failed: {e}") from e

        audio = response.content
        if not audio:
            raise SynthesisError("Speech synthesis returned no audio content.")

        try:
            await asyncio.to_thread(_write_audio, target, audio)
        except OSError as e:
            logger.error("Could not write audio to %s: %s", target, e)
            raise SynthesisError(f"Could not save synthesized audio: {e}") from e
        logger.info("Saved synthesized audio to %s", target)
        return reference


def _write_audio(target: Path, audio: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_suffix(".part")
    tmp.write_bytes(audio)
    tmp.replace(target)


def build_synthesizer(api_key: Optional[str], audio_dir: str, model: str) -> Optional[OpenAISpeechSynthesizer]:
    if not api_key:
        return None
    return OpenAISpeechSynthesizer(openai.AsyncOpenAI(api_key=api_key), audio_dir, model=model)
