"""
AI content generation for cards: explanations and translations.

Models are any object with ``prompt(text, system="")`` returning something
with a ``text()`` method, which is what both ``llm`` models and
``OpenAIModel`` below provide.
"""

import logging
from typing import Any, Dict, List, Optional

from .errors import ExternalApiError, ValidationError

logger = logging.getLogger(__name__)

MAX_COMPLETION_TOKENS = 1024

LANGUAGE_NAMES = {
    "en": "English",
    "ja": "Japanese",
}


class OpenAIModel:
    """Wrapper for the OpenAI chat API to match the ``llm`` model interface."""

    def __init__(self, client: Any, model_name: str = "gpt-4o-mini"):
        self.client = client
        self.model_name = model_name

    def prompt(self, prompt_text: str, system: str = "") -> Any:
        messages: List[Dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt_text})

        logger.debug(
            "OpenAI call model=%s system_len=%d prompt_len=%d",
            self.model_name, len(system), len(prompt_text),
        )
        response = self.client.chat.completions.create(
            model=self.model_name,
            messages=messages,  # type: ignore
            max_completion_tokens=MAX_COMPLETION_TOKENS,
        )
        content = response.choices[0].message.content or ""
        logger.debug("OpenAI response length=%d usage=%s", len(content), response.usage)

        class Response:
            def __init__(self, content: str) -> None:
                self.content = content

            def text(self) -> str:
                return self.content

        return Response(content)


def _language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code.split("-")[0].lower(), code)


def _ask(model: Any, prompt: str, system: str, what: str) -> str:
    if model is None:
        raise ExternalApiError(f"No AI model configured for {what}.")
    try:
        response = model.prompt(prompt, system=system)
        text = response.text().strip()
    except ExternalApiError:
        raise
    except Exception as e:
        raise ExternalApiError(f"Failed to generate {what}: {e}") from e
    if not text:
        raise ExternalApiError(f"Failed to generate {what}: empty response.")
    return text


def generate_explanation(text: str, language: str, model: Any) -> str:
    """Explain the meaning and usage of ``text`` for a learner."""
    if not text:
        return ""
    system_prompt = "You are a language tutor. Answer concisely and clearly."
    prompt = (
        f"Explain the meaning and usage of the {_language_name(language)} word/phrase "
        f"\"{text}\" concisely for a language learner. Keep it simple and clear."
    )
    logger.info("Generating explanation for %r (%s)", text, language)
    return _ask(model, prompt, system_prompt, "explanation")


def generate_translation(text: str, source_language: str, target_language: str, model: Any) -> str:
    """Translate ``text`` between two languages. Returns only the translation."""
    if not text:
        return ""
    if not source_language or not target_language:
        raise ValidationError("Source and target language codes are required for translation.")
    system_prompt = "You are a translator. Reply with the translated text only."
    prompt = (
        f"Translate the following text accurately from {_language_name(source_language)} "
        f"to {_language_name(target_language)}:\n\n\"{text}\"\n\nTranslated text:"
    )
    logger.info("Generating translation for %r (%s -> %s)", text, source_language, target_language)
    return _ask(model, prompt, system_prompt, "translation")


def build_model(api_key: Optional[str], model_name: str) -> Optional[OpenAIModel]:
    """Return an OpenAI-backed model, or None when no API key is available."""
    if not api_key:
        logger.warning("No OpenAI API key provided. AI features will be disabled.")
        return None
    from openai import OpenAI

    return OpenAIModel(OpenAI(api_key=api_key), model_name=model_name)
