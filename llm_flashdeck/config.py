"""
Runtime configuration read from environment variables.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .errors import ValidationError

DEFAULT_DB_PATH = "flashdeck.db"
DEFAULT_AUDIO_DIR = "audio"
DEFAULT_SESSION_LIMIT = 100
DEFAULT_FINISH_DELAY = 0.6


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "0") == "1"


def _env_number(name: str, default: Any, cast: Callable[[str], Any]) -> Any:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValidationError(
            f"{name} must be a number, got {raw!r}.", details={"variable": name}
        ) from None


@dataclass
class Settings:
    db_path: str = DEFAULT_DB_PATH
    audio_dir: str = DEFAULT_AUDIO_DIR
    session_limit: int = DEFAULT_SESSION_LIMIT
    front_language: str = "en-US"
    back_language: str = "ja-JP"
    chat_model: str = "gpt-4o-mini"
    tts_model: str = "gpt-4o-mini-tts"
    finish_delay: float = DEFAULT_FINISH_DELAY
    openai_api_key: Optional[str] = None
    debug: bool = False

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.db_path}"

    @property
    def ai_enabled(self) -> bool:
        return bool(self.openai_api_key)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_path=os.environ.get("FLASHDECK_DB", DEFAULT_DB_PATH),
            audio_dir=os.environ.get("FLASHDECK_AUDIO_DIR", DEFAULT_AUDIO_DIR),
            session_limit=_env_number("FLASHDECK_SESSION_LIMIT", DEFAULT_SESSION_LIMIT, int),
            front_language=os.environ.get("FLASHDECK_FRONT_LANGUAGE", "en-US"),
            back_language=os.environ.get("FLASHDECK_BACK_LANGUAGE", "ja-JP"),
            chat_model=os.environ.get("FLASHDECK_CHAT_MODEL", "gpt-4o-mini"),
            tts_model=os.environ.get("FLASHDECK_TTS_MODEL", "gpt-4o-mini-tts"),
            finish_delay=_env_number("FLASHDECK_FINISH_DELAY", DEFAULT_FINISH_DELAY, float),
            openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
            debug=_env_flag("FLASHDECK_DEBUG"),
        )


def configure_logging(debug: bool = False) -> None:
    """Attach a stream handler to the package logger (idempotent)."""
    logger = logging.getLogger("llm_flashdeck")
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    if not any(getattr(h, "_flashdeck", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handler._flashdeck = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
