"""
Service construction.

The entry point builds one ``Services`` from ``Settings`` and passes its parts
to whatever needs them; nothing in the package keeps module-level clients.
"""

from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.engine import Engine

from . import ai, db, tts
from .config import Settings
from .session import AcquisitionSession, ErrorSink
from .stores import (
    AudioPlayer,
    MemoryAudioContentCache,
    SqlAudioContentCache,
    SqlCardStore,
    SqlReviewRecorder,
)


@dataclass
class Services:
    settings: Settings
    engine: Engine
    repository: db.FlashcardRepository
    model: Any = None
    synthesizer: Optional[tts.OpenAISpeechSynthesizer] = None

    def new_session(
        self,
        deck_id: int,
        session_limit: Optional[int] = None,
        player: Optional[AudioPlayer] = None,
        autoplay: bool = False,
        on_error: Optional[ErrorSink] = None,
    ) -> AcquisitionSession:
        return AcquisitionSession(
            deck_id,
            SqlCardStore(self.repository),
            SqlReviewRecorder(self.repository),
            session_limit=session_limit or self.settings.session_limit,
            finish_delay=self.settings.finish_delay,
            audio_cache=MemoryAudioContentCache(SqlAudioContentCache(self.repository)),
            synthesizer=self.synthesizer,
            player=player,
            front_language=self.settings.front_language,
            back_language=self.settings.back_language,
            autoplay=autoplay,
            on_error=on_error,
        )

    def dispose(self) -> None:
        self.engine.dispose()


def build_services(settings: Settings, with_ai: bool = True) -> Services:
    engine = db.create_db_engine(settings.db_path)
    if not db.is_db_initialized(engine):
        db.init_db(engine)
    repository = db.FlashcardRepository(db.make_session_factory(engine))

    model = None
    synthesizer = None
    if with_ai and settings.ai_enabled:
        model = ai.build_model(settings.openai_api_key, settings.chat_model)
        synthesizer = tts.build_synthesizer(settings.openai_api_key, settings.audio_dir, settings.tts_model)
    return Services(settings=settings, engine=engine, repository=repository, model=model, synthesizer=synthesizer)
