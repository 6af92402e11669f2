"""
Ports used by acquisition sessions, and their SQL-backed implementations.

Sessions depend on these abstractions only. The SQL adapters run blocking
repository calls in a worker thread so the event loop stays responsive.
"""

import asyncio
import datetime
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from .db import AiContentType, FlashcardRepository
from .scheduler import Rating
from .structured import StudyCard

logger = logging.getLogger(__name__)


class CardStore(ABC):
    @abstractmethod
    async def fetch_due_cards(self, deck_id: int, session_limit: int) -> List[StudyCard]:
        """Return up to ``session_limit`` cards of the deck that are due for review."""


class ReviewRecorder(ABC):
    @abstractmethod
    async def record_review(
        self,
        card_id: int,
        rating: Rating,
        new_interval: int,
        new_ease_factor: float,
        new_due_date: datetime.datetime,
    ) -> None:
        """Persist a scheduling update. Raises on failure."""


class AudioContentCache(ABC):
    @abstractmethod
    async def lookup(self, card_id: int, content_type: AiContentType, language: str) -> Optional[str]:
        """Return the stored audio reference, or None."""

    @abstractmethod
    async def store(self, card_id: int, content_type: AiContentType, language: str, reference: str) -> None:
        pass


class Synthesizer(ABC):
    @abstractmethod
    async def synthesize(self, text: str, language: str) -> str:
        """
        Produce speech for ``text`` and return a reference to the audio.

        Raises:
            TransientSynthesisError: the provider is temporarily unavailable.
            SynthesisError: the request cannot succeed as issued.
        """


class AudioPlayer(ABC):
    @abstractmethod
    def play(self, reference: str) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        pass


class SqlCardStore(CardStore):
    def __init__(self, repository: FlashcardRepository) -> None:
        self.repository = repository

    async def fetch_due_cards(self, deck_id: int, session_limit: int) -> List[StudyCard]:
        cards = await asyncio.to_thread(self.repository.get_due_cards, deck_id, session_limit)
        return [StudyCard.from_card(card) for card in cards]


class SqlReviewRecorder(ReviewRecorder):
    def __init__(self, repository: FlashcardRepository) -> None:
        self.repository = repository
        # Writes for the same card must land in rating order.
        self._lock = asyncio.Lock()

    async def record_review(
        self,
        card_id: int,
        rating: Rating,
        new_interval: int,
        new_ease_factor: float,
        new_due_date: datetime.datetime,
    ) -> None:
        async with self._lock:
            await asyncio.to_thread(
                self.repository.record_review, card_id, rating, new_interval, new_ease_factor, new_due_date
            )


class SqlAudioContentCache(AudioContentCache):
    def __init__(self, repository: FlashcardRepository) -> None:
        self.repository = repository

    async def lookup(self, card_id: int, content_type: AiContentType, language: str) -> Optional[str]:
        row = await asyncio.to_thread(self.repository.get_ai_content, card_id, content_type, language)
        return row.content if row is not None and row.content else None

    async def store(self, card_id: int, content_type: AiContentType, language: str, reference: str) -> None:
        await asyncio.to_thread(self.repository.upsert_ai_content, card_id, content_type, language, reference)


class MemoryAudioContentCache(AudioContentCache):
    """Process-local memoization, optionally in front of another cache."""

    def __init__(self, backing: Optional[AudioContentCache] = None) -> None:
        self.backing = backing
        self._entries: Dict[Tuple[int, AiContentType, str], str] = {}

    async def lookup(self, card_id: int, content_type: AiContentType, language: str) -> Optional[str]:
        key = (card_id, content_type, language)
        if key in self._entries:
            return self._entries[key]
        if self.backing is None:
            return None
        reference = await self.backing.lookup(card_id, content_type, language)
        if reference is not None:
            self._entries[key] = reference
        return reference

    async def store(self, card_id: int, content_type: AiContentType, language: str, reference: str) -> None:
        self._entries[(card_id, content_type, language)] = reference
        if self.backing is not None:
            await self.backing.store(card_id, content_type, language, reference)


class NullAudioPlayer(AudioPlayer):
    """Player for headless use: remembers what would be playing."""

    def __init__(self) -> None:
        self.current: Optional[str] = None

    def play(self, reference: str) -> None:
        logger.debug("Playing %s", reference)
        self.current = reference

    def stop(self) -> None:
        self.current = None
