"""
Acquisition session: one pass over a deck's due cards, plus retries.

Cards rated AGAIN are collected in a retry queue and replayed once the main
queue is exhausted, until the reviewer rates them something else. Review
persistence is dispatched as background tasks; the queue advances without
waiting for it, and failures go to ``errors`` and the ``on_error`` sink.

``rate`` mutates queue state without locking. Call it from the event loop
thread only, one rating at a time.
"""

import asyncio
import dataclasses
import datetime
import enum
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple

from .db import AiContentType
from .errors import FlashdeckError, SessionStateError, SynthesisError
from .scheduler import Rating, compute_due_date, compute_next_state
from .stores import AudioContentCache, AudioPlayer, CardStore, ReviewRecorder, Synthesizer
from .structured import StudyCard

logger = logging.getLogger(__name__)

DEFAULT_SESSION_LIMIT = 100
DEFAULT_FINISH_DELAY = 0.6

ErrorSink = Callable[[Exception], None]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class SessionState(str, enum.Enum):
    LOADING = "LOADING"
    EMPTY = "EMPTY"
    FAILED = "FAILED"
    ACTIVE = "ACTIVE"
    FINISHING = "FINISHING"
    FINISHED = "FINISHED"


class AudioSide(str, enum.Enum):
    FRONT = "front"
    BACK = "back"


class AcquisitionSession:
    def __init__(
        self,
        deck_id: int,
        card_store: CardStore,
        review_recorder: ReviewRecorder,
        *,
        session_limit: int = DEFAULT_SESSION_LIMIT,
        finish_delay: float = DEFAULT_FINISH_DELAY,
        audio_cache: Optional[AudioContentCache] = None,
        synthesizer: Optional[Synthesizer] = None,
        player: Optional[AudioPlayer] = None,
        front_language: str = "en-US",
        back_language: str = "ja-JP",
        autoplay: bool = False,
        on_error: Optional[ErrorSink] = None,
        clock: Optional[Callable[[], datetime.datetime]] = None,
    ) -> None:
        self.deck_id = deck_id
        self.card_store = card_store
        self.review_recorder = review_recorder
        self.session_limit = session_limit
        self.finish_delay = finish_delay
        self.audio_cache = audio_cache
        self.synthesizer = synthesizer
        self.player = player
        self.front_language = front_language
        self.back_language = back_language
        self.autoplay = autoplay
        self.on_error = on_error
        self.clock = clock or _utcnow

        self.state = SessionState.LOADING
        self.main_queue: List[StudyCard] = []
        self.retry_queue: List[StudyCard] = []
        self.current_index = 0
        self.total_session_cards = 0
        self.pass_number = 0
        self.history: List[Tuple[int, Rating]] = []
        self.errors: List[Exception] = []
        self.load_error: Optional[BaseException] = None

        self.loading_side: Optional[AudioSide] = None
        self.playing_side: Optional[AudioSide] = None
        self.tts_error: Optional[str] = None
        self.tts_retryable = False

        # Bumped on every card transition; async results from an older
        # generation belong to a card that is no longer shown.
        self._generation = 0
        self._pending: Set["asyncio.Task[Any]"] = set()
        self._finish_handle: Optional[asyncio.TimerHandle] = None
        self._finished = asyncio.Event()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> SessionState:
        if self.state is not SessionState.LOADING or self.load_error is not None:
            raise SessionStateError(f"Session already loaded (state={self.state.value}).")
        try:
            cards = await self.card_store.fetch_due_cards(self.deck_id, self.session_limit)
        except Exception as e:
            self.load_error = e
            self.state = SessionState.FAILED
            logger.error("Failed to load due cards for deck %s: %s", self.deck_id, e)
            raise

        cards = list(cards)
        if not cards:
            self.state = SessionState.EMPTY
            logger.info("No due cards in deck %s", self.deck_id)
            return self.state

        self.main_queue = cards
        self.retry_queue = []
        self.current_index = 0
        self.total_session_cards = len(cards)
        self.pass_number = 1
        self.state = SessionState.ACTIVE
        logger.info("Session started for deck %s with %d cards", self.deck_id, len(cards))
        self._on_card_changed()
        return self.state

    # ------------------------------------------------------------------
    # Queue state
    # ------------------------------------------------------------------

    @property
    def current_card(self) -> Optional[StudyCard]:
        if self.state is not SessionState.ACTIVE:
            return None
        if 0 <= self.current_index < len(self.main_queue):
            return self.main_queue[self.current_index]
        return None

    @property
    def remaining_count(self) -> int:
        if self.state is not SessionState.ACTIVE:
            return 0
        return len(self.main_queue) - self.current_index + len(self.retry_queue)

    @property
    def completed_count(self) -> int:
        if self.total_session_cards == 0:
            return 0
        return self.total_session_cards - self.remaining_count

    @property
    def progress_percentage(self) -> float:
        if self.state in (SessionState.FINISHING, SessionState.FINISHED):
            return 100.0
        if self.total_session_cards == 0:
            return 0.0
        return self.completed_count / self.total_session_cards * 100

    @property
    def is_finished(self) -> bool:
        return self.state is SessionState.FINISHED

    # ------------------------------------------------------------------
    # Rating
    # ------------------------------------------------------------------

    def rate(self, rating: Any) -> "asyncio.Task[None]":
        """Rate the current card and advance.

        Returns the background task recording the review. Callers need not
        await it; its failures are reported through the error sink.
        """
        asyncio.get_running_loop()  # recording is dispatched onto the running loop
        rating = Rating.parse(rating)
        card = self.current_card
        if card is None:
            raise SessionStateError(f"No current card to rate (state={self.state.value}).")

        self.stop_audio()
        new_state = compute_next_state(card.scheduling_state, rating)
        due = compute_due_date(new_state.interval, self.clock())
        self.history.append((card.id, rating))
        logger.debug(
            "Card %s rated %s: interval %d -> %d, ease %.2f -> %.2f",
            card.id, rating.value, card.interval, new_state.interval, card.ease_factor, new_state.ease_factor,
        )

        task = self._dispatch(
            self.review_recorder.record_review(card.id, rating, new_state.interval, new_state.ease_factor, due),
            f"recording review of card {card.id}",
        )

        if rating is Rating.AGAIN:
            # The retry pass schedules from the state this rating produced.
            self.retry_queue.append(dataclasses.replace(
                card, interval=new_state.interval, ease_factor=new_state.ease_factor
            ))
        self._advance()
        return task

    def _advance(self) -> None:
        if self.current_index < len(self.main_queue) - 1:
            self.current_index += 1
        elif self.retry_queue:
            self.main_queue = self.retry_queue
            self.retry_queue = []
            self.current_index = 0
            self.pass_number += 1
            logger.debug("Starting retry pass %d with %d cards", self.pass_number, len(self.main_queue))
        else:
            self.state = SessionState.FINISHING
            self._schedule_finish()
            return
        self._on_card_changed()

    def _schedule_finish(self) -> None:
        self._generation += 1
        if self.finish_delay <= 0:
            self._mark_finished()
            return
        loop = asyncio.get_running_loop()
        self._finish_handle = loop.call_later(self.finish_delay, self._mark_finished)

    def _mark_finished(self) -> None:
        self._finish_handle = None
        if self.state is SessionState.FINISHING:
            self.state = SessionState.FINISHED
            self._finished.set()
            logger.info(
                "Session for deck %s finished: %d ratings over %d passes",
                self.deck_id, len(self.history), self.pass_number,
            )

    def _on_card_changed(self) -> None:
        self._generation += 1
        self.stop_audio()
        self.tts_error = None
        if self.autoplay and self.synthesizer is not None and self.audio_cache is not None:
            self._dispatch(self.play_audio(AudioSide.FRONT), "autoplay")

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    def _side_content(self, side: AudioSide) -> Tuple[AiContentType, str]:
        if side is AudioSide.FRONT:
            return AiContentType.AUDIO_PRIMARY, self.front_language
        return AiContentType.AUDIO_SECONDARY, self.back_language

    def stop_audio(self) -> None:
        if self.player is not None:
            self.player.stop()
        self.playing_side = None
        self.loading_side = None

    async def play_audio(self, side: Any) -> Optional[str]:
        """Play the audio for one side of the current card, synthesizing it if needed.

        Returns the audio reference that started playing, or None when the
        request was toggled off, ignored, failed, or went stale.
        """
        side = AudioSide(side)
        card = self.current_card
        if card is None:
            raise SessionStateError("No current card to play audio for.")
        if self.audio_cache is None or self.synthesizer is None:
            raise SessionStateError("Audio is not configured for this session.")

        if self.playing_side is side:
            self.stop_audio()
            return None
        if self.loading_side is not None and self.loading_side is not side:
            return None

        self.stop_audio()
        self.tts_error = None
        self.tts_retryable = False
        self.loading_side = side
        generation = self._generation

        content_type, language = self._side_content(side)
        text = card.front if side is AudioSide.FRONT else card.back

        try:
            reference = await self.audio_cache.lookup(card.id, content_type, language)
            if reference is None:
                reference = await self.synthesizer.synthesize(text, language)
                self._dispatch(
                    self.audio_cache.store(card.id, content_type, language, reference),
                    f"caching audio for card {card.id}",
                )
        except Exception as e:
            error = e if isinstance(e, FlashdeckError) else SynthesisError(f"Audio unavailable: {e}")
            if generation == self._generation:
                self.loading_side = None
                self.tts_error = error.message
                self.tts_retryable = getattr(error, "retryable", False)
            self._report(error, f"synthesizing audio for card {card.id}")
            return None

        if generation != self._generation:
            logger.debug("Discarding stale audio for card %s (%s)", card.id, side.value)
            return None

        self.loading_side = None
        self.playing_side = side
        if self.player is not None:
            self.player.play(reference)
        return reference

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _dispatch(self, coro: Awaitable[Any], what: str) -> "asyncio.Task[Any]":
        task = asyncio.get_running_loop().create_task(coro)  # type: ignore[arg-type]
        self._pending.add(task)

        def _done(t: "asyncio.Task[Any]") -> None:
            self._pending.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                self._report(exc, what)

        task.add_done_callback(_done)
        return task

    def _report(self, exc: BaseException, what: str) -> None:
        logger.warning("Error while %s: %s", what, exc)
        if not isinstance(exc, Exception):
            return
        self.errors.append(exc)
        if self.on_error is not None:
            try:
                self.on_error(exc)
            except Exception:
                logger.exception("Error sink raised while reporting %s", what)

    async def wait_finished(self) -> None:
        """Block until the session reaches FINISHED."""
        if self.state not in (SessionState.ACTIVE, SessionState.FINISHING, SessionState.FINISHED):
            raise SessionStateError(f"Session cannot finish from state {self.state.value}.")
        await self._finished.wait()

    async def drain(self) -> None:
        """Wait for all background recording and caching work to settle."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
