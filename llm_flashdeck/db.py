from __future__ import annotations

import csv
import datetime
import enum
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import (
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    inspect,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, sessionmaker

from . import ai
from .errors import ConflictError, DatabaseError, NotFoundError, ValidationError
from .scheduler import DEFAULT_EASE_FACTOR, Rating
from .structured import (
    MAX_CARD_TEXT,
    MAX_DECK_DESCRIPTION,
    MAX_DECK_NAME,
    CardRow,
    DeckSummary,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp; SQLite stores datetimes without tzinfo."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def to_db_datetime(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is not None:
        value = value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return value


class AiContentType(str, enum.Enum):
    EXPLANATION = "EXPLANATION"
    TRANSLATION = "TRANSLATION"
    AUDIO_PRIMARY = "AUDIO_PRIMARY"
    AUDIO_SECONDARY = "AUDIO_SECONDARY"


class Base(DeclarativeBase):
    pass


class Deck(Base):
    __tablename__ = "decks"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(MAX_DECK_NAME), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=utcnow)
    cards: Mapped[List["Card"]] = relationship(back_populates="deck", cascade="all, delete-orphan")


class Card(Base):
    __tablename__ = "cards"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    deck_id: Mapped[int] = mapped_column(ForeignKey("decks.id", ondelete="CASCADE"), nullable=False, index=True)
    front: Mapped[str] = mapped_column(Text, nullable=False)
    back: Mapped[str] = mapped_column(Text, nullable=False)
    # SRS fields
    interval: Mapped[int] = mapped_column(Integer, default=0)
    ease_factor: Mapped[float] = mapped_column(Float, default=DEFAULT_EASE_FACTOR)
    next_review: Mapped[datetime.datetime] = mapped_column(DateTime, default=utcnow, index=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    deck: Mapped[Deck] = relationship(back_populates="cards")
    reviews: Mapped[List["ReviewLog"]] = relationship(back_populates="card", cascade="all, delete-orphan")
    ai_contents: Mapped[List["AICardContent"]] = relationship(back_populates="card", cascade="all, delete-orphan")


class ReviewLog(Base):
    __tablename__ = "review_logs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    card_id: Mapped[int] = mapped_column(ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True)
    rating: Mapped[str] = mapped_column(String(8), nullable=False)
    interval_before: Mapped[int] = mapped_column(Integer, nullable=False)
    interval_after: Mapped[int] = mapped_column(Integer, nullable=False)
    ease_factor_before: Mapped[float] = mapped_column(Float, nullable=False)
    ease_factor_after: Mapped[float] = mapped_column(Float, nullable=False)
    next_review: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    reviewed_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=utcnow)

    card: Mapped[Card] = relationship(back_populates="reviews")


class AICardContent(Base):
    __tablename__ = "ai_card_contents"
    __table_args__ = (UniqueConstraint("card_id", "content_type", "language", name="uq_ai_content"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    card_id: Mapped[int] = mapped_column(ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True)
    content_type: Mapped[AiContentType] = mapped_column(SAEnum(AiContentType, native_enum=False, length=16), nullable=False)
    language: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    card: Mapped[Card] = relationship(back_populates="ai_contents")


def create_db_engine(db_path: str) -> Engine:
    # Collaborators run queries from worker threads via asyncio.to_thread.
    return create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    # Prevent attribute expiration on commit so returned objects remain accessible
    return sessionmaker(bind=engine, expire_on_commit=False)


def is_db_initialized(engine: Engine) -> bool:
    """Check if the database is already initialized by checking if tables exist."""
    table_names = set(inspect(engine).get_table_names())
    return {"decks", "cards", "review_logs", "ai_card_contents"}.issubset(table_names)


def init_db(engine: Engine) -> None:
    """Initialize the database by creating all tables."""
    Base.metadata.create_all(bind=engine)


def _check_text(value: Optional[str], field: str, max_length: int, required: bool = True) -> Optional[str]:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required.", details={"field": field})
        return None
    value = value.strip()
    if required and not value:
        raise ValidationError(f"{field} is required.", details={"field": field})
    if len(value) > max_length:
        raise ValidationError(
            f"{field} must be {max_length} characters or less.",
            details={"field": field, "max_length": max_length},
        )
    return value


class FlashcardRepository:
    """Decks, cards, review history and AI content on top of a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise ConflictError("Resource already exists.", details=str(e.orig)) from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Database error: %s", e)
            raise DatabaseError("Database operation failed.") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Decks
    # ------------------------------------------------------------------

    def create_deck(self, name: str, description: Optional[str] = None) -> Deck:
        name = _check_text(name, "Deck name", MAX_DECK_NAME)  # type: ignore[assignment]
        description = _check_text(description, "Description", MAX_DECK_DESCRIPTION, required=False)
        with self._session() as session:
            if session.query(Deck).filter_by(name=name).first():
                raise ConflictError(f"Deck '{name}' already exists.")
            deck = Deck(name=name, description=description or None)
            session.add(deck)
            session.flush()
            logger.info("Created deck %s (%s)", deck.id, name)
            return deck

    def get_deck(self, deck_id: int) -> Deck:
        with self._session() as session:
            deck = session.get(Deck, deck_id)
            if deck is None:
                raise NotFoundError(f"Deck with ID {deck_id} not found.")
            return deck

    def list_decks(self, now: Optional[datetime.datetime] = None) -> List[DeckSummary]:
        cutoff = to_db_datetime(now) if now else utcnow()
        with self._session() as session:
            totals = dict(
                session.query(Card.deck_id, func.count(Card.id)).group_by(Card.deck_id).all()
            )
            due = dict(
                session.query(Card.deck_id, func.count(Card.id))
                .filter(Card.next_review <= cutoff)
                .group_by(Card.deck_id)
                .all()
            )
            return [
                DeckSummary(
                    id=deck.id,
                    name=deck.name,
                    description=deck.description,
                    card_count=totals.get(deck.id, 0),
                    due_count=due.get(deck.id, 0),
                )
                for deck in session.query(Deck).order_by(Deck.created_at, Deck.id).all()
            ]

    def update_deck(self, deck_id: int, name: Optional[str] = None, description: Optional[str] = None) -> Deck:
        if name is None and description is None:
            raise ValidationError("At least one field (name or description) must be provided for update.")
        with self._session() as session:
            deck = session.get(Deck, deck_id)
            if deck is None:
                raise NotFoundError(f"Deck with ID {deck_id} not found.")
            if name is not None:
                deck.name = _check_text(name, "Deck name", MAX_DECK_NAME)  # type: ignore[assignment]
            if description is not None:
                deck.description = _check_text(description, "Description", MAX_DECK_DESCRIPTION, required=False) or None
            return deck

    def delete_deck(self, deck_id: int) -> None:
        with self._session() as session:
            deck = session.get(Deck, deck_id)
            if deck is None:
                raise NotFoundError(f"Deck with ID {deck_id} not found.")
            session.delete(deck)

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    def add_card(
        self,
        deck_id: int,
        front: str,
        back: str,
        model: Any = None,
        explanation_language: str = "en",
        source_language: str = "en",
        target_language: str = "ja",
    ) -> Card:
        """Create a card. With a model, also generate an explanation and a translation.

        AI failures are logged and never prevent the card from being created.
        """
        front = _check_text(front, "Front content", MAX_CARD_TEXT)  # type: ignore[assignment]
        back = _check_text(back, "Back content", MAX_CARD_TEXT)  # type: ignore[assignment]
        with self._session() as session:
            if session.get(Deck, deck_id) is None:
                raise NotFoundError(f"Deck with ID {deck_id} not found.")
            card = Card(deck_id=deck_id, front=front, back=back)
            session.add(card)
            session.flush()

        if model is not None:
            self._generate_ai_content(card, model, explanation_language, source_language, target_language)
        return card

    def _generate_ai_content(
        self,
        card: Card,
        model: Any,
        explanation_language: str,
        source_language: str,
        target_language: str,
    ) -> None:
        jobs = [
            (AiContentType.EXPLANATION, explanation_language,
             lambda: ai.generate_explanation(card.front, explanation_language, model)),
            (AiContentType.TRANSLATION, target_language,
             lambda: ai.generate_translation(card.front, source_language, target_language, model)),
        ]
        for content_type, language, generate in jobs:
            try:
                text = generate()
            except Exception as e:
                logger.error("Failed to generate %s for card %s: %s", content_type.value, card.id, e)
                continue
            try:
                self.save_ai_content(card.id, content_type, language, text)
                logger.info("%s (%s) saved for card %s", content_type.value, language, card.id)
            except ConflictError:
                logger.warning("%s (%s) already exists for card %s", content_type.value, language, card.id)
            except DatabaseError as e:
                logger.error("Failed to save %s for card %s: %s", content_type.value, card.id, e)

    def get_card(self, card_id: int) -> Card:
        with self._session() as session:
            card = session.get(Card, card_id)
            if card is None:
                raise NotFoundError(f"Card with ID {card_id} not found.")
            return card

    def get_cards(self, deck_id: int, limit: int = 10, offset: int = 0) -> Tuple[List[Card], int]:
        limit = max(1, limit)
        offset = max(0, offset)
        with self._session() as session:
            if session.get(Deck, deck_id) is None:
                raise NotFoundError(f"Deck with ID {deck_id} not found.")
            query = session.query(Card).filter(Card.deck_id == deck_id)
            total = query.count()
            cards = query.order_by(Card.created_at, Card.id).offset(offset).limit(limit).all()
            return cards, total

    def update_card(self, card_id: int, front: Optional[str] = None, back: Optional[str] = None) -> Card:
        if front is None and back is None:
            raise ValidationError("At least one field (front or back) must be provided for update.")
        with self._session() as session:
            card = session.get(Card, card_id)
            if card is None:
                raise NotFoundError(f"Card with ID {card_id} not found.")
            if front is not None:
                card.front = _check_text(front, "Front content", MAX_CARD_TEXT)  # type: ignore[assignment]
            if back is not None:
                card.back = _check_text(back, "Back content", MAX_CARD_TEXT)  # type: ignore[assignment]
            return card

    def delete_card(self, card_id: int) -> None:
        with self._session() as session:
            card = session.get(Card, card_id)
            if card is None:
                raise NotFoundError(f"Card with ID {card_id} not found.")
            session.delete(card)

    def get_due_cards(self, deck_id: int, limit: int, now: Optional[datetime.datetime] = None) -> List[Card]:
        """Cards of a deck whose next review is at or before ``now``, oldest first."""
        cutoff = to_db_datetime(now) if now else utcnow()
        with self._session() as session:
            if session.get(Deck, deck_id) is None:
                raise NotFoundError(f"Deck with ID {deck_id} not found.")
            return (
                session.query(Card)
                .filter(Card.deck_id == deck_id, Card.next_review <= cutoff)
                .order_by(Card.next_review, Card.id)
                .limit(max(1, limit))
                .all()
            )

    def import_cards_csv(self, deck_id: int, csv_path: str) -> int:
        """Import ``front,back`` rows into a deck. Skips fronts already in the deck.
        Returns the number of newly imported cards."""
        rows: List[CardRow] = []
        with open(csv_path, "r", encoding="utf-8-sig", newline="") as f:
            for line_no, row in enumerate(csv.DictReader(f), start=2):
                try:
                    front = _check_text(row.get("front"), "Front content", MAX_CARD_TEXT)
                    back = _check_text(row.get("back"), "Back content", MAX_CARD_TEXT)
                except ValidationError as e:
                    logger.warning("Skipping line %d of %s: %s", line_no, csv_path, e.message)
                    continue
                rows.append(CardRow(front=front, back=back))  # type: ignore[arg-type]

        imported = 0
        with self._session() as session:
            if session.get(Deck, deck_id) is None:
                raise NotFoundError(f"Deck with ID {deck_id} not found.")
            seen = {front for (front,) in session.query(Card.front).filter(Card.deck_id == deck_id)}
            for row in rows:
                if row.front in seen:
                    continue
                session.add(Card(deck_id=deck_id, front=row.front, back=row.back))
                seen.add(row.front)
                imported += 1
        logger.info("Imported %d cards into deck %s", imported, deck_id)
        return imported

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def record_review(
        self,
        card_id: int,
        rating: Rating,
        interval: int,
        ease_factor: float,
        next_review: datetime.datetime,
    ) -> ReviewLog:
        """Store a card's new scheduling state and append it to the review history."""
        with self._session() as session:
            card = session.get(Card, card_id)
            if card is None:
                raise NotFoundError(f"Card with ID {card_id} not found.")
            log = ReviewLog(
                card_id=card.id,
                rating=Rating.parse(rating).value,
                interval_before=card.interval,
                interval_after=interval,
                ease_factor_before=card.ease_factor,
                ease_factor_after=ease_factor,
                next_review=to_db_datetime(next_review),
            )
            card.interval = interval
            card.ease_factor = ease_factor
            card.next_review = to_db_datetime(next_review)
            session.add(log)
            return log

    def get_review_stats(self, deck_id: int) -> Dict[str, Any]:
        with self._session() as session:
            rows = (
                session.query(ReviewLog.rating, func.count(ReviewLog.id))
                .join(Card, Card.id == ReviewLog.card_id)
                .filter(Card.deck_id == deck_id)
                .group_by(ReviewLog.rating)
                .all()
            )
        by_rating = {r.value: 0 for r in Rating}
        by_rating.update({rating: count for rating, count in rows})
        return {"total_reviews": sum(by_rating.values()), "by_rating": by_rating}

    # ------------------------------------------------------------------
    # AI content
    # ------------------------------------------------------------------

    def get_ai_content(self, card_id: int, content_type: AiContentType, language: str) -> Optional[AICardContent]:
        with self._session() as session:
            return (
                session.query(AICardContent)
                .filter_by(card_id=card_id, content_type=content_type, language=language)
                .first()
            )

    def save_ai_content(self, card_id: int, content_type: AiContentType, language: str, content: str) -> AICardContent:
        with self._session() as session:
            if session.get(Card, card_id) is None:
                raise NotFoundError(f"Card with ID {card_id} not found.")
            existing = (
                session.query(AICardContent)
                .filter_by(card_id=card_id, content_type=content_type, language=language)
                .first()
            )
            if existing is not None:
                raise ConflictError(f"AI content ({content_type.value}/{language}) already exists.")
            row = AICardContent(card_id=card_id, content_type=content_type, language=language, content=content)
            session.add(row)
            session.flush()
            return row

    def upsert_ai_content(self, card_id: int, content_type: AiContentType, language: str, content: str) -> AICardContent:
        with self._session() as session:
            row = (
                session.query(AICardContent)
                .filter_by(card_id=card_id, content_type=content_type, language=language)
                .first()
            )
            if row is None:
                if session.get(Card, card_id) is None:
                    raise NotFoundError(f"Card with ID {card_id} not found.")
                row = AICardContent(card_id=card_id, content_type=content_type, language=language, content=content)
                session.add(row)
            else:
                row.content = content
            session.flush()
            return row
