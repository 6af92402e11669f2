from dataclasses import dataclass
from typing import Any, Optional

from .scheduler import CardSchedulingState


@dataclass(frozen=True)
class StudyCard:
    """Detached snapshot of a card handed to an acquisition session."""

    id: int
    deck_id: int
    front: str
    back: str
    interval: int
    ease_factor: float

    @property
    def scheduling_state(self) -> CardSchedulingState:
        return CardSchedulingState(interval=self.interval, ease_factor=self.ease_factor)

    @classmethod
    def from_card(cls, card: Any) -> "StudyCard":
        return cls(
            id=card.id,
            deck_id=card.deck_id,
            front=card.front,
            back=card.back,
            interval=card.interval,
            ease_factor=card.ease_factor,
        )


@dataclass
class CardRow:
    front: str
    back: str


@dataclass
class DeckSummary:
    id: int
    name: str
    description: Optional[str]
    card_count: int
    due_count: int


MAX_DECK_NAME = 100
MAX_DECK_DESCRIPTION = 500
MAX_CARD_TEXT = 1000
