import datetime
import enum
import math
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from .errors import InvalidRatingError

MIN_EASE_FACTOR = 1.3
DEFAULT_EASE_FACTOR = 2.5


class Rating(str, enum.Enum):
    """Recall grade chosen by the reviewer, worst to best."""

    AGAIN = "AGAIN"
    HARD = "HARD"
    GOOD = "GOOD"
    EASY = "EASY"

    @property
    def quality(self) -> int:
        return _QUALITY[self]

    @classmethod
    def parse(cls, value: Any) -> "Rating":
        """Accept a Rating or its name in any case; anything else is an error."""
        if isinstance(value, Rating):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                pass
        raise InvalidRatingError(f"Invalid rating: {value!r}", details={"allowed": [r.value for r in cls]})


_QUALITY = {
    Rating.AGAIN: 1,
    Rating.HARD: 2,
    Rating.GOOD: 3,
    Rating.EASY: 4,
}


@dataclass(frozen=True)
class CardSchedulingState:
    interval: int = 0
    ease_factor: float = DEFAULT_EASE_FACTOR


def round_half_up(value: float) -> int:
    # Intervals and ease factors are never negative, so this is half away from zero.
    return int(math.floor(value + 0.5))


def compute_next_state(state: CardSchedulingState, rating: Rating) -> CardSchedulingState:
    """
    SM-2 style update used by acquisition sessions.

    Quality grades:
      AGAIN – 1, HARD – 2, GOOD – 3, EASY – 4

    Interval:
      AGAIN           → 0 (due again immediately)
      HARD            → 1 day
      GOOD / EASY     → 1 day after a 0 interval, 6 days after a 1 day interval,
                        otherwise previous interval × previous E-Factor, rounded
                        half away from zero

    E-Factor:
      EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02)), floored at 1.3.
      The formula also runs for AGAIN, so a lapse decays the ease instead of
      resetting it.
    """
    if not isinstance(rating, Rating):
        raise InvalidRatingError(f"Expected a Rating, got {rating!r}")

    q = rating.quality
    interval = state.interval
    ease_factor = state.ease_factor

    if rating is Rating.AGAIN:
        new_interval = 0
    elif rating is Rating.HARD:
        new_interval = 1
    elif interval == 0:
        new_interval = 1
    elif interval == 1:
        new_interval = 6
    else:
        new_interval = round_half_up(interval * ease_factor)

    new_ef = ease_factor + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))
    if new_ef < MIN_EASE_FACTOR:
        new_ef = MIN_EASE_FACTOR

    return CardSchedulingState(interval=new_interval, ease_factor=new_ef)


def compute_due_date(interval: int, now: Optional[datetime.datetime] = None) -> datetime.datetime:
    """Return when a card with ``interval`` becomes due.

    ``now`` defaults to the current UTC time. Aware datetimes in a zoneinfo zone
    are shifted by wall-clock days, so the local time of day survives DST changes.
    """
    if interval < 0:
        raise ValueError(f"interval must be >= 0, got {interval}")
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    if interval == 0:
        return now
    return now + datetime.timedelta(days=interval)


def schedule(
    state: CardSchedulingState,
    rating: Rating,
    now: Optional[datetime.datetime] = None,
) -> Tuple[CardSchedulingState, datetime.datetime]:
    """Apply a rating and return the new state together with its due date."""
    new_state = compute_next_state(state, rating)
    return new_state, compute_due_date(new_state.interval, now)
