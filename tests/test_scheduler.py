"""
Tests for the SRS scheduler: interval steps, ease factor updates and due dates.
"""

import datetime

import pytest

from llm_flashdeck.errors import InvalidRatingError
from llm_flashdeck.scheduler import (
    MIN_EASE_FACTOR,
    CardSchedulingState,
    Rating,
    compute_due_date,
    compute_next_state,
    round_half_up,
    schedule,
)

PASSING = [Rating.GOOD, Rating.EASY]


def test_first_good_review_scenario() -> None:
    result = compute_next_state(CardSchedulingState(interval=0, ease_factor=2.5), Rating.GOOD)
    assert result.interval == 1
    assert result.ease_factor == pytest.approx(2.36)


def test_easy_review_multiplies_interval() -> None:
    result = compute_next_state(CardSchedulingState(interval=6, ease_factor=2.5), Rating.EASY)
    assert result.interval == 15
    assert result.ease_factor == pytest.approx(2.5)


def test_again_at_floor_stays_at_floor() -> None:
    result = compute_next_state(CardSchedulingState(interval=10, ease_factor=1.3), Rating.AGAIN)
    assert result.interval == 0
    assert result.ease_factor == MIN_EASE_FACTOR


@pytest.mark.parametrize("rating", PASSING)
def test_passing_from_new_card_gives_one_day(rating: Rating) -> None:
    assert compute_next_state(CardSchedulingState(0, 2.5), rating).interval == 1


@pytest.mark.parametrize("rating", PASSING)
def test_passing_from_one_day_gives_six_days(rating: Rating) -> None:
    assert compute_next_state(CardSchedulingState(1, 2.5), rating).interval == 6


def test_hard_always_gives_one_day() -> None:
    for interval in (0, 1, 6, 40):
        assert compute_next_state(CardSchedulingState(interval, 2.5), Rating.HARD).interval == 1


@pytest.mark.parametrize("interval", [0, 1, 2, 6, 15, 120])
def test_again_resets_interval(interval: int) -> None:
    assert compute_next_state(CardSchedulingState(interval, 2.2), Rating.AGAIN).interval == 0


def test_ease_adjustments_per_rating() -> None:
    base = CardSchedulingState(interval=6, ease_factor=2.5)
    assert compute_next_state(base, Rating.EASY).ease_factor == pytest.approx(2.5)
    assert compute_next_state(base, Rating.GOOD).ease_factor == pytest.approx(2.36)
    assert compute_next_state(base, Rating.HARD).ease_factor == pytest.approx(2.18)
    assert compute_next_state(base, Rating.AGAIN).ease_factor == pytest.approx(1.96)


def test_ease_never_drops_below_floor() -> None:
    for rating in Rating:
        for ease in (1.3, 1.35, 1.5, 2.0, 2.5, 3.1):
            for interval in (0, 1, 3, 30):
                result = compute_next_state(CardSchedulingState(interval, ease), rating)
                assert result.ease_factor >= MIN_EASE_FACTOR
                assert result.interval >= 0


def test_repeated_lapses_decay_to_floor() -> None:
    state = CardSchedulingState(interval=30, ease_factor=2.5)
    for _ in range(5):
        state = compute_next_state(state, Rating.AGAIN)
    assert state == CardSchedulingState(interval=0, ease_factor=MIN_EASE_FACTOR)


def test_growth_uses_previous_ease_factor() -> None:
    # 10 * 2.0 with the pre-update ease, not the lowered one
    result = compute_next_state(CardSchedulingState(interval=10, ease_factor=2.0), Rating.GOOD)
    assert result.interval == 20
    assert result.ease_factor == pytest.approx(1.86)


def test_rounding_is_half_away_from_zero() -> None:
    assert round_half_up(12.5) == 13
    assert round_half_up(7.5) == 8
    assert round_half_up(7.49) == 7
    result = compute_next_state(CardSchedulingState(interval=5, ease_factor=2.5), Rating.GOOD)
    assert result.interval == 13


def test_rating_parse() -> None:
    assert Rating.parse("good") is Rating.GOOD
    assert Rating.parse(" EASY ") is Rating.EASY
    assert Rating.parse(Rating.HARD) is Rating.HARD
    assert [r.quality for r in Rating] == [1, 2, 3, 4]


@pytest.mark.parametrize("value", ["meh", "", None, 3, "AGAIN!"])
def test_rating_parse_rejects_malformed_values(value: object) -> None:
    with pytest.raises(InvalidRatingError):
        Rating.parse(value)


def test_compute_next_state_requires_rating() -> None:
    with pytest.raises(InvalidRatingError):
        compute_next_state(CardSchedulingState(), "GOOD")  # type: ignore[arg-type]


def test_due_date_zero_interval_is_now() -> None:
    before = datetime.datetime.now(datetime.timezone.utc)
    due = compute_due_date(0)
    after = datetime.datetime.now(datetime.timezone.utc)
    assert before <= due <= after
    assert due.tzinfo is not None


def test_due_date_adds_calendar_days() -> None:
    now = datetime.datetime(2026, 1, 30, 8, 15, tzinfo=datetime.timezone.utc)
    assert compute_due_date(0, now) == now
    assert compute_due_date(6, now) == datetime.datetime(2026, 2, 5, 8, 15, tzinfo=datetime.timezone.utc)


def test_due_date_keeps_local_time_across_dst() -> None:
    try:
        from zoneinfo import ZoneInfo

        tz = ZoneInfo("America/New_York")
    except Exception:
        pytest.skip("time zone database not available")
    now = datetime.datetime(2026, 3, 7, 12, 0, tzinfo=tz)
    due = compute_due_date(1, now)
    assert (due.year, due.month, due.day, due.hour) == (2026, 3, 8, 12)
    assert due.utcoffset() != now.utcoffset()


def test_due_date_rejects_negative_interval() -> None:
    with pytest.raises(ValueError):
        compute_due_date(-1)


def test_schedule_combines_state_and_due_date() -> None:
    now = datetime.datetime(2026, 5, 1, tzinfo=datetime.timezone.utc)
    state, due = schedule(CardSchedulingState(1, 2.5), Rating.GOOD, now)
    assert state.interval == 6
    assert due == now + datetime.timedelta(days=6)
