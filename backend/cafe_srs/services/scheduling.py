"""SM-2 derived scheduling state machine.

Everything here is pure: a card's scheduling state plus a quality grade
goes in, the next scheduling state comes out. Persistence, clocks and
leech tagging live in ``SRSEngine``.

Quality grades (0-5):
    0 = complete blackout
    1 = wrong, recalled only after seeing the answer
    2 = wrong, but felt familiar
    3 = correct with difficulty (hard)
    4 = correct after hesitation (good)
    5 = perfect, instant recall (easy)

Grades below 3 are lapses.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from ..core.config import SchedulerSettings
from ..models.card import CardStatus, SRSCard

MINUTES_PER_DAY = 1440
PASSING_GRADE = 3
EASY_GRADE = 5
LAPSE_EASE_PENALTY = 0.2
FALLBACK_STEP_MINUTES = 10

_RELAPSING = (CardStatus.REVIEW, CardStatus.RELEARNING)
_LEARNING = (CardStatus.NEW, CardStatus.LEARNING)


@dataclass(frozen=True)
class SchedulingState:
    status: CardStatus
    interval: float
    ease_factor: float
    repetitions: int
    lapses: int

    @classmethod
    def of(cls, card: SRSCard) -> SchedulingState:
        return cls(
            status=CardStatus(card.status),
            interval=card.interval,
            ease_factor=card.ease_factor,
            repetitions=card.repetitions,
            lapses=card.lapses,
        )


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def is_success(quality: int) -> bool:
    return quality >= PASSING_GRADE


def ease_adjustment(quality: int) -> float:
    """Classic SM-2 ease delta: +0.10 for 5, 0.00 for 4, -0.14 for 3."""
    miss = EASY_GRADE - quality
    return 0.1 - miss * (0.08 + miss * 0.02)


def learning_step_index(interval_days: float, steps: list[int]) -> int:
    """Index of the first learning step at or beyond the current interval.

    An interval longer than every step maps to the final index, so the
    card graduates on its next success.
    """
    minutes = round(interval_days * MINUTES_PER_DAY, 6)
    for index, step in enumerate(steps):
        if step >= minutes:
            return index
    return len(steps) - 1


def is_leech(lapses: int, settings: SchedulerSettings) -> bool:
    return lapses >= settings.leech_threshold


def transition(state: SchedulingState, quality: int, settings: SchedulerSettings) -> SchedulingState:
    """Apply one review to a scheduling state."""
    if state.status is CardStatus.SUSPENDED:
        raise ValueError("suspended cards cannot be reviewed")
    if not is_success(quality):
        return _lapse(state, settings)
    if state.status in _LEARNING:
        return _advance_learning(state, quality, settings)
    return _advance_review(state, quality, settings)


def _lapse(state: SchedulingState, settings: SchedulerSettings) -> SchedulingState:
    relapsed = state.status in _RELAPSING
    return SchedulingState(
        status=CardStatus.RELEARNING if relapsed else CardStatus.LEARNING,
        interval=1 if relapsed else state.interval,
        ease_factor=max(settings.minimum_ease, state.ease_factor - LAPSE_EASE_PENALTY),
        repetitions=0,
        lapses=state.lapses + 1,
    )


def _advance_learning(state: SchedulingState, quality: int, settings: SchedulerSettings) -> SchedulingState:
    steps = settings.learning_steps
    step = learning_step_index(state.interval, steps)
    repetitions = state.repetitions + 1

    if quality == EASY_GRADE or step >= len(steps) - 1:
        interval = settings.easy_interval if quality == EASY_GRADE else settings.graduating_interval
        return replace(state, status=CardStatus.REVIEW, interval=max(1, interval), repetitions=repetitions)

    return replace(
        state,
        status=CardStatus.LEARNING,
        interval=steps[step + 1] / MINUTES_PER_DAY,
        repetitions=repetitions,
    )


def _advance_review(state: SchedulingState, quality: int, settings: SchedulerSettings) -> SchedulingState:
    if quality == PASSING_GRADE:
        interval = round_half_up(state.interval * settings.hard_interval_modifier)
    elif quality == EASY_GRADE - 1:
        interval = round_half_up(state.interval * state.ease_factor)
    else:
        interval = round_half_up(state.interval * state.ease_factor * settings.easy_bonus)

    return SchedulingState(
        status=CardStatus.REVIEW,
        interval=max(1, interval),
        ease_factor=max(settings.minimum_ease, state.ease_factor + ease_adjustment(quality)),
        repetitions=state.repetitions + 1,
        lapses=state.lapses,
    )


def next_review_at(state: SchedulingState, now: datetime, settings: SchedulerSettings) -> datetime:
    """Timestamp at which a card in ``state`` becomes due again.

    Learning and relearning cards wait a learning step (minutes) keyed by
    their repetition count; review cards wait ``interval`` days.
    """
    if state.status in (CardStatus.LEARNING, CardStatus.RELEARNING):
        steps = settings.learning_steps
        minutes = steps[min(state.repetitions, len(steps) - 1)] if steps else 0
        return now + timedelta(minutes=minutes or FALLBACK_STEP_MINUTES)
    return now + timedelta(days=state.interval)
