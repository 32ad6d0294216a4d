"""Spaced-repetition scheduling for vocabulary items.

語彙アイテムの復習スケジュールを決める純粋関数群。
ストレージには触れず、呼び出し側が結果を永続化する。
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import Iterable, Protocol, TypeVar


MASTERY_MIN = 0.0
MASTERY_MAX = 5.0
MASTERY_STEP_CORRECT = 0.2
MASTERY_STEP_INCORRECT = 0.1
ACCURACY_THRESHOLD = 0.8
_MASTERY_DECIMALS = 4

# (lower bound of mastery bucket, days when accuracy > threshold, days otherwise)
_INTERVAL_TABLE: tuple[tuple[float, int, int], ...] = (
    (4.0, 30, 14),
    (3.0, 14, 7),
    (2.0, 7, 3),
    (1.0, 3, 1),
)

_MASTERY_STATUSES: tuple[tuple[float, str], ...] = (
    (4.0, "mastered"),
    (3.0, "known"),
    (2.0, "familiar"),
)


class InvalidInputError(ValueError):
    """Raised when a review event violates the scheduler contract."""


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _clamp_mastery(value: float) -> float:
    return round(max(MASTERY_MIN, min(MASTERY_MAX, value)), _MASTERY_DECIMALS)


@dataclass(frozen=True)
class LearningState:
    """Per-item learning state tracked across review events."""

    times_reviewed: int = 0
    correct_answers: int = 0
    incorrect_answers: int = 0
    mastery_level: float = 0.0
    average_response_time: float = 0.0
    last_reviewed: datetime | None = None
    next_review: datetime | None = None

    @classmethod
    def new(cls, now: datetime | None = None) -> "LearningState":
        """Fresh state that is eligible for review immediately."""

        return cls(next_review=_as_utc(now or datetime.now(UTC)))

    @property
    def accuracy_rate(self) -> float:
        return accuracy_rate(self)

    @property
    def mastery_status(self) -> str:
        return mastery_status(self.mastery_level)


@dataclass(frozen=True)
class ReviewOutcome:
    """Result of a single review event: the new state plus derived values."""

    state: LearningState
    accuracy_rate: float
    interval_days: int
    reviewed_at: datetime
    next_review: datetime


def accuracy_rate(state: LearningState) -> float:
    """Ratio of correct answers over all reviews (0.0 before the first review)."""

    if state.times_reviewed <= 0:
        return 0.0
    return state.correct_answers / state.times_reviewed


def interval_days_for(mastery_level: float, accuracy: float) -> int:
    """Map (mastery, accuracy) onto the review interval in days.

    バケットは下端を含む半開区間。mastery < 1 の間は正答率に関係なく 1 日。
    """

    for lower_bound, high_accuracy_days, low_accuracy_days in _INTERVAL_TABLE:
        if mastery_level >= lower_bound:
            return high_accuracy_days if accuracy > ACCURACY_THRESHOLD else low_accuracy_days
    return 1


def mastery_status(mastery_level: float) -> str:
    """Human readable label for a mastery level."""

    if mastery_level <= MASTERY_MIN:
        return "new"
    if mastery_level >= MASTERY_MAX:
        return "expert"
    for lower_bound, label in _MASTERY_STATUSES:
        if mastery_level >= lower_bound:
            return label
    return "learning"


def record_review(
    state: LearningState,
    correct: bool,
    response_time_seconds: float = 0.0,
    now: datetime | None = None,
) -> ReviewOutcome:
    """Apply one review event to ``state`` and schedule the next review.

    The input state is left untouched; a new ``LearningState`` is returned
    inside the outcome. Negative or non-finite latencies are rejected.
    """

    try:
        latency = float(response_time_seconds)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError("response_time_seconds must be a number") from exc
    if not math.isfinite(latency) or latency < 0:
        raise InvalidInputError("response_time_seconds must be a non-negative finite number")

    reviewed_at = _as_utc(now or datetime.now(UTC))
    times_reviewed = state.times_reviewed + 1
    correct_answers = state.correct_answers
    incorrect_answers = state.incorrect_answers
    if correct:
        correct_answers += 1
        mastery = _clamp_mastery(state.mastery_level + MASTERY_STEP_CORRECT)
    else:
        incorrect_answers += 1
        mastery = _clamp_mastery(state.mastery_level - MASTERY_STEP_INCORRECT)

    average = (state.average_response_time * (times_reviewed - 1) + latency) / times_reviewed
    accuracy = correct_answers / times_reviewed
    interval = interval_days_for(mastery, accuracy)

    next_review = reviewed_at + timedelta(days=interval)
    updated = replace(
        state,
        times_reviewed=times_reviewed,
        correct_answers=correct_answers,
        incorrect_answers=incorrect_answers,
        mastery_level=mastery,
        average_response_time=average,
        last_reviewed=reviewed_at,
        next_review=next_review,
    )
    return ReviewOutcome(
        state=updated,
        accuracy_rate=accuracy,
        interval_days=interval,
        reviewed_at=reviewed_at,
        next_review=next_review,
    )


class SupportsLearningState(Protocol):
    id: str
    learning: LearningState


_ItemT = TypeVar("_ItemT", bound=SupportsLearningState)


def select_due_items(
    items: Iterable[_ItemT],
    as_of: datetime | None = None,
    limit: int | None = None,
) -> list[_ItemT]:
    """Return items whose ``next_review`` is at or before ``as_of``.

    Oldest-due first, ties broken by id. Items without a ``next_review`` are
    treated as due immediately.
    """

    cutoff = _as_utc(as_of or datetime.now(UTC))
    epoch = datetime.min.replace(tzinfo=UTC)
    due: list[tuple[datetime, str, _ItemT]] = []
    for item in items:
        next_review = item.learning.next_review
        due_at = _as_utc(next_review) if next_review is not None else epoch
        if due_at <= cutoff:
            due.append((due_at, item.id, item))
    due.sort(key=lambda entry: (entry[0], entry[1]))
    selected = [entry[2] for entry in due]
    if limit is not None:
        return selected[: max(0, limit)]
    return selected
