"""Achievement criteria kinds and the metric each one is measured by.

Every evaluator reduces the same fetched dataset to a single number; the
achievement qualifies once that number reaches the criteria target.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

from readrise.services.errors import InvalidCriteriaError
from readrise.services.records import Achievement, Book, ReadingSession
from readrise.services.streaks import StreakSummary

logger = logging.getLogger(__name__)


class CriteriaKind(str, Enum):
    SESSION_COUNT = "session_count"
    SINGLE_SESSION_MINUTES = "single_session_minutes"
    TOTAL_READING_MINUTES = "total_reading_minutes"
    BOOKS_COMPLETED = "books_completed"
    CONSECUTIVE_DAYS = "consecutive_days"
    PAGES_READ = "pages_read"
    GOAL_COMPLETE = "goal_complete"


@dataclass(frozen=True)
class Criteria:
    kind: CriteriaKind
    target: float


@dataclass(frozen=True)
class EvaluationContext:
    """Completed sessions, books and shared streak for one evaluation pass."""

    sessions: Sequence[ReadingSession] = ()
    books: Sequence[Book] = ()
    triggering_session: ReadingSession | None = None
    streak: StreakSummary = field(default_factory=StreakSummary)


@dataclass(frozen=True)
class Evaluation:
    criteria: Criteria
    current_value: float

    @property
    def met(self) -> bool:
        return self.current_value >= self.criteria.target

    @property
    def tracks_progress(self) -> bool:
        return self.criteria.kind in PROGRESS_TRACKED_KINDS

    @property
    def capped_value(self) -> float:
        return min(self.current_value, self.criteria.target)


def _session_count(ctx: EvaluationContext) -> float:
    return len(ctx.sessions)


def _single_session_minutes(ctx: EvaluationContext) -> float:
    session = ctx.triggering_session
    if session is not None and not session.completed:
        session = None
    if session is None and ctx.sessions:
        session = max(ctx.sessions, key=lambda s: s.start_time)
    if session is None:
        return 0
    return session.actual_duration or 0


def _total_reading_minutes(ctx: EvaluationContext) -> float:
    return sum(session.actual_duration or 0 for session in ctx.sessions)


def _books_completed(ctx: EvaluationContext) -> float:
    return sum(1 for book in ctx.books if book.reading_status == "finished")


def _consecutive_days(ctx: EvaluationContext) -> float:
    return ctx.streak.current


EVALUATORS: dict[CriteriaKind, Callable[[EvaluationContext], float]] = {
    CriteriaKind.SESSION_COUNT: _session_count,
    CriteriaKind.SINGLE_SESSION_MINUTES: _single_session_minutes,
    CriteriaKind.TOTAL_READING_MINUTES: _total_reading_minutes,
    CriteriaKind.BOOKS_COMPLETED: _books_completed,
    CriteriaKind.CONSECUTIVE_DAYS: _consecutive_days,
}

# Reserved kinds: they need page counts and user goals, which sessions do not carry yet.
UNIMPLEMENTED_KINDS = frozenset({CriteriaKind.PAGES_READ, CriteriaKind.GOAL_COMPLETE})

PROGRESS_TRACKED_KINDS = frozenset(
    {
        CriteriaKind.SESSION_COUNT,
        CriteriaKind.TOTAL_READING_MINUTES,
        CriteriaKind.BOOKS_COMPLETED,
        CriteriaKind.CONSECUTIVE_DAYS,
    }
)

_uncovered = set(CriteriaKind) - set(EVALUATORS) - UNIMPLEMENTED_KINDS
if _uncovered:
    raise RuntimeError(f"Criteria kinds without an evaluator: {sorted(k.value for k in _uncovered)}")


def parse_criteria(achievement: Achievement) -> Criteria | None:
    """Parse an achievement's raw criteria.

    Returns None for a ``type`` this engine does not know; raises
    InvalidCriteriaError when the payload is structurally broken.
    """
    raw = achievement.criteria
    if not isinstance(raw, Mapping):
        raise InvalidCriteriaError(achievement.key, "criteria must be an object")

    kind_value = raw.get("type")
    if not isinstance(kind_value, str) or not kind_value:
        raise InvalidCriteriaError(achievement.key, "missing criteria type")
    try:
        kind = CriteriaKind(kind_value)
    except ValueError:
        logger.warning(
            "achievements.unknown_criteria_type",
            extra={"achievement_key": achievement.key, "criteria_type": kind_value},
        )
        return None

    return Criteria(kind=kind, target=_parse_target(achievement.key, raw.get("target")))


def _parse_target(achievement_key: str, target: Any) -> float:
    if isinstance(target, bool) or not isinstance(target, (int, float)):
        raise InvalidCriteriaError(achievement_key, f"target must be a number, got {target!r}")
    if target < 0:
        raise InvalidCriteriaError(achievement_key, f"target must not be negative, got {target!r}")
    return target


def evaluate(criteria: Criteria, ctx: EvaluationContext) -> Evaluation | None:
    """Measure ``criteria`` against ``ctx``; None for reserved kinds."""
    if criteria.kind in UNIMPLEMENTED_KINDS:
        return None
    return Evaluation(criteria=criteria, current_value=EVALUATORS[criteria.kind](ctx))


def evaluate_achievement(achievement: Achievement, ctx: EvaluationContext) -> Evaluation | None:
    criteria = parse_criteria(achievement)
    if criteria is None:
        return None
    return evaluate(criteria, ctx)
