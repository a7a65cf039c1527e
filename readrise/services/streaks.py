from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable

from readrise.services.records import ReadingSession

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class StreakSummary:
    current: int = 0
    longest: int = 0


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def reading_days(sessions: Iterable[ReadingSession]) -> list[date]:
    """Distinct UTC start days of ``sessions``, oldest first."""
    return sorted({session.start_day for session in sessions})


def longest_run(days: list[date]) -> int:
    if not days:
        return 0
    longest = run = 1
    for previous, current in zip(days, days[1:]):
        run = run + 1 if current - previous == ONE_DAY else 1
        longest = max(longest, run)
    return longest


def current_run(days: list[date], today: date) -> int:
    # A run that stopped yesterday is already broken.
    if not days or days[-1] != today:
        return 0
    run = 1
    for index in range(len(days) - 1, 0, -1):
        if days[index] - days[index - 1] != ONE_DAY:
            break
        run += 1
    return run


def calculate_streaks(
    sessions: Iterable[ReadingSession],
    today: date | None = None,
) -> StreakSummary:
    days = reading_days(sessions)
    if not days:
        return StreakSummary()
    today = today or utc_today()
    return StreakSummary(current=current_run(days, today), longest=longest_run(days))
