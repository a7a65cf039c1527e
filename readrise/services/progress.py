from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from readrise.services.records import AchievementProgress

# Progress is shown rounded, so smaller drifts are not worth a write.
PROGRESS_DEAD_BAND = 1


@dataclass(frozen=True)
class ProgressUpdate:
    achievement_key: str
    current: float
    target: float


def should_write_progress(stored_value: float | None, new_value: float) -> bool:
    if stored_value is None:
        return True
    return abs(stored_value - new_value) >= PROGRESS_DEAD_BAND


def index_progress(rows: list[AchievementProgress]) -> dict[str, AchievementProgress]:
    return {row.achievement_key: row for row in rows}


def plan_progress_update(
    stored: Mapping[str, AchievementProgress],
    achievement_key: str,
    current: float,
    target: float,
) -> ProgressUpdate | None:
    row = stored.get(achievement_key)
    stored_value = row.current_progress if row is not None else None
    if not should_write_progress(stored_value, current):
        return None
    return ProgressUpdate(achievement_key=achievement_key, current=current, target=target)
