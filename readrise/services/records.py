"""Rows read from and written to the ReadRise store.

Every model ignores unknown columns so that schema additions on the store side
never turn into fetch failures here.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ReadingStatus = Literal["want_to_read", "currently_reading", "finished"]


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Achievement(_Record):
    id: str
    key: str
    title: str = ""
    description: str = ""
    icon: Optional[str] = None
    category: Optional[str] = None
    # Raw ``{"type": ..., "target": ...}`` mapping, parsed per evaluation.
    criteria: Any = None
    points: Optional[int] = None
    tier: Optional[str] = None
    is_active: Optional[bool] = True
    created_at: Optional[datetime] = None


class ReadingSession(_Record):
    id: str
    user_id: str
    book_id: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    planned_duration: Optional[int] = None
    actual_duration: Optional[int] = None
    session_type: Optional[str] = None
    completed: Optional[bool] = False
    mood: Optional[str] = None
    notes: Optional[str] = None

    @property
    def start_day(self) -> date:
        """Calendar day of ``start_time`` in UTC. Naive timestamps are UTC."""
        start = self.start_time
        if start.tzinfo is None:
            return start.date()
        return start.astimezone(timezone.utc).date()


class Book(_Record):
    id: str
    user_id: str
    title: str = ""
    author: str = ""
    reading_status: ReadingStatus = "want_to_read"
    cover_url: Optional[str] = None
    rating: Optional[float] = None
    total_reading_time: Optional[int] = None


class UserAchievement(_Record):
    id: str
    user_id: str
    achievement_id: str
    unlocked_at: Optional[datetime] = None
    progress_data: Optional[dict[str, Any]] = None
    achievement: Optional[Achievement] = None


class AchievementProgress(_Record):
    id: Optional[str] = None
    user_id: str
    achievement_key: str
    current_progress: float = 0
    target_progress: float = 0
    progress_data: Optional[dict[str, Any]] = None
    last_updated: Optional[datetime] = None


class ProgressSnapshot(_Record):
    current: float
    target: float


class AchievementOverview(Achievement):
    """Catalog entry joined with one user's unlock and progress state."""

    unlocked: bool = False
    unlocked_at: Optional[datetime] = None
    progress: Optional[ProgressSnapshot] = None


class UserStats(_Record):
    total_sessions: int = 0
    total_minutes: int = 0
    books_finished: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    average_session_length: int = 0


class CheckAchievementsRequest(_Record):
    session: Optional[ReadingSession] = None


class CheckAchievementsResponse(_Record):
    unlocked: list[UserAchievement] = Field(default_factory=list)
