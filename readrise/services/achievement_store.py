from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from readrise.services.records import (
    Achievement,
    AchievementProgress,
    Book,
    ReadingSession,
    UserAchievement,
)
from readrise.services.supabase_rest import SupabaseRestRepository, eq, expect_ok

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


def _parse_rows(model: type[RecordT], rows: list[dict], resource: str) -> list[RecordT]:
    """Validate rows one by one, dropping the ones that do not fit ``model``."""
    parsed: list[RecordT] = []
    for row in rows:
        try:
            parsed.append(model.model_validate(row))
        except ValidationError as exc:
            logger.warning(
                "achievements.row_dropped",
                extra={
                    "resource": resource,
                    "row_id": row.get("id") if isinstance(row, dict) else None,
                    "errors": exc.error_count(),
                },
            )
    return parsed


class AchievementStore(Protocol):
    async def fetch_achievement_catalog(self) -> list[Achievement] | None: ...

    async def fetch_unlocked_achievements(self, user_id: str) -> list[UserAchievement] | None: ...

    async def fetch_achievement_progress(self, user_id: str) -> list[AchievementProgress] | None: ...

    async def fetch_recent_sessions(self, user_id: str, limit: int) -> list[ReadingSession] | None: ...

    async def fetch_books(self, user_id: str) -> list[Book] | None: ...

    async def insert_unlock(self, user_id: str, achievement_id: str) -> UserAchievement | None: ...

    async def write_progress(
        self,
        user_id: str,
        achievement_key: str,
        current: float,
        target: float,
        progress_data: dict[str, Any] | None = None,
    ) -> AchievementProgress | None: ...


class SupabaseAchievementStore:
    """AchievementStore over the ReadRise PostgREST tables."""

    def __init__(self, repo: SupabaseRestRepository):
        self.repo = repo

    async def _select(self, resource: str, params: list[tuple[str, Any]], *, detail: str) -> list[dict]:
        res = await self.repo.get(
            resource,
            params=params,
            headers=self.repo.headers(include_content_type=False),
        )
        await expect_ok(res, detail=detail)
        return res.json() or []

    async def fetch_achievement_catalog(self) -> list[Achievement]:
        rows = await self._select(
            "achievements",
            [("select", "*"), ("is_active", eq(True))],
            detail="Failed to load achievements.",
        )
        return _parse_rows(Achievement, rows, "achievements")

    async def fetch_unlocked_achievements(self, user_id: str) -> list[UserAchievement]:
        rows = await self._select(
            "user_achievements",
            [("select", "*,achievement:achievement_id(*)"), ("user_id", eq(user_id))],
            detail="Failed to load unlocked achievements.",
        )
        # Unlock rows stay strict: dropping one would unlock that achievement again.
        return [UserAchievement.model_validate(row) for row in rows]

    async def fetch_achievement_progress(self, user_id: str) -> list[AchievementProgress]:
        rows = await self._select(
            "achievement_progress",
            [("select", "*"), ("user_id", eq(user_id))],
            detail="Failed to load achievement progress.",
        )
        return _parse_rows(AchievementProgress, rows, "achievement_progress")

    async def fetch_recent_sessions(self, user_id: str, limit: int) -> list[ReadingSession]:
        rows = await self._select(
            "reading_sessions",
            [
                ("select", "*"),
                ("user_id", eq(user_id)),
                ("order", "start_time.desc"),
                ("limit", str(limit)),
            ],
            detail="Failed to load reading sessions.",
        )
        return _parse_rows(ReadingSession, rows, "reading_sessions")

    async def fetch_books(self, user_id: str) -> list[Book]:
        rows = await self._select(
            "books",
            [("select", "*"), ("user_id", eq(user_id))],
            detail="Failed to load books.",
        )
        return _parse_rows(Book, rows, "books")

    async def insert_unlock(self, user_id: str, achievement_id: str) -> UserAchievement | None:
        """Insert one unlock row, or return the row already stored for the pair.

        The shared client retries timed-out POSTs, so an insert whose response
        was lost comes back here as an ignored duplicate and is read back.
        """
        res = await self.repo.post(
            "user_achievements",
            params={"on_conflict": "user_id,achievement_id"},
            json={"user_id": user_id, "achievement_id": achievement_id},
            headers=self.repo.headers(prefer="resolution=ignore-duplicates,return=representation"),
        )
        await expect_ok(res, detail="Failed to unlock achievement.", allowed=(200, 201))
        rows = res.json() or []
        if not rows:
            rows = await self._select(
                "user_achievements",
                [
                    ("select", "*"),
                    ("user_id", eq(user_id)),
                    ("achievement_id", eq(achievement_id)),
                    ("limit", "1"),
                ],
                detail="Failed to load unlocked achievement.",
            )
        return UserAchievement.model_validate(rows[0]) if rows else None

    async def write_progress(
        self,
        user_id: str,
        achievement_key: str,
        current: float,
        target: float,
        progress_data: dict[str, Any] | None = None,
    ) -> AchievementProgress | None:
        payload: dict[str, Any] = {
            "user_id": user_id,
            "achievement_key": achievement_key,
            "current_progress": current,
            "target_progress": target,
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }
        if progress_data:
            payload["progress_data"] = progress_data

        res = await self.repo.post(
            "achievement_progress",
            params={"on_conflict": "user_id,achievement_key"},
            json=payload,
            headers=self.repo.headers(prefer="resolution=merge-duplicates,return=representation"),
        )
        await expect_ok(res, detail="Failed to save achievement progress.", allowed=(200, 201))
        rows = res.json() or []
        return AchievementProgress.model_validate(rows[0]) if rows else None
