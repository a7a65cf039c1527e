"""Achievement evaluation for ReadRise readers.

One call to ``AchievementEngine.check_all_achievements`` reads everything it
needs up front, measures each locked achievement once, then writes unlocks and
progress snapshots in two independent concurrent batches. Only the read phase
can abort the call; nothing after it raises to the caller.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from time import perf_counter
from typing import Any, Awaitable, Callable, Sequence

from readrise.config.environment import EngineSettings
from readrise.services.achievement_store import AchievementStore
from readrise.services.criteria import EvaluationContext, evaluate_achievement
from readrise.services.errors import StatsUnavailableError
from readrise.services.metrics import metrics
from readrise.services.progress import ProgressUpdate, index_progress, plan_progress_update
from readrise.services.records import (
    Achievement,
    AchievementOverview,
    AchievementProgress,
    Book,
    ProgressSnapshot,
    ReadingSession,
    UserAchievement,
    UserStats,
)
from readrise.services.resilience import settle_all
from readrise.services.streaks import StreakSummary, calculate_streaks, utc_today

logger = logging.getLogger(__name__)


class _FetchFailed(Exception):
    pass


@dataclass(frozen=True)
class AchievementDataset:
    catalog: list[Achievement]
    unlocks: list[UserAchievement]
    progress: list[AchievementProgress]
    sessions: list[ReadingSession]
    books: list[Book]

    def unlocked_keys(self) -> set[str]:
        # Unlock records pointing at ids missing from the catalog are ignored.
        key_by_id = {achievement.id: achievement.key for achievement in self.catalog}
        return {key_by_id[ua.achievement_id] for ua in self.unlocks if ua.achievement_id in key_by_id}


@dataclass
class EvaluationPlan:
    unlocks: list[Achievement] = field(default_factory=list)
    progress: list[ProgressUpdate] = field(default_factory=list)


def completed_only(sessions: Sequence[ReadingSession]) -> list[ReadingSession]:
    return [session for session in sessions if session.completed]


def summarize_stats(
    sessions: Sequence[ReadingSession],
    books: Sequence[Book],
    today: date | None = None,
) -> UserStats:
    completed = completed_only(sessions)
    total_sessions = len(completed)
    total_minutes = sum(session.actual_duration or 0 for session in completed)
    streak = calculate_streaks(completed, today)
    average = int(total_minutes / total_sessions + 0.5) if total_sessions else 0
    return UserStats(
        total_sessions=total_sessions,
        total_minutes=total_minutes,
        books_finished=sum(1 for book in books if book.reading_status == "finished"),
        current_streak=streak.current,
        longest_streak=streak.longest,
        average_session_length=average,
    )


class AchievementEngine:
    def __init__(
        self,
        store: AchievementStore,
        settings: EngineSettings | None = None,
        *,
        clock: Callable[[], date] = utc_today,
    ):
        self.store = store
        self.settings = settings or EngineSettings()
        self._clock = clock

    async def check_all_achievements(
        self,
        user_id: str,
        triggering_session: ReadingSession | None = None,
    ) -> list[UserAchievement]:
        """Unlock every newly qualified achievement and refresh progress.

        Returns the unlocks made by this call only. Any read failure yields an
        empty list, the same answer as "nothing new".
        """
        started = perf_counter()
        metrics.inc("achievements.check_count")
        logger.info("achievements.check_started", extra={"user_id": user_id})

        dataset = await self._fetch_dataset(user_id)
        if dataset is None:
            metrics.inc("achievements.fetch_failure_count")
            return []

        streak = calculate_streaks(dataset.sessions, self._clock())
        plan = self._plan(dataset, streak, triggering_session)

        unlocked, _ = await asyncio.gather(
            self._run_unlocks(user_id, plan.unlocks),
            self._run_progress_writes(user_id, plan.progress),
        )

        metrics.observe_ms("achievements.check_latency", (perf_counter() - started) * 1000)
        logger.info(
            "achievements.check_completed",
            extra={
                "user_id": user_id,
                "queued_unlocks": len(plan.unlocks),
                "unlocked": len(unlocked),
                "progress_writes": len(plan.progress),
            },
        )
        return unlocked

    async def _fetch_dataset(self, user_id: str) -> AchievementDataset | None:
        try:
            catalog, unlocks, progress, sessions, books = await self._fetch_required(
                self.store.fetch_achievement_catalog(),
                self.store.fetch_unlocked_achievements(user_id),
                self.store.fetch_achievement_progress(user_id),
                self.store.fetch_recent_sessions(user_id, self.settings.session_window),
                self.store.fetch_books(user_id),
            )
        except _FetchFailed as exc:
            logger.error("achievements.fetch_failed", extra={"user_id": user_id, "reason": str(exc)})
            return None

        return AchievementDataset(
            catalog=catalog,
            unlocks=unlocks,
            progress=progress,
            sessions=completed_only(sessions),
            books=books,
        )

    async def _fetch_required(self, *calls: Awaitable[Any]) -> list[Any]:
        try:
            results = await asyncio.wait_for(
                asyncio.gather(*calls, return_exceptions=True),
                timeout=self.settings.fetch_timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise _FetchFailed(f"timed out after {self.settings.fetch_timeout_s}s") from exc

        for result in results:
            if isinstance(result, BaseException):
                raise _FetchFailed(f"{type(result).__name__}: {result}") from result
            if result is None:
                raise _FetchFailed("store returned no data")
        return results

    def _plan(
        self,
        dataset: AchievementDataset,
        streak: StreakSummary,
        triggering_session: ReadingSession | None,
    ) -> EvaluationPlan:
        ctx = EvaluationContext(
            sessions=dataset.sessions,
            books=dataset.books,
            triggering_session=triggering_session,
            streak=streak,
        )
        unlocked_keys = dataset.unlocked_keys()
        stored_progress = index_progress(dataset.progress)
        plan = EvaluationPlan()

        for achievement in dataset.catalog:
            if achievement.is_active is False or achievement.key in unlocked_keys:
                continue
            try:
                evaluation = evaluate_achievement(achievement, ctx)
            except Exception:
                metrics.inc("achievements.evaluation_error_count")
                logger.exception(
                    "achievements.evaluation_failed",
                    extra={"achievement_key": achievement.key},
                )
                continue
            if evaluation is None:
                continue

            logger.debug(
                "achievements.evaluated",
                extra={
                    "achievement_key": achievement.key,
                    "criteria_type": evaluation.criteria.kind.value,
                    "current_value": evaluation.current_value,
                    "target": evaluation.criteria.target,
                },
            )
            if evaluation.met:
                plan.unlocks.append(achievement)
            if evaluation.tracks_progress:
                update = plan_progress_update(
                    stored_progress,
                    achievement.key,
                    evaluation.capped_value,
                    evaluation.criteria.target,
                )
                if update is not None:
                    plan.progress.append(update)
        return plan

    async def _run_unlocks(self, user_id: str, achievements: list[Achievement]) -> list[UserAchievement]:
        outcomes = await settle_all(self._unlock(user_id, achievement) for achievement in achievements)
        unlocked: list[UserAchievement] = []
        for achievement, outcome in zip(achievements, outcomes):
            if not outcome.ok:
                metrics.inc("achievements.unlock_failure_count")
                logger.warning(
                    "achievements.unlock_failed",
                    extra={"achievement_key": achievement.key, "error": repr(outcome.error)},
                )
                continue
            if outcome.value is None:
                continue
            metrics.inc("achievements.unlocked_count")
            logger.info("achievements.unlocked", extra={"user_id": user_id, "achievement_key": achievement.key})
            unlocked.append(outcome.value)
        return unlocked

    async def _unlock(self, user_id: str, achievement: Achievement) -> UserAchievement | None:
        record = await self.store.insert_unlock(user_id, achievement.id)
        if record is None:
            logger.warning("achievements.unlock_empty", extra={"achievement_key": achievement.key})
            return None
        if record.achievement is None:
            record = record.model_copy(update={"achievement": achievement})
        return record

    async def _run_progress_writes(self, user_id: str, updates: list[ProgressUpdate]) -> None:
        outcomes = await settle_all(
            self.store.write_progress(user_id, update.achievement_key, update.current, update.target)
            for update in updates
        )
        for update, outcome in zip(updates, outcomes):
            if outcome.ok:
                metrics.inc("achievements.progress_write_count")
                continue
            metrics.inc("achievements.progress_failure_count")
            logger.warning(
                "achievements.progress_write_failed",
                extra={"achievement_key": update.achievement_key, "error": repr(outcome.error)},
            )

    async def get_unlocked_achievements(self, user_id: str) -> list[UserAchievement]:
        try:
            return await self.store.fetch_unlocked_achievements(user_id) or []
        except Exception:
            logger.exception("achievements.unlocked_fetch_failed", extra={"user_id": user_id})
            return []

    async def get_achievement_progress(self, user_id: str) -> list[AchievementProgress]:
        try:
            return await self.store.fetch_achievement_progress(user_id) or []
        except Exception:
            logger.exception("achievements.progress_fetch_failed", extra={"user_id": user_id})
            return []

    async def update_achievement_progress(
        self,
        user_id: str,
        achievement_key: str,
        current: float,
        target: float,
        progress_data: dict[str, Any] | None = None,
    ) -> AchievementProgress | None:
        try:
            return await self.store.write_progress(user_id, achievement_key, current, target, progress_data)
        except Exception:
            logger.exception("achievements.progress_write_failed", extra={"achievement_key": achievement_key})
            return None

    async def _find_achievement(self, achievement_key: str) -> Achievement | None:
        catalog = await self.store.fetch_achievement_catalog() or []
        return next((a for a in catalog if a.key == achievement_key), None)

    async def unlock_achievement(self, user_id: str, achievement_key: str) -> UserAchievement | None:
        """Unlock one achievement by key, bypassing criteria."""
        try:
            achievement = await self._find_achievement(achievement_key)
            if achievement is None:
                logger.error("achievements.not_found", extra={"achievement_key": achievement_key})
                return None
            return await self._unlock(user_id, achievement)
        except Exception:
            logger.exception("achievements.unlock_failed", extra={"achievement_key": achievement_key})
            return None

    async def is_achievement_unlocked(self, user_id: str, achievement_key: str) -> bool:
        try:
            achievement = await self._find_achievement(achievement_key)
            if achievement is None:
                return False
            unlocks = await self.store.fetch_unlocked_achievements(user_id) or []
        except Exception:
            logger.exception("achievements.unlock_lookup_failed", extra={"achievement_key": achievement_key})
            return False
        return any(ua.achievement_id == achievement.id for ua in unlocks)

    async def calculate_user_stats(self, user_id: str) -> UserStats:
        """Reading totals for display. Never used for unlock decisions."""
        try:
            sessions, books = await self._fetch_required(
                self.store.fetch_recent_sessions(user_id, self.settings.stats_session_window),
                self.store.fetch_books(user_id),
            )
        except _FetchFailed as exc:
            logger.error("achievements.stats_fetch_failed", extra={"user_id": user_id, "reason": str(exc)})
            raise StatsUnavailableError("Failed to fetch user stats") from exc
        return summarize_stats(sessions, books, self._clock())

    async def get_achievement_overview(self, user_id: str) -> list[AchievementOverview]:
        try:
            catalog, unlocks, progress = await self._fetch_required(
                self.store.fetch_achievement_catalog(),
                self.store.fetch_unlocked_achievements(user_id),
                self.store.fetch_achievement_progress(user_id),
            )
        except _FetchFailed as exc:
            logger.error("achievements.overview_fetch_failed", extra={"user_id": user_id, "reason": str(exc)})
            raise StatsUnavailableError("Failed to fetch achievements") from exc

        unlock_by_id = {ua.achievement_id: ua for ua in unlocks}
        progress_by_key = index_progress(progress)
        overview: list[AchievementOverview] = []
        for achievement in catalog:
            unlock = unlock_by_id.get(achievement.id)
            row = progress_by_key.get(achievement.key)
            overview.append(
                AchievementOverview(
                    **achievement.model_dump(),
                    unlocked=unlock is not None,
                    unlocked_at=unlock.unlocked_at if unlock else None,
                    progress=(
                        ProgressSnapshot(current=row.current_progress, target=row.target_progress)
                        if row
                        else None
                    ),
                )
            )
        return overview
