from __future__ import annotations


class AchievementError(Exception):
    """Base class for achievement engine failures."""


class InvalidCriteriaError(AchievementError):
    def __init__(self, achievement_key: str, reason: str):
        self.achievement_key = achievement_key
        self.reason = reason
        super().__init__(f"Invalid criteria for '{achievement_key}': {reason}")


class StatsUnavailableError(AchievementError):
    """Raised when display data cannot be assembled from the store."""
