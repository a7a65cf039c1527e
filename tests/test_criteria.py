import pytest

from achievement_factories import make_achievement, make_book, make_session
from readrise.services.criteria import (
    EVALUATORS,
    UNIMPLEMENTED_KINDS,
    Criteria,
    CriteriaKind,
    EvaluationContext,
    evaluate,
    evaluate_achievement,
    parse_criteria,
)
from readrise.services.errors import InvalidCriteriaError
from readrise.services.streaks import StreakSummary


def test_every_kind_is_evaluated_or_explicitly_reserved():
    assert set(EVALUATORS) | UNIMPLEMENTED_KINDS == set(CriteriaKind)
    assert not set(EVALUATORS) & UNIMPLEMENTED_KINDS


@pytest.mark.parametrize(
    "sessions,met",
    [(10, True), (9, False)],
)
def test_session_count_boundary(sessions, met):
    ctx = EvaluationContext(sessions=[make_session() for _ in range(sessions)])
    evaluation = evaluate(Criteria(CriteriaKind.SESSION_COUNT, 10), ctx)
    assert evaluation.current_value == sessions
    assert evaluation.met is met


def test_total_reading_minutes_sums_durations_and_skips_missing():
    ctx = EvaluationContext(sessions=[make_session(duration=1500), make_session(duration=1200), make_session(duration=None)])
    evaluation = evaluate(Criteria(CriteriaKind.TOTAL_READING_MINUTES, 2700), ctx)
    assert evaluation.current_value == 2700
    assert evaluation.met


def test_single_session_prefers_triggering_session():
    recent = make_session(0, duration=100, hour=20)
    trigger = make_session(0, duration=4000, hour=9)
    ctx = EvaluationContext(sessions=[make_session(1, duration=50), recent], triggering_session=trigger)

    evaluation = evaluate(Criteria(CriteriaKind.SINGLE_SESSION_MINUTES, 3600), ctx)

    assert evaluation.current_value == 4000
    assert evaluation.met
    assert not evaluation.tracks_progress


def test_single_session_falls_back_to_most_recent_completed_session():
    ctx = EvaluationContext(sessions=[make_session(0, duration=100, hour=20), make_session(0, duration=9000, hour=6)])
    assert evaluate(Criteria(CriteriaKind.SINGLE_SESSION_MINUTES, 3600), ctx).current_value == 100


@pytest.mark.parametrize("completed", [False, None])
def test_single_session_ignores_unfinished_triggering_session(completed):
    trigger = make_session(0, duration=4000, hour=18).model_copy(update={"completed": completed})
    ctx = EvaluationContext(sessions=[make_session(0, duration=100)], triggering_session=trigger)

    evaluation = evaluate(Criteria(CriteriaKind.SINGLE_SESSION_MINUTES, 3600), ctx)

    assert evaluation.current_value == 100
    assert not evaluation.met


def test_single_session_without_any_session_is_zero():
    assert evaluate(Criteria(CriteriaKind.SINGLE_SESSION_MINUTES, 1), EvaluationContext()).current_value == 0


def test_books_completed_counts_finished_only():
    ctx = EvaluationContext(books=[make_book("finished"), make_book("currently_reading"), make_book("finished")])
    assert evaluate(Criteria(CriteriaKind.BOOKS_COMPLETED, 2), ctx).met


def test_consecutive_days_reads_shared_streak():
    ctx = EvaluationContext(streak=StreakSummary(current=6, longest=12))
    evaluation = evaluate(Criteria(CriteriaKind.CONSECUTIVE_DAYS, 7), ctx)
    assert evaluation.current_value == 6
    assert not evaluation.met


@pytest.mark.parametrize("kind", ["pages_read", "goal_complete"])
def test_reserved_kinds_are_not_evaluated(kind):
    achievement = make_achievement(kind, kind, 0)
    assert evaluate_achievement(achievement, EvaluationContext()) is None


def test_unknown_kind_is_skipped():
    achievement = make_achievement("night_owl", "read_after_midnight", 1)
    assert parse_criteria(achievement) is None


@pytest.mark.parametrize(
    "criteria",
    [
        None,
        "session_count",
        {"target": 3},
        {"type": "session_count"},
        {"type": "session_count", "target": "ten"},
        {"type": "session_count", "target": True},
        {"type": "session_count", "target": -1},
    ],
)
def test_malformed_criteria_raise(criteria):
    achievement = make_achievement("broken", criteria=criteria)
    if criteria is None:
        achievement = achievement.model_copy(update={"criteria": None})
    with pytest.raises(InvalidCriteriaError):
        parse_criteria(achievement)


def test_progress_value_is_capped_at_target():
    ctx = EvaluationContext(sessions=[make_session() for _ in range(12)])
    evaluation = evaluate(Criteria(CriteriaKind.SESSION_COUNT, 10), ctx)
    assert evaluation.capped_value == 10
    assert evaluation.tracks_progress


def test_evaluation_is_repeatable():
    ctx = EvaluationContext(sessions=[make_session() for _ in range(3)])
    achievement = make_achievement("sessions_3", "session_count", 3)
    assert evaluate_achievement(achievement, ctx) == evaluate_achievement(achievement, ctx)
