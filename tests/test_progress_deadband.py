import pytest

from achievement_factories import make_progress
from readrise.services.progress import index_progress, plan_progress_update, should_write_progress


@pytest.mark.parametrize(
    "stored,new,expected",
    [
        (10, 10.4, False),
        (10, 9.2, False),
        (10, 11, True),
        (10, 9, True),
        (None, 0, True),
    ],
)
def test_should_write_progress(stored, new, expected):
    assert should_write_progress(stored, new) is expected


def test_plan_skips_small_changes_and_writes_new_rows():
    stored = index_progress([make_progress("sessions_10", 4, 10)])

    assert plan_progress_update(stored, "sessions_10", 4.5, 10) is None
    update = plan_progress_update(stored, "sessions_10", 5, 10)
    assert (update.achievement_key, update.current, update.target) == ("sessions_10", 5, 10)

    fresh = plan_progress_update(stored, "books_5", 0, 5)
    assert fresh is not None
    assert fresh.current == 0
