import pytest

from Tasklets.models import ItemStatus
from Tasklets.vocabulary import UnresolvedPriorityError, map_priority, map_status


@pytest.mark.parametrize(
    "external,expected",
    [
        ("open", ItemStatus.backlog),
        ("reopened", ItemStatus.backlog),
        ("pending_internal_review", ItemStatus.backlog),
        ("waiting_for_customer", ItemStatus.backlog),
        ("rebuttal", ItemStatus.backlog),
        ("in_progress", ItemStatus.in_progress),
        ("closed", ItemStatus.completed),
        ("resolved", ItemStatus.completed),
        ("cancelled", ItemStatus.cancelled),
    ],
)
def test_status_table(external, expected):
    for issue_type in ("epic", "feature", "task"):
        assert map_status(external, issue_type) is expected


def test_unknown_status_defaults_to_backlog():
    assert map_status("blocked", "task") is ItemStatus.backlog
    assert map_status("", "epic") is ItemStatus.backlog
    assert map_status(None, "task") is ItemStatus.backlog


def test_status_is_trimmed_and_case_insensitive():
    assert map_status("  Closed ", "feature") is ItemStatus.completed
    assert map_status("IN_PROGRESS", "task") is ItemStatus.in_progress


def test_integer_priorities_pass_through():
    assert [map_priority(p) for p in range(5)] == [0, 1, 2, 3, 4]


def test_p_prefixed_priorities():
    assert map_priority("P0") == 0
    assert map_priority("P3") == 3
    assert map_priority("p1") == 1
    assert map_priority(" P4 ") == 4


@pytest.mark.parametrize(
    "bad", ["high", "P", "P10", "PP1", "1", "", -1, 5, 99, "P9", True, 2.5, None, [1]]
)
def test_unresolvable_priority_raises(bad):
    with pytest.raises(UnresolvedPriorityError) as exc:
        map_priority(bad)
    assert exc.value.value == bad
