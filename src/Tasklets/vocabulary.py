"""Translate beads status/priority vocabulary into Tasklets values."""

from __future__ import annotations

import re

from Tasklets.importer_context import ImporterError
from Tasklets.models import ItemStatus

_STATUS_MAP: dict[str, ItemStatus] = {
    "open": ItemStatus.backlog,
    "reopened": ItemStatus.backlog,
    "pending_internal_review": ItemStatus.backlog,
    "waiting_for_customer": ItemStatus.backlog,
    "rebuttal": ItemStatus.backlog,
    "in_progress": ItemStatus.in_progress,
    "closed": ItemStatus.completed,
    "resolved": ItemStatus.completed,
    "cancelled": ItemStatus.cancelled,
}

_PRIORITY_RE = re.compile(r"P([0-9])", re.IGNORECASE)

MIN_PRIORITY = 0
MAX_PRIORITY = 4


class UnresolvedPriorityError(ImporterError):
    """Raised when an external priority cannot be mapped onto 0-4."""

    def __init__(self, value: object):
        super().__init__(f"unresolvable priority: {value!r}")
        self.value = value


def map_status(external_status: str | None, issue_type: str) -> ItemStatus:
    """Map a beads status to an ItemStatus; unknown values become backlog.

    ``issue_type`` is accepted so per-type vocabularies can diverge later;
    today every type shares one table.
    """
    key = (external_status or "").strip().lower()
    return _STATUS_MAP.get(key, ItemStatus.backlog)


def map_priority(external_priority: object) -> int:
    """Return the 0-4 priority for an int or ``P<digit>`` string.

    Matching is case-insensitive (``"p1"`` -> 1). There is no default: a
    value that does not resolve raises UnresolvedPriorityError.
    """
    if isinstance(external_priority, bool):
        raise UnresolvedPriorityError(external_priority)
    if isinstance(external_priority, int):
        value = external_priority
    elif isinstance(external_priority, str):
        match = _PRIORITY_RE.fullmatch(external_priority.strip())
        if match is None:
            raise UnresolvedPriorityError(external_priority)
        value = int(match.group(1))
    else:
        raise UnresolvedPriorityError(external_priority)
    if not MIN_PRIORITY <= value <= MAX_PRIORITY:
        raise UnresolvedPriorityError(external_priority)
    return value
