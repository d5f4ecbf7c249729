"""Parent resolution for Features and Tasks.

Explicit ``parent-child`` edges win, scanned in source order. Without one,
the fallback policy applies:

* Feature: attach to the first Epic registered this run; with no Epic at all
  the Feature is skipped, because a Feature cannot exist without an Epic.
* Task: attach to the first Feature registered this run; with no Feature at
  all the Task is still imported, parentless. Tasks are the only kind allowed
  to have no parent.

"First" means first in input order (the identity map's insertion order). The
fallback is best effort and can attach a record to an unrelated parent; it is
logged so operators can fix the links afterwards.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from Tasklets.identity import IdentityMap
from Tasklets.schemas import EntityKind, ExternalIssue


class ParentSource(str, enum.Enum):
    edge = "edge"
    fallback = "fallback"
    none = "none"


@dataclass(frozen=True)
class ParentDecision:
    parent_id: int | None
    source: ParentSource
    parent_external_id: str | None = None
    skip: bool = False


def resolve_parent(
    issue: ExternalIssue, kind: EntityKind, parents: IdentityMap
) -> ParentDecision:
    """Decide the parent of a Feature or Task.

    ``parents`` must be the identity map of ``kind.parent`` and already hold
    every parent imported or reused so far in this run.
    """
    if kind.parent is None:
        raise ValueError(f"{kind.value} records have no parent")
    if parents.kind is not kind.parent:
        raise ValueError(f"{kind.value} parents are {kind.parent.value}s, got {parents.kind.value}")

    for edge in issue.parent_edges():
        parent_id = parents.get(edge.depends_on_id)
        if parent_id is not None:
            return ParentDecision(parent_id, ParentSource.edge, edge.depends_on_id)

    first = parents.first()
    if first is not None:
        external_id, parent_id = first
        return ParentDecision(parent_id, ParentSource.fallback, external_id)

    if kind is EntityKind.feature:
        return ParentDecision(None, ParentSource.none, skip=True)
    return ParentDecision(None, ParentSource.none)
