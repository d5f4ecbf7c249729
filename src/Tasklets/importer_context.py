"""Run-scoped state for a beads import.

``ImportRunContext`` replaces module-level maps: it owns the per-kind
identity maps, the per-record outcomes, malformed lines, the pipeline stage
and the cancellation token for exactly one run. Nothing here touches the
database.

The stage machine is strictly linear::

    INIT -> SEED_LOADED -> EPICS_IMPORTED -> FEATURES_IMPORTED
         -> TASKS_IMPORTED -> REPORTED -> DONE

so Features can only be processed once every Epic has been, and Tasks only
after every Feature.
"""

from __future__ import annotations

import enum
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from Tasklets.identity import IdentityMap
from Tasklets.schemas import EntityKind


class ImporterError(Exception):
    """Base exception for importer errors."""

    pass


class SeedMissingError(ImporterError):
    """Required product or user seed context is absent; nothing is written."""

    pass


class InputSourceError(ImporterError):
    """The issue source cannot be opened or read."""

    pass


class PipelineStage(str, enum.Enum):
    INIT = "init"
    SEED_LOADED = "seed_loaded"
    EPICS_IMPORTED = "epics_imported"
    FEATURES_IMPORTED = "features_imported"
    TASKS_IMPORTED = "tasks_imported"
    REPORTED = "reported"
    DONE = "done"


_STAGE_ORDER = list(PipelineStage)

# The stage a kind's pass completes
STAGE_AFTER_PASS: dict[EntityKind, PipelineStage] = {
    EntityKind.epic: PipelineStage.EPICS_IMPORTED,
    EntityKind.feature: PipelineStage.FEATURES_IMPORTED,
    EntityKind.task: PipelineStage.TASKS_IMPORTED,
}


class Outcome(str, enum.Enum):
    created = "created"
    reused = "reused"
    skipped = "skipped"


class SkipReason(str, enum.Enum):
    UNRESOLVED_PRIORITY = "unresolved_priority"
    UNRESOLVED_PARENT = "unresolved_parent"
    WRITE_FAILURE = "write_failure"


@dataclass(frozen=True)
class MalformedLine:
    line_no: int
    reason: str
    raw: str


@dataclass(frozen=True)
class RecordOutcome:
    """Result of processing one external issue."""

    kind: EntityKind
    external_id: str
    outcome: Outcome
    internal_id: int | None = None
    parent_id: int | None = None
    reason: SkipReason | None = None
    detail: str | None = None

    @classmethod
    def skipped(
        cls, kind: EntityKind, external_id: str, reason: SkipReason, detail: str | None = None
    ) -> RecordOutcome:
        return cls(kind, external_id, Outcome.skipped, reason=reason, detail=detail)


@dataclass(frozen=True)
class SeedContext:
    """Pre-existing tenant/product/user every imported row is attached to."""

    tenant_id: int
    product_id: int
    product_name: str
    product_code: str
    user_id: int
    user_email: str


class CancelToken:
    """Cooperative cancellation checked between records.

    Backed by a threading.Event so signal handlers and other threads can
    request a stop safely.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def _new_identity_maps() -> dict[EntityKind, IdentityMap]:
    return {kind: IdentityMap(kind) for kind in EntityKind}


@dataclass
class ImportRunContext:
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cancel_token: CancelToken = field(default_factory=CancelToken)
    seed: SeedContext | None = None
    stage: PipelineStage = PipelineStage.INIT
    identity: dict[EntityKind, IdentityMap] = field(default_factory=_new_identity_maps)
    outcomes: list[RecordOutcome] = field(default_factory=list)
    malformed: list[MalformedLine] = field(default_factory=list)
    cancelled: bool = False

    def advance(self, stage: PipelineStage) -> None:
        """Move to the next stage; skipping or re-entering a stage is an error."""
        expected_idx = _STAGE_ORDER.index(self.stage) + 1
        if expected_idx >= len(_STAGE_ORDER) or _STAGE_ORDER[expected_idx] != stage:
            raise ImporterError(
                f"illegal pipeline transition {self.stage.value} -> {stage.value}"
            )
        self.stage = stage

    def require_seed(self) -> SeedContext:
        if self.seed is None:
            raise ImporterError("seed context not loaded")
        return self.seed

    def should_stop(self) -> bool:
        if not self.cancelled and self.cancel_token.cancelled:
            self.cancelled = True
        return self.cancelled

    def record(self, outcome: RecordOutcome) -> None:
        self.outcomes.append(outcome)

    def record_malformed(self, line: MalformedLine) -> None:
        self.malformed.append(line)

    def outcomes_for(self, kind: EntityKind) -> list[RecordOutcome]:
        return [o for o in self.outcomes if o.kind == kind]


__all__ = [
    "CancelToken",
    "ImportRunContext",
    "ImporterError",
    "InputSourceError",
    "MalformedLine",
    "Outcome",
    "PipelineStage",
    "RecordOutcome",
    "STAGE_AFTER_PASS",
    "SeedContext",
    "SeedMissingError",
    "SkipReason",
]
