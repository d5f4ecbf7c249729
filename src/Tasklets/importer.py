"""Beads issue importer.

Merges a beads ``issues.jsonl`` export into the Tasklets Epic -> Feature ->
Task hierarchy:

- Seed lookup (product by name, user by email); a missing seed is fatal and
  happens before any write
- Streaming parse with per-line malformed tolerance
- Epics, then Features, then Tasks, enforced by the run context's stage
  machine so parents are always registered before their children
- Idempotent create-or-reuse keyed on ``(tenant, kind, external_id)``
- Per-record failure isolation: a bad priority, an unresolvable Feature
  parent or a storage error skips that record and the batch continues
- Post-run reconciliation against fresh per-tenant counts
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from structlog.contextvars import bind_contextvars, unbind_contextvars

from Tasklets.hierarchy import ParentSource, resolve_parent
from Tasklets.identity import IdentityResolver
from Tasklets.importer_context import (
    STAGE_AFTER_PASS,
    CancelToken,
    ImporterError,
    ImportRunContext,
    InputSourceError,
    Outcome,
    PipelineStage,
    RecordOutcome,
    SeedContext,
    SeedMissingError,
    SkipReason,
)
from Tasklets.ingest import read_issues
from Tasklets.metrics import record_import_outcome
from Tasklets.models import ItemStatus
from Tasklets.reconciliation import ImportReport, reconcile
from Tasklets.schemas import EntityKind, ExternalIssue
from Tasklets.store import IssueKeySource, RecordStore, SqlRecordStore
from Tasklets.vocabulary import UnresolvedPriorityError, map_priority, map_status

log = structlog.get_logger()

DEFAULT_EPIC_COLOR = "#3B82F6"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dedupe(labels: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(labels))


def classify_issues(issues: Iterable[ExternalIssue]) -> dict[EntityKind, list[ExternalIssue]]:
    """Bucket issues by kind, keeping input order within each bucket."""
    buckets: dict[EntityKind, list[ExternalIssue]] = {kind: [] for kind in EntityKind}
    for issue in issues:
        buckets[EntityKind(issue.issue_type)].append(issue)
    return buckets


async def load_seed(store: RecordStore, product_name: str, user_email: str) -> SeedContext:
    """Resolve the product and user every imported record is attached to."""
    product = await store.find_product(product_name)
    if product is None:
        raise SeedMissingError(f"product {product_name!r} not found; create it before importing")
    user = await store.find_user(user_email, product.tenant_id)
    if user is None:
        raise SeedMissingError(
            f"user {user_email!r} not found in tenant {product.tenant_id}; create the account first"
        )
    log.info(
        "import.seed.loaded",
        tenant_id=product.tenant_id,
        product_id=product.id,
        product=product.name,
        user_id=user.id,
    )
    return SeedContext(
        tenant_id=product.tenant_id,
        product_id=product.id,
        product_name=product.name,
        product_code=product.code,
        user_id=user.id,
        user_email=user.email,
    )


class PersistenceWriter:
    """Creates internal records for issues the identity resolver did not find."""

    def __init__(
        self,
        store: RecordStore,
        seed: SeedContext,
        *,
        epic_color: str = DEFAULT_EPIC_COLOR,
        issue_keys: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._seed = seed
        self._epic_color = epic_color
        self._issue_keys = issue_keys
        self._clock = clock

    def build_values(
        self, kind: EntityKind, issue: ExternalIssue, parent_id: int | None
    ) -> dict[str, Any]:
        """Map an issue onto column values; raises UnresolvedPriorityError."""
        seed = self._seed
        now = self._clock()
        status = map_status(issue.status, kind.value)
        priority = map_priority(issue.priority)
        completed = status is ItemStatus.completed
        values: dict[str, Any] = {
            "tenant_id": seed.tenant_id,
            "external_id": issue.id,
            "title": issue.title,
            "description": issue.description or "",
            "status": status,
            "priority": priority,
            "labels": _dedupe(issue.labels),
            "meta": {
                "beads_id": issue.id,
                "beads_status": issue.status,
                "beads_priority": issue.priority,
            },
            "created_at": issue.created_at or now,
            "updated_at": issue.updated_at or now,
            "closed_at": (issue.closed_at or now) if completed else None,
            "created_by": seed.user_id,
        }
        if kind is EntityKind.epic:
            values.update(
                product_id=seed.product_id,
                owner_id=seed.user_id,
                color=self._epic_color,
                progress=100 if completed else 0,
            )
        elif kind is EntityKind.feature:
            if parent_id is None:
                raise ImporterError(f"feature {issue.id} needs a parent epic")
            values.update(epic_id=parent_id, owner_id=seed.user_id)
        else:
            values.update(
                product_id=seed.product_id,
                feature_id=parent_id,
                type="task",
                implementor_id=seed.user_id,
                developer_id=seed.user_id,
            )
        return values

    async def create(
        self, kind: EntityKind, issue: ExternalIssue, parent_id: int | None
    ) -> RecordOutcome:
        try:
            values = self.build_values(kind, issue, parent_id)
        except UnresolvedPriorityError as exc:
            return RecordOutcome.skipped(kind, issue.id, SkipReason.UNRESOLVED_PRIORITY, str(exc))

        issue_key = (
            IssueKeySource(self._seed.product_id, self._seed.product_code)
            if self._issue_keys
            else None
        )
        try:
            internal_id = await self._store.insert(kind, values, issue_key=issue_key)
        except SQLAlchemyError as exc:
            log.error(
                "import.record.write_failed",
                kind=kind.value,
                external_id=issue.id,
                error=type(exc).__name__,
            )
            return RecordOutcome.skipped(
                kind, issue.id, SkipReason.WRITE_FAILURE, f"{type(exc).__name__}: {exc}"
            )
        return RecordOutcome(kind, issue.id, Outcome.created, internal_id, parent_id)


class ImportPipeline:
    """Runs the per-kind passes for one import run."""

    def __init__(
        self,
        store: RecordStore,
        context: ImportRunContext,
        *,
        epic_color: str = DEFAULT_EPIC_COLOR,
        issue_keys: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ):
        seed = context.require_seed()
        self.context = context
        self._resolver = IdentityResolver(store, seed.tenant_id, context.identity)
        self._writer = PersistenceWriter(
            store, seed, epic_color=epic_color, issue_keys=issue_keys, clock=clock
        )

    async def import_pass(self, kind: EntityKind, issues: list[ExternalIssue]) -> None:
        """Process every issue of one kind, then advance the stage machine."""
        ctx = self.context
        expected_prior = _STAGE_BEFORE_PASS[kind]
        if ctx.stage is not expected_prior:
            raise ImporterError(
                f"{kind.value} pass requires stage {expected_prior.value}, at {ctx.stage.value}"
            )
        log.info("import.pass.start", kind=kind.value, count=len(issues))
        for issue in issues:
            if ctx.should_stop():
                log.warning("import.run.cancelled", kind=kind.value, at=issue.id)
                break
            outcome = await self._process(kind, issue)
            ctx.record(outcome)
            record_import_outcome(kind.value, outcome.outcome.value)
            _log_outcome(outcome)
        ctx.advance(STAGE_AFTER_PASS[kind])

    async def _process(self, kind: EntityKind, issue: ExternalIssue) -> RecordOutcome:
        try:
            resolution = await self._resolver.resolve(kind, issue.id)
        except SQLAlchemyError as exc:
            return RecordOutcome.skipped(
                kind, issue.id, SkipReason.WRITE_FAILURE, f"lookup failed: {type(exc).__name__}"
            )
        if resolution.existed:
            return RecordOutcome(kind, issue.id, Outcome.reused, resolution.internal_id)

        parent_id: int | None = None
        if kind.parent is not None:
            decision = resolve_parent(issue, kind, self.context.identity[kind.parent])
            if decision.skip:
                return RecordOutcome.skipped(
                    kind,
                    issue.id,
                    SkipReason.UNRESOLVED_PARENT,
                    f"no {kind.parent.value} imported to attach to",
                )
            if decision.source is ParentSource.fallback:
                log.warning(
                    "import.parent.fallback",
                    kind=kind.value,
                    external_id=issue.id,
                    parent_external_id=decision.parent_external_id,
                )
            parent_id = decision.parent_id

        outcome = await self._writer.create(kind, issue, parent_id)
        if outcome.outcome is Outcome.created and outcome.internal_id is not None:
            self._resolver.register(kind, issue.id, outcome.internal_id)
        return outcome


_STAGE_BEFORE_PASS: dict[EntityKind, PipelineStage] = {
    EntityKind.epic: PipelineStage.SEED_LOADED,
    EntityKind.feature: PipelineStage.EPICS_IMPORTED,
    EntityKind.task: PipelineStage.FEATURES_IMPORTED,
}


def _log_outcome(outcome: RecordOutcome) -> None:
    fields = {"kind": outcome.kind.value, "external_id": outcome.external_id}
    if outcome.outcome is Outcome.created:
        log.info(
            "import.record.created",
            internal_id=outcome.internal_id,
            parent_id=outcome.parent_id,
            **fields,
        )
    elif outcome.outcome is Outcome.reused:
        log.info("import.record.reused", internal_id=outcome.internal_id, **fields)
    else:
        log.warning(
            "import.record.skipped",
            reason=outcome.reason.value if outcome.reason else None,
            detail=outcome.detail,
            **fields,
        )


async def run_import(
    lines: Iterable[str],
    *,
    product_name: str,
    user_email: str,
    store: RecordStore | None = None,
    epic_color: str = DEFAULT_EPIC_COLOR,
    issue_keys: bool = True,
    cancel_token: CancelToken | None = None,
    clock: Callable[[], datetime] = _utcnow,
) -> ImportReport:
    """Import beads issues from ``lines`` and return the reconciled report.

    Raises:
        SeedMissingError: product or user seed not found (nothing written)
        InputSourceError: the line source failed while being read
    """
    store = store if store is not None else SqlRecordStore()
    ctx = ImportRunContext(cancel_token=cancel_token or CancelToken())
    bind_contextvars(import_run_id=ctx.run_id)
    try:
        log.info("import.run.start", product=product_name, user=user_email)
        ctx.seed = await load_seed(store, product_name, user_email)
        ctx.advance(PipelineStage.SEED_LOADED)

        try:
            buckets = classify_issues(read_issues(lines, on_malformed=ctx.record_malformed))
        except OSError as exc:
            raise InputSourceError(f"failed reading issue source: {exc}") from exc
        log.info(
            "import.issues.loaded",
            epics=len(buckets[EntityKind.epic]),
            features=len(buckets[EntityKind.feature]),
            tasks=len(buckets[EntityKind.task]),
            malformed=len(ctx.malformed),
        )

        pipeline = ImportPipeline(
            store, ctx, epic_color=epic_color, issue_keys=issue_keys, clock=clock
        )
        # Order is load-bearing: parents must be registered before children
        for kind in EntityKind:
            await pipeline.import_pass(kind, buckets[kind])

        report = await reconcile(store, ctx)
        ctx.advance(PipelineStage.REPORTED)
        ctx.advance(PipelineStage.DONE)
        log.info(
            "import.run.complete",
            cancelled=ctx.cancelled,
            drift=report.has_drift,
            **{f"{k.value}_created": s.created for k, s in report.summaries.items()},
        )
        return report
    finally:
        unbind_contextvars("import_run_id")


__all__ = [
    "DEFAULT_EPIC_COLOR",
    "ImportPipeline",
    "ImporterError",
    "InputSourceError",
    "PersistenceWriter",
    "SeedMissingError",
    "classify_issues",
    "load_seed",
    "run_import",
]
