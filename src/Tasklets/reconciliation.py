"""Post-import reconciliation and the run summary.

Counts in the report are folds over the run's ``RecordOutcome`` list. After
the passes, each kind is recounted straight from the store for the run's
tenant; any difference from the distinct ids created or reused is drift.
Drift is logged, never fatal: it usually means rows that did not come from
this export (manual entries, an earlier export with more issues, a
concurrent writer).
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from Tasklets.importer_context import ImportRunContext, MalformedLine, Outcome, RecordOutcome
from Tasklets.metrics import record_drift
from Tasklets.schemas import EntityKind

if TYPE_CHECKING:
    from Tasklets.store import RecordStore

log = structlog.get_logger()


@dataclass(frozen=True)
class KindSummary:
    kind: EntityKind
    created: int = 0
    reused: int = 0
    skipped: int = 0
    skip_reasons: dict[str, int] = field(default_factory=dict)

    @property
    def imported(self) -> int:
        return self.created + self.reused


@dataclass(frozen=True)
class KindReconciliation:
    kind: EntityKind
    expected: int
    actual: int

    @property
    def drift(self) -> bool:
        return self.expected != self.actual


@dataclass
class ImportReport:
    run_id: str
    tenant_id: int
    product_name: str
    summaries: dict[EntityKind, KindSummary]
    malformed: list[MalformedLine]
    reconciliation: list[KindReconciliation]
    cancelled: bool = False
    outcomes: list[RecordOutcome] = field(default_factory=list)

    @property
    def has_drift(self) -> bool:
        return any(r.drift for r in self.reconciliation)

    @property
    def skipped_total(self) -> int:
        return sum(s.skipped for s in self.summaries.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "tenant_id": self.tenant_id,
            "product": self.product_name,
            "cancelled": self.cancelled,
            "kinds": {
                kind.value: {
                    "created": s.created,
                    "reused": s.reused,
                    "skipped": s.skipped,
                    "skip_reasons": dict(s.skip_reasons),
                }
                for kind, s in self.summaries.items()
            },
            "malformed_lines": [
                {"line_no": m.line_no, "reason": m.reason} for m in self.malformed
            ],
            "reconciliation": [
                {
                    "kind": r.kind.value,
                    "expected": r.expected,
                    "actual": r.actual,
                    "drift": r.drift,
                }
                for r in self.reconciliation
            ],
            "drift": self.has_drift,
        }


def summarize(outcomes: list[RecordOutcome]) -> dict[EntityKind, KindSummary]:
    summaries: dict[EntityKind, KindSummary] = {}
    for kind in EntityKind:
        mine = [o for o in outcomes if o.kind == kind]
        by_outcome = Counter(o.outcome for o in mine)
        reasons = Counter(o.reason.value for o in mine if o.reason is not None)
        summaries[kind] = KindSummary(
            kind=kind,
            created=by_outcome[Outcome.created],
            reused=by_outcome[Outcome.reused],
            skipped=by_outcome[Outcome.skipped],
            skip_reasons=dict(reasons),
        )
    return summaries


async def reconcile(store: RecordStore, context: ImportRunContext) -> ImportReport:
    """Recount every kind for the run's tenant and build the final report."""
    seed = context.require_seed()
    summaries = summarize(context.outcomes)
    rows: list[KindReconciliation] = []
    for kind in EntityKind:
        # Distinct ids: an id repeated inside one export is one row
        expected = len(
            {
                o.external_id
                for o in context.outcomes_for(kind)
                if o.outcome is not Outcome.skipped
            }
        )
        actual = await store.count_for_tenant(kind, seed.tenant_id)
        row = KindReconciliation(kind, expected, actual)
        rows.append(row)
        if row.drift:
            record_drift(kind.value)
            log.warning(
                "import.reconcile.drift",
                kind=kind.value,
                expected=row.expected,
                actual=row.actual,
                tenant_id=seed.tenant_id,
            )
    return ImportReport(
        run_id=context.run_id,
        tenant_id=seed.tenant_id,
        product_name=seed.product_name,
        summaries=summaries,
        malformed=list(context.malformed),
        reconciliation=rows,
        cancelled=context.cancelled,
        outcomes=list(context.outcomes),
    )


_LABELS = {EntityKind.epic: "Epics", EntityKind.feature: "Features", EntityKind.task: "Tasks"}


def render_summary(report: ImportReport) -> str:
    lines = [f"Import summary (run {report.run_id}, product {report.product_name})"]
    if report.cancelled:
        lines.append("  CANCELLED: remaining records were not processed")
    for kind, s in report.summaries.items():
        line = (
            f"  {_LABELS[kind]:<9} created={s.created} reused={s.reused} skipped={s.skipped}"
        )
        if s.skip_reasons:
            detail = ", ".join(f"{k}={v}" for k, v in sorted(s.skip_reasons.items()))
            line += f" ({detail})"
        lines.append(line)
    lines.append(f"  Malformed lines: {len(report.malformed)}")
    for m in report.malformed:
        lines.append(f"    line {m.line_no}: {m.reason}")

    lines.append(f"Database verification (tenant {report.tenant_id})")
    for r in report.reconciliation:
        mark = "DRIFT" if r.drift else "ok"
        lines.append(
            f"  {_LABELS[r.kind]:<9} in db={r.actual} imported this run={r.expected} [{mark}]"
        )
    return "\n".join(lines)
