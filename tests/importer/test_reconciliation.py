from Tasklets.importer_context import (
    ImportRunContext,
    MalformedLine,
    Outcome,
    RecordOutcome,
    SeedContext,
    SkipReason,
)
from Tasklets.metrics import get_counter
from Tasklets.reconciliation import reconcile, render_summary, summarize
from Tasklets.schemas import EntityKind


def _ctx() -> ImportRunContext:
    ctx = ImportRunContext(seed=SeedContext(1, 10, "Tasklets", "TSKLTS", 20, "ramesh@systech.com"))
    ctx.record(RecordOutcome(EntityKind.epic, "e1", Outcome.created, 1))
    ctx.record(RecordOutcome(EntityKind.epic, "e2", Outcome.reused, 2))
    ctx.record(RecordOutcome.skipped(EntityKind.feature, "f1", SkipReason.UNRESOLVED_PARENT))
    ctx.record(RecordOutcome.skipped(EntityKind.task, "t1", SkipReason.UNRESOLVED_PRIORITY))
    ctx.record(RecordOutcome.skipped(EntityKind.task, "t2", SkipReason.UNRESOLVED_PRIORITY))
    ctx.record_malformed(MalformedLine(7, "invalid json: unexpected character", "{"))
    return ctx


def test_summarize_folds_outcomes():
    summaries = summarize(_ctx().outcomes)
    epic = summaries[EntityKind.epic]
    assert (epic.created, epic.reused, epic.skipped, epic.imported) == (1, 1, 0, 2)
    assert summaries[EntityKind.task].skip_reasons == {"unresolved_priority": 2}
    assert list(summaries) == [EntityKind.epic, EntityKind.feature, EntityKind.task]


async def test_reconcile_matches_counts(fake_store):
    for n, external_id in enumerate(("e1", "e2"), start=1):
        fake_store.rows[EntityKind.epic].append(
            {"id": n, "tenant_id": 1, "external_id": external_id}
        )
    report = await reconcile(fake_store, _ctx())
    assert not report.has_drift
    assert report.skipped_total == 3
    assert [(r.kind, r.expected, r.actual) for r in report.reconciliation] == [
        (EntityKind.epic, 2, 2),
        (EntityKind.feature, 0, 0),
        (EntityKind.task, 0, 0),
    ]


async def test_reconcile_flags_drift_without_failing(fake_store):
    fake_store.extra_counts[EntityKind.feature] = 4
    report = await reconcile(fake_store, _ctx())
    assert report.has_drift
    drifted = [r.kind for r in report.reconciliation if r.drift]
    assert EntityKind.feature in drifted
    assert get_counter("importer.reconcile.drift.feature") == 1


async def test_report_renders_text_and_dict(fake_store):
    fake_store.extra_counts[EntityKind.task] = 1
    report = await reconcile(fake_store, _ctx())

    text = render_summary(report)
    assert "Import summary" in text
    assert "Epics     created=1 reused=1 skipped=0" in text
    assert "unresolved_priority=2" in text
    assert "Malformed lines: 1" in text
    assert "line 7: invalid json" in text
    assert "Database verification (tenant 1)" in text
    assert "DRIFT" in text

    data = report.to_dict()
    assert data["kinds"]["task"]["skipped"] == 2
    assert data["malformed_lines"] == [
        {"line_no": 7, "reason": "invalid json: unexpected character"}
    ]
    assert data["drift"] is True
    assert data["cancelled"] is False
