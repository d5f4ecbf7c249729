"""Pipeline behavior exercised against the in-memory FakeStore."""

from dataclasses import replace

import pytest

from Tasklets.importer import ImportPipeline, PersistenceWriter, classify_issues, run_import
from Tasklets.importer_context import (
    CancelToken,
    ImporterError,
    ImportRunContext,
    Outcome,
    PipelineStage,
    SeedContext,
    SeedMissingError,
)
from Tasklets.ingest import read_issues
from Tasklets.metrics import get_counter
from Tasklets.models import ItemStatus
from Tasklets.schemas import EntityKind, ExternalIssue

SEED = SeedContext(
    tenant_id=1,
    product_id=10,
    product_name="Tasklets",
    product_code="TSKLTS",
    user_id=20,
    user_email="ramesh@systech.com",
)


async def _run(store, lines, **kw):
    return await run_import(
        lines, product_name="Tasklets", user_email="ramesh@systech.com", store=store, **kw
    )


def test_classify_keeps_input_order(issue, jsonl):
    buckets = classify_issues(
        read_issues(
            jsonl(issue("t1"), issue("e1", "epic"), issue("t2"), issue("f1", "feature"))
        )
    )
    assert [i.id for i in buckets[EntityKind.task]] == ["t1", "t2"]
    assert [i.id for i in buckets[EntityKind.epic]] == ["e1"]
    assert [i.id for i in buckets[EntityKind.feature]] == ["f1"]


def test_writer_builds_kind_specific_values(issue):
    writer = PersistenceWriter(object(), SEED, epic_color="#000000")
    epic = ExternalIssue.model_validate(issue("e1", "epic", status="cancelled", priority="P4"))
    values = writer.build_values(EntityKind.epic, epic, None)
    assert values["status"] is ItemStatus.cancelled
    assert values["priority"] == 4
    assert values["closed_at"] is None
    assert values["color"] == "#000000"
    assert values["progress"] == 0
    assert values["owner_id"] == values["created_by"] == SEED.user_id

    feature = ExternalIssue.model_validate(issue("f1", "feature", description=None))
    values = writer.build_values(EntityKind.feature, feature, 5)
    assert values["epic_id"] == 5
    assert values["description"] == ""
    assert "product_id" not in values

    with pytest.raises(ImporterError):
        writer.build_values(EntityKind.feature, feature, None)


async def test_cancellation_stops_between_records(fake_store, issue, jsonl):
    token = CancelToken()
    fake_store.on_insert = lambda kind, values: token.cancel()
    report = await _run(
        fake_store,
        jsonl(issue("e1", "epic"), issue("e2", "epic"), issue("f1", "feature"), issue("t1")),
        cancel_token=token,
    )
    assert report.cancelled
    assert fake_store.inserts == 1
    assert report.summaries[EntityKind.epic].created == 1
    assert report.summaries[EntityKind.feature].created == 0
    # What was written is still reconciled
    assert not report.has_drift


async def test_seed_missing_before_any_write(fake_store_factory, issue, jsonl):
    store = fake_store_factory(with_seed=False)
    with pytest.raises(SeedMissingError):
        await _run(store, jsonl(issue("e1", "epic")))
    assert store.inserts == 0


async def test_seed_user_must_share_the_product_tenant(fake_store, issue, jsonl):
    user = fake_store.users["ramesh@systech.com"]
    fake_store.users[user.email] = replace(user, tenant_id=99)
    with pytest.raises(SeedMissingError):
        await _run(fake_store, jsonl(issue("e1", "epic")))
    assert fake_store.inserts == 0


async def test_pass_out_of_order_is_rejected(fake_store, issue):
    ctx = ImportRunContext(seed=SEED)
    ctx.advance(PipelineStage.SEED_LOADED)
    pipeline = ImportPipeline(fake_store, ctx)
    with pytest.raises(ImporterError):
        await pipeline.import_pass(
            EntityKind.feature, [ExternalIssue.model_validate(issue("f1", "feature"))]
        )
    assert fake_store.inserts == 0


async def test_outcome_metrics_recorded(fake_store, issue, jsonl):
    await _run(
        fake_store,
        jsonl(
            issue("e1", "epic"),
            issue("f1", "feature"),
            issue("f2", "feature", priority="bad"),
        ),
    )
    assert get_counter("importer.record.created.epic") == 1
    assert get_counter("importer.record.created.feature") == 1
    assert get_counter("importer.record.skipped.feature") == 1


async def test_parent_ids_flow_from_created_records(fake_store, issue, jsonl):
    report = await _run(
        fake_store,
        jsonl(issue("e1", "epic"), issue("f1", "feature", parent="e1"), issue("t1", parent="f1")),
    )
    by_id = {o.external_id: o for o in report.outcomes}
    assert by_id["f1"].parent_id == by_id["e1"].internal_id
    assert by_id["t1"].parent_id == by_id["f1"].internal_id
    assert all(o.outcome is Outcome.created for o in report.outcomes)
    assert fake_store.rows[EntityKind.task][0]["feature_id"] == by_id["f1"].internal_id
