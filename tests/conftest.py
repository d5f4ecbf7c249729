# tests/conftest.py

import os
from collections.abc import AsyncIterator, Callable
from typing import Any

import orjson
import pytest

# Point the app at a process-local in-memory DB before any Tasklets module
# creates an engine. StaticPool keeps one shared connection so the schema
# survives across session_scope() calls.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("TASKLETS_SQLITE_STATIC_POOL", "1")

from Tasklets import repos  # noqa: E402
from Tasklets.db import configure_engine, create_schema, dispose_engine, session_scope  # noqa: E402
from Tasklets.metrics import reset_counters  # noqa: E402
from Tasklets.schemas import EntityKind  # noqa: E402
from Tasklets.store import IssueKeySource, ProductRef, UserRef  # noqa: E402

TEST_PRODUCT = "Tasklets"
TEST_PRODUCT_CODE = "TSKLTS"
TEST_USER = "ramesh@systech.com"


@pytest.fixture(autouse=True)
def _reset_metrics() -> None:
    reset_counters()


@pytest.fixture
async def db() -> AsyncIterator[None]:
    """Fresh in-memory schema per test; every engine gets its own database."""
    await configure_engine("sqlite+aiosqlite:///:memory:")
    await create_schema()
    try:
        yield None
    finally:
        await dispose_engine()


@pytest.fixture
async def seeded(db) -> dict[str, int]:
    """Tenant, product and user the importer attaches records to."""
    async with session_scope() as s:
        tenant = await repos.get_or_create_tenant(s, "systech", "Systech-erp.ai")
        product = await repos.get_or_create_product(s, tenant.id, TEST_PRODUCT, TEST_PRODUCT_CODE)
        user = await repos.get_or_create_user(s, tenant.id, TEST_USER, "Ramesh")
        return {"tenant_id": tenant.id, "product_id": product.id, "user_id": user.id}


def _issue(
    issue_id: str,
    issue_type: str = "task",
    *,
    parent: str | None = None,
    **fields: Any,
) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": issue_id,
        "title": f"Issue {issue_id}",
        "description": f"Body of {issue_id}",
        "status": "open",
        "priority": 2,
        "issue_type": issue_type,
        "created_at": "2025-01-10T09:00:00Z",
        "updated_at": "2025-01-11T09:00:00Z",
        "labels": [],
        "dependencies": [],
    }
    if parent is not None:
        data["dependencies"] = [
            {"issue_id": issue_id, "depends_on_id": parent, "type": "parent-child"}
        ]
    data.update(fields)
    return data


@pytest.fixture
def issue() -> Callable[..., dict[str, Any]]:
    """Build a beads issue dict: ``issue("bd-1", "feature", parent="bd-0")``."""
    return _issue


@pytest.fixture
def jsonl() -> Callable[..., list[str]]:
    """Render issue dicts (or raw strings) as JSONL lines."""

    def _render(*items: dict[str, Any] | str) -> list[str]:
        return [
            item if isinstance(item, str) else orjson.dumps(item).decode() + "\n"
            for item in items
        ]

    return _render


class FakeStore:
    """Dict-backed RecordStore for pipeline tests that do not need SQL."""

    def __init__(self, *, tenant_id: int = 1, with_seed: bool = True):
        self.tenant_id = tenant_id
        self.products: dict[str, ProductRef] = {}
        self.users: dict[str, UserRef] = {}
        if with_seed:
            self.products[TEST_PRODUCT] = ProductRef(10, tenant_id, TEST_PRODUCT, TEST_PRODUCT_CODE)
            self.users[TEST_USER] = UserRef(20, tenant_id, TEST_USER, "Ramesh")
        self.rows: dict[EntityKind, list[dict[str, Any]]] = {k: [] for k in EntityKind}
        self.extra_counts: dict[EntityKind, int] = {k: 0 for k in EntityKind}
        self.inserts = 0
        self.on_insert: Callable[[EntityKind, dict[str, Any]], None] | None = None

    async def find_product(self, name: str) -> ProductRef | None:
        return self.products.get(name)

    async def find_user(self, email: str, tenant_id: int) -> UserRef | None:
        user = self.users.get(email)
        if user is None or user.tenant_id != tenant_id:
            return None
        return user

    async def find_by_external_id(
        self, kind: EntityKind, tenant_id: int, external_id: str
    ) -> int | None:
        for row in self.rows[kind]:
            if row["tenant_id"] == tenant_id and row["external_id"] == external_id:
                return row["id"]
        return None

    async def insert(
        self,
        kind: EntityKind,
        values: dict[str, Any],
        *,
        issue_key: IssueKeySource | None = None,
    ) -> int:
        if self.on_insert is not None:
            self.on_insert(kind, values)
        self.inserts += 1
        row = dict(values, id=self.inserts)
        if issue_key is not None:
            n = sum(1 for r in self.rows[kind] if r.get("issue_key")) + 1
            row["issue_key"] = f"{issue_key.product_code}-{kind.key_letter}{n:03d}"
        self.rows[kind].append(row)
        return row["id"]

    async def count_for_tenant(self, kind: EntityKind, tenant_id: int) -> int:
        mine = [r for r in self.rows[kind] if r["tenant_id"] == tenant_id]
        return len(mine) + self.extra_counts[kind]


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def fake_store_factory() -> Callable[..., FakeStore]:
    return FakeStore
