"""Record store boundary used by the importer.

The pipeline only needs seed lookups, lookup-by-external-id, insert and a
per-tenant count. ``SqlRecordStore`` implements them on the SQLAlchemy
session helpers; each call runs in its own ``session_scope`` so every insert
is committed on its own and a failed insert rolls back only itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from Tasklets import repos
from Tasklets.db import session_scope
from Tasklets.schemas import EntityKind


@dataclass(frozen=True)
class ProductRef:
    id: int
    tenant_id: int
    name: str
    code: str


@dataclass(frozen=True)
class UserRef:
    id: int
    tenant_id: int
    email: str
    name: str


@dataclass(frozen=True)
class IssueKeySource:
    """Product whose sequence numbers the new record's issue key."""

    product_id: int
    product_code: str


class RecordStore(Protocol):
    async def find_product(self, name: str) -> ProductRef | None: ...

    async def find_user(self, email: str, tenant_id: int) -> UserRef | None: ...

    async def find_by_external_id(
        self, kind: EntityKind, tenant_id: int, external_id: str
    ) -> int | None: ...

    async def insert(
        self,
        kind: EntityKind,
        values: dict[str, Any],
        *,
        issue_key: IssueKeySource | None = None,
    ) -> int: ...

    async def count_for_tenant(self, kind: EntityKind, tenant_id: int) -> int: ...


class SqlRecordStore:
    async def find_product(self, name: str) -> ProductRef | None:
        async with session_scope() as s:
            product = await repos.get_product_by_name(s, name)
            if product is None:
                return None
            return ProductRef(product.id, product.tenant_id, product.name, product.code)

    async def find_user(self, email: str, tenant_id: int) -> UserRef | None:
        async with session_scope() as s:
            user = await repos.get_user_by_email(s, email, tenant_id)
            if user is None:
                return None
            return UserRef(user.id, user.tenant_id, user.email, user.name)

    async def find_by_external_id(
        self, kind: EntityKind, tenant_id: int, external_id: str
    ) -> int | None:
        async with session_scope() as s:
            return await repos.find_id_by_external_id(s, kind, tenant_id, external_id)

    async def insert(
        self,
        kind: EntityKind,
        values: dict[str, Any],
        *,
        issue_key: IssueKeySource | None = None,
    ) -> int:
        async with session_scope() as s:
            row = dict(values)
            if issue_key is not None:
                row["issue_key"] = await repos.next_issue_key(
                    s,
                    product_id=issue_key.product_id,
                    product_code=issue_key.product_code,
                    kind=kind,
                )
            return await repos.insert_record(s, kind, row)

    async def count_for_tenant(self, kind: EntityKind, tenant_id: int) -> int:
        async with session_scope() as s:
            return await repos.count_for_tenant(s, kind, tenant_id)
