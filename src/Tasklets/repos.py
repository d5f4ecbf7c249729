# repos.py

from __future__ import annotations

import asyncio
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from Tasklets import models
from Tasklets.schemas import EntityKind

MODEL_BY_KIND: dict[EntityKind, type[models.Epic] | type[models.Feature] | type[models.Task]] = {
    EntityKind.epic: models.Epic,
    EntityKind.feature: models.Feature,
    EntityKind.task: models.Task,
}


async def get_product_by_name(s: AsyncSession, name: str) -> models.Product | None:
    q = await s.execute(
        select(models.Product).where(models.Product.name == name).order_by(models.Product.id)
    )
    return q.scalars().first()


async def get_user_by_email(
    s: AsyncSession, email: str, tenant_id: int | None = None
) -> models.User | None:
    stmt = select(models.User).where(models.User.email == email)
    if tenant_id is not None:
        stmt = stmt.where(models.User.tenant_id == tenant_id)
    q = await s.execute(stmt)
    return q.scalar_one_or_none()


async def get_or_create_tenant(s: AsyncSession, slug: str, name: str) -> models.Tenant:
    q = await s.execute(select(models.Tenant).where(models.Tenant.slug == slug))
    obj = q.scalar_one_or_none()
    if obj:
        return obj
    obj = models.Tenant(slug=slug, name=name)
    s.add(obj)
    await _flush_retry(s)
    return obj


async def get_or_create_product(
    s: AsyncSession, tenant_id: int, name: str, code: str, description: str | None = None
) -> models.Product:
    q = await s.execute(
        select(models.Product).where(
            models.Product.tenant_id == tenant_id,
            models.Product.name == name,
        )
    )
    obj = q.scalar_one_or_none()
    if obj:
        return obj
    obj = models.Product(tenant_id=tenant_id, name=name, code=code, description=description)
    s.add(obj)
    await _flush_retry(s)
    return obj


async def get_or_create_user(
    s: AsyncSession, tenant_id: int, email: str, name: str, password_hash: str | None = None
) -> models.User:
    obj = await get_user_by_email(s, email)
    if obj:
        return obj
    obj = models.User(tenant_id=tenant_id, email=email, name=name, password_hash=password_hash)
    s.add(obj)
    await _flush_retry(s)
    return obj


async def find_id_by_external_id(
    s: AsyncSession, kind: EntityKind, tenant_id: int, external_id: str
) -> int | None:
    model = MODEL_BY_KIND[kind]
    q = await s.execute(
        select(model.id)
        .where(model.tenant_id == tenant_id, model.external_id == external_id)
        .limit(1)
    )
    return q.scalar_one_or_none()


async def insert_record(s: AsyncSession, kind: EntityKind, values: dict[str, Any]) -> int:
    obj = MODEL_BY_KIND[kind](**values)
    s.add(obj)
    await _flush_retry(s)
    return obj.id


async def count_for_tenant(s: AsyncSession, kind: EntityKind, tenant_id: int) -> int:
    model = MODEL_BY_KIND[kind]
    q = await s.execute(
        select(func.count()).select_from(model).where(model.tenant_id == tenant_id)
    )
    return int(q.scalar_one())


async def next_issue_key(
    s: AsyncSession, *, product_id: int, product_code: str, kind: EntityKind
) -> str:
    """Allocate the next per-product, per-type issue key (e.g. ``TSKLTS-E001``).

    The counter row is locked for the rest of the transaction on backends
    that support it; SQLite serializes writers anyway.
    """
    letter = kind.key_letter
    q = await s.execute(
        select(models.ProductSequence)
        .where(
            models.ProductSequence.product_id == product_id,
            models.ProductSequence.issue_type == letter,
        )
        .with_for_update()
    )
    seq = q.scalar_one_or_none()
    if seq is None:
        num = 1
        s.add(models.ProductSequence(product_id=product_id, issue_type=letter, next_num=2))
    else:
        num = seq.next_num
        seq.next_num = num + 1
    await _flush_retry(s)
    return f"{product_code}-{letter}{num:03d}"


async def _flush_retry(s: AsyncSession, attempts: int = 5, delay: float = 0.2) -> None:
    """Retry session.flush() on transient SQLite 'database is locked' errors.

    Exponential backoff: delay * 2^i between attempts.
    """
    for i in range(attempts):
        try:
            await s.flush()
            return
        except OperationalError as e:  # pragma: no cover - timing dependent
            msg = str(e).lower()
            if "database is locked" in msg or "database is busy" in msg:
                if i == attempts - 1:
                    raise
                await asyncio.sleep(delay * (2**i))
                continue
            raise
