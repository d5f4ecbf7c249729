"""External-id to internal-id resolution for one import run."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING

from Tasklets.schemas import EntityKind

if TYPE_CHECKING:
    from Tasklets.store import RecordStore


class IdentityMap:
    """Insertion-ordered ``external_id -> internal_id`` map for one kind.

    Order is the order records were registered, which follows input order
    within a pass; ``first()`` is therefore reproducible across runs and
    storage backends.
    """

    def __init__(self, kind: EntityKind):
        self.kind = kind
        self._ids: dict[str, int] = {}

    def register(self, external_id: str, internal_id: int) -> None:
        self._ids.setdefault(external_id, internal_id)

    def get(self, external_id: str) -> int | None:
        return self._ids.get(external_id)

    def first(self) -> tuple[str, int] | None:
        for external_id, internal_id in self._ids.items():
            return external_id, internal_id
        return None

    def __contains__(self, external_id: object) -> bool:
        return external_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def __repr__(self) -> str:
        return f"IdentityMap({self.kind.value}, {len(self._ids)} ids)"


@dataclass(frozen=True)
class Resolution:
    internal_id: int | None
    existed: bool


class IdentityResolver:
    """Looks up ``(tenant, kind, external_id)`` and tracks what it finds.

    A miss returns ``Resolution(None, False)``; the caller creates the record
    and then calls ``register`` so later passes can see it.
    """

    def __init__(
        self,
        store: RecordStore,
        tenant_id: int,
        maps: dict[EntityKind, IdentityMap],
    ):
        self._store = store
        self._tenant_id = tenant_id
        self._maps = maps

    async def resolve(self, kind: EntityKind, external_id: str) -> Resolution:
        # Repeated ids inside one export resolve without another round trip
        known = self._maps[kind].get(external_id)
        if known is not None:
            return Resolution(known, True)
        internal_id = await self._store.find_by_external_id(kind, self._tenant_id, external_id)
        if internal_id is None:
            return Resolution(None, False)
        self._maps[kind].register(external_id, internal_id)
        return Resolution(internal_id, True)

    def register(self, kind: EntityKind, external_id: str, internal_id: int) -> None:
        self._maps[kind].register(external_id, internal_id)
