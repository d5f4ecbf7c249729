# schemas.py

import enum
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

IssueType = Literal["epic", "feature", "task"]

PARENT_CHILD = "parent-child"


class EntityKind(str, enum.Enum):
    """Internal record kinds, declared in the order they must be imported."""

    epic = "epic"
    feature = "feature"
    task = "task"

    @property
    def parent(self) -> "EntityKind | None":
        return _PARENT_KIND[self]

    @property
    def key_letter(self) -> str:
        # Issue-key type letter: TSKLTS-E001, TSKLTS-F001, TSKLTS-T001
        return self.value[0].upper()


_PARENT_KIND: dict[EntityKind, EntityKind | None] = {
    EntityKind.epic: None,
    EntityKind.feature: EntityKind.epic,
    EntityKind.task: EntityKind.feature,
}


class Dependency(BaseModel):
    """One edge of a beads issue's dependency list."""

    issue_id: str | None = None
    depends_on_id: str
    type: str

    model_config = dict(extra="ignore")


class ExternalIssue(BaseModel):
    """A beads issue as exported to ``.beads/issues.jsonl``.

    Status and priority are kept raw; the vocabulary mapper decides what they
    mean, so a missing status imports as backlog and a bad priority skips one
    record instead of failing the parse.
    """

    id: str = Field(min_length=1)
    title: str
    description: str | None = None
    status: str | None = None
    priority: Any = None
    issue_type: IssueType
    created_at: datetime | None = None
    updated_at: datetime | None = None
    closed_at: datetime | None = None
    dependencies: list[Dependency] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)

    model_config = dict(extra="ignore")

    @field_validator("issue_type", mode="before")
    @classmethod
    def normalize_issue_type(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("status", mode="before")
    @classmethod
    def non_string_status_as_unknown(cls, v):
        return v if isinstance(v, str) else None

    @field_validator("dependencies", "labels", mode="before")
    @classmethod
    def null_as_empty(cls, v):
        return [] if v is None else v

    @field_validator("created_at", "updated_at", "closed_at")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def parent_edges(self) -> list[Dependency]:
        """Parent-child edges in source order; all other edge types are ignored."""
        return [d for d in self.dependencies if d.type == PARENT_CHILD]
