"""
Shared type definitions.

Lifecycle states, the entity kinds of the hierarchy and the records the
store hands back to the command layer.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from lopen_memory.core.errors import ValidationError

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string with second precision."""
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


class State(Enum):
    """Lifecycle state shared by modules, features and tasks."""

    DRAFT = "Draft"
    PLANNING = "Planning"
    BUILDING = "Building"
    COMPLETE = "Complete"
    AMENDING = "Amending"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: "str | State") -> "State":
        """Parse an exact, case-sensitive state name."""
        if isinstance(value, State):
            return value
        for state in cls:
            if state.value == value:
                return state
        names = ", ".join(s.value for s in cls)
        raise ValidationError(f"invalid state '{value}'; must be one of: {names}")


class EntityKind(Enum):
    PROJECT = "project"
    MODULE = "module"
    FEATURE = "feature"
    TASK = "task"
    RESEARCH = "research"

    def __str__(self) -> str:
        return self.value

    @property
    def table(self) -> str:
        return _TABLES[self]

    @property
    def parent(self) -> "EntityKind | None":
        return _PARENTS.get(self)

    @property
    def child(self) -> "EntityKind | None":
        return _CHILDREN.get(self)

    @property
    def parent_column(self) -> str | None:
        """Foreign key column pointing at the owning parent."""
        parent = self.parent
        return f"{parent.value}_id" if parent else None

    @property
    def link_table(self) -> str:
        """Join table associating research records with this kind."""
        if self not in HIERARCHY:
            raise ValueError(f"{self.value} cannot be linked to research")
        return f"research_{self.table}"

    @property
    def link_column(self) -> str:
        return f"{self.value}_id"

    @property
    def has_lifecycle(self) -> bool:
        return self in (EntityKind.MODULE, EntityKind.FEATURE, EntityKind.TASK)


_TABLES = {
    EntityKind.PROJECT: "projects",
    EntityKind.MODULE: "modules",
    EntityKind.FEATURE: "features",
    EntityKind.TASK: "tasks",
    EntityKind.RESEARCH: "research",
}

_PARENTS = {
    EntityKind.MODULE: EntityKind.PROJECT,
    EntityKind.FEATURE: EntityKind.MODULE,
    EntityKind.TASK: EntityKind.FEATURE,
}

_CHILDREN = {parent: child for child, parent in _PARENTS.items()}

# Hierarchy levels in link ordering
HIERARCHY = (EntityKind.PROJECT, EntityKind.MODULE, EntityKind.FEATURE, EntityKind.TASK)


@dataclass
class Project:
    id: int
    name: str
    path: str
    description: str = ""
    completed: bool = False
    updated_at: str = ""

    kind = EntityKind.PROJECT

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Project":
        return cls(
            id=row["id"],
            name=row["name"],
            path=row["path"],
            description=row["description"],
            completed=bool(row["completed"]),
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class WorkItem:
    """A module, feature or task. ``parent_id`` points one level up."""

    kind: EntityKind
    id: int
    parent_id: int
    name: str
    description: str = ""
    details: str = ""
    state: State = State.DRAFT
    last_worked_on: str = ""

    @classmethod
    def from_row(cls, kind: EntityKind, row: dict[str, Any]) -> "WorkItem":
        return cls(
            kind=kind,
            id=row["id"],
            parent_id=row[kind.parent_column],
            name=row["name"],
            description=row["description"],
            details=row["details"],
            state=State(row["state"]),
            last_worked_on=row["last_worked_on"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            self.kind.parent_column: self.parent_id,
            "name": self.name,
            "description": self.description,
            "details": self.details,
            "state": self.state.value,
            "last_worked_on": self.last_worked_on,
        }


@dataclass
class Research:
    id: int
    name: str
    description: str = ""
    content: str = ""
    source: str = ""
    researched_at: str = ""
    created_at: str = ""
    updated_at: str = ""

    kind = EntityKind.RESEARCH

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Research":
        return cls(**{name: row[name] for name in cls.__dataclass_fields__})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Summary:
    """Short listing entry used in show views (children, linked research)."""

    id: int
    name: str
    state: str | None = None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "name": self.name}
        if self.state is not None:
            data["state"] = self.state
        if self.description is not None:
            data["description"] = self.description
        return data


@dataclass
class LinkedEntity:
    """A hierarchy node linked to a research record.

    ``context`` is the ancestor chain ("project > module") used to tell
    same-named nodes apart; empty for projects.
    """

    kind: EntityKind
    id: int
    name: str
    context: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind.value, "id": self.id, "name": self.name, "context": self.context}


@dataclass
class EntityView:
    """Post-read snapshot of one entity with its immediate surroundings."""

    entity: Project | WorkItem | Research
    parent_name: str | None = None
    children: list[Summary] = field(default_factory=list)
    research: list[Summary] = field(default_factory=list)
    links: list[LinkedEntity] = field(default_factory=list)


@dataclass
class TransitionResult:
    """Outcome of a lifecycle transition; ``changed`` is False for a no-op."""

    item: WorkItem
    from_state: State
    to_state: State
    changed: bool


@dataclass
class LinkResult:
    """Outcome of a link/unlink; ``changed`` is False when nothing was written."""

    research: Research
    target_kind: EntityKind
    target_id: int
    target_name: str
    linked: bool
    changed: bool


@dataclass
class RemovalResult:
    """What a removal took with it."""

    kind: EntityKind
    id: int
    name: str
    removed: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"deleted": True, "id": self.id, "removed": self.removed}
