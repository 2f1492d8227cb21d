"""Hierarchy manager - command operations for projects, modules, features and tasks.

Every operation takes already-resolved row ids, runs inside one store
transaction and returns the post-mutation snapshot.
"""

from typing import Any

from lopen_memory.core.errors import DuplicateNameError, NotFoundError, ValidationError
from lopen_memory.core.logging import get_logger
from lopen_memory.core.types import (
    HIERARCHY,
    EntityKind,
    EntityView,
    Project,
    RemovalResult,
    State,
    Summary,
    TransitionResult,
    WorkItem,
    utc_now,
)
from lopen_memory.memory.integrity import HierarchyIntegrityManager
from lopen_memory.memory.lifecycle import validate_transition
from lopen_memory.memory.links import ResearchLinkManager
from lopen_memory.memory.store import SQLiteStore

logger = get_logger("work.manager")

Entity = Project | WorkItem


def clean_name(name: str) -> str:
    """Trim a slug and reject it if nothing is left."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("name must not be empty")
    return name


def touch_column(kind: EntityKind) -> str:
    """Timestamp column refreshed by every mutation of ``kind``."""
    if kind in (EntityKind.PROJECT, EntityKind.RESEARCH):
        return "updated_at"
    return "last_worked_on"


class HierarchyManager:
    """Manages the Project -> Module -> Feature -> Task tree."""

    def __init__(self, store: SQLiteStore):
        self.store = store
        self.integrity = HierarchyIntegrityManager(store)
        self.links = ResearchLinkManager(store)

    # Loading

    async def get(self, kind: EntityKind, row_id: int) -> Entity:
        """Load one hierarchy row as a record."""
        if kind not in HIERARCHY:
            raise ValidationError(f"{kind.value} is not a hierarchy level")
        row = await self.store.get_row(kind, row_id)
        if row is None:
            raise NotFoundError(kind.value, str(row_id))
        if kind is EntityKind.PROJECT:
            return Project.from_row(row)
        return WorkItem.from_row(kind, row)

    async def _parent_name(self, kind: EntityKind, parent_id: int) -> str:
        row = await self.store.get_row(kind.parent, parent_id)
        return row["name"] if row else ""

    async def _ensure_unique(
        self,
        kind: EntityKind,
        name: str,
        parent_id: int | None,
        exclude_id: int | None = None,
    ) -> None:
        ids = await self.store.find_ids(kind, name, parent_id)
        if any(row_id != exclude_id for row_id in ids):
            scope = None
            if parent_id is not None:
                scope = f"{kind.parent.value} {await self._parent_name(kind, parent_id)}"
            raise DuplicateNameError(kind.value, name, scope)

    async def _update(self, kind: EntityKind, row_id: int, values: dict[str, Any]) -> Entity:
        """Apply column changes plus the timestamp refresh, return the new snapshot."""
        values = {**values, touch_column(kind): utc_now()}
        if not await self.store.update(kind, row_id, values):
            raise NotFoundError(kind.value, str(row_id))
        logger.info(f"Updated {kind.value} {row_id}: {', '.join(values)}")
        return await self.get(kind, row_id)

    # Projects

    async def add_project(self, name: str, path: str, description: str = "") -> Project:
        name = clean_name(name)
        async with self.store.transaction():
            await self._ensure_unique(EntityKind.PROJECT, name, None)
            project_id = await self.store.insert(
                EntityKind.PROJECT,
                {"name": name, "path": path, "description": description or "", "updated_at": utc_now()},
            )
            logger.info(f"Added project {project_id}: {name}")
            return await self.get(EntityKind.PROJECT, project_id)

    async def list_projects(self, completed: bool | None = None) -> list[Project]:
        """All projects, or only completed / only incomplete ones."""
        where = None if completed is None else {"completed": int(completed)}
        rows = await self.store.list_rows(EntityKind.PROJECT, where)
        return [Project.from_row(row) for row in rows]

    async def set_path(self, project_id: int, path: str) -> Project:
        async with self.store.transaction():
            return await self._update(EntityKind.PROJECT, project_id, {"path": path})

    async def set_completed(self, project_id: int, completed: bool) -> Project:
        """Complete or reopen a project. Independent of the lifecycle states."""
        async with self.store.transaction():
            return await self._update(EntityKind.PROJECT, project_id, {"completed": int(completed)})

    # Modules, features, tasks

    async def add_item(
        self,
        kind: EntityKind,
        parent_id: int,
        name: str,
        description: str = "",
    ) -> WorkItem:
        if not kind.has_lifecycle:
            raise ValidationError(f"{kind.value} is not a module, feature or task")
        name = clean_name(name)
        async with self.store.transaction():
            if not await self.store.exists(kind.parent, parent_id):
                raise NotFoundError(kind.parent.value, str(parent_id))
            await self._ensure_unique(kind, name, parent_id)
            item_id = await self.store.insert(
                kind,
                {
                    kind.parent_column: parent_id,
                    "name": name,
                    "description": description or "",
                    "last_worked_on": utc_now(),
                },
            )
            logger.info(f"Added {kind.value} {item_id}: {name}")
            return await self.get(kind, item_id)

    async def list_items(
        self,
        kind: EntityKind,
        parent_id: int,
        state: State | str | None = None,
    ) -> list[WorkItem]:
        """Children of one parent, optionally only those in ``state``."""
        where: dict[str, Any] = {kind.parent_column: parent_id}
        if state is not None:
            where["state"] = State.parse(state).value
        rows = await self.store.list_rows(kind, where)
        return [WorkItem.from_row(kind, row) for row in rows]

    async def set_details(self, kind: EntityKind, item_id: int, details: str) -> WorkItem:
        """Replace working notes entirely; there is no append mode."""
        if not kind.has_lifecycle:
            raise ValidationError(f"{kind.value} has no details")
        async with self.store.transaction():
            return await self._update(kind, item_id, {"details": details})

    async def transition(
        self,
        kind: EntityKind,
        item_id: int,
        target: State | str,
    ) -> TransitionResult:
        """Move an item along the lifecycle.

        Asking for the current state validates but writes nothing, including
        the timestamp; the result then has ``changed=False``.
        """
        target = State.parse(target)
        async with self.store.transaction():
            item = await self.get(kind, item_id)
            if not kind.has_lifecycle:
                raise ValidationError(f"{kind.value} has no lifecycle state")
            if not validate_transition(item.state, target, kind.value, item.name):
                logger.debug(f"{kind.value} {item.name} already {target}")
                return TransitionResult(item=item, from_state=item.state, to_state=target, changed=False)
            updated = await self._update(kind, item_id, {"state": target.value})
            logger.info(f"{kind.value} {item.name}: {item.state} -> {target}")
            return TransitionResult(item=updated, from_state=item.state, to_state=target, changed=True)

    # Shared by every level

    async def rename(self, kind: EntityKind, row_id: int, new_name: str) -> tuple[str, Entity]:
        """Rename in place; returns the old name and the renamed record."""
        new_name = clean_name(new_name)
        async with self.store.transaction():
            current = await self.get(kind, row_id)
            parent_id = getattr(current, "parent_id", None)
            await self._ensure_unique(kind, new_name, parent_id, exclude_id=row_id)
            return current.name, await self._update(kind, row_id, {"name": new_name})

    async def set_description(self, kind: EntityKind, row_id: int, description: str) -> Entity:
        async with self.store.transaction():
            return await self._update(kind, row_id, {"description": description})

    async def show(self, kind: EntityKind, row_id: int) -> EntityView:
        """Entity with its parent's name, its children and linked research."""
        async with self.store.transaction():
            entity = await self.get(kind, row_id)
            parent_name = None
            if kind.parent is not None:
                parent_name = await self._parent_name(kind, entity.parent_id)

            children: list[Summary] = []
            if kind.child is not None:
                rows = await self.store.list_rows(kind.child, {kind.child.parent_column: row_id})
                children = [Summary(id=r["id"], name=r["name"], state=r["state"]) for r in rows]

            research = await self.links.research_for(kind, row_id)
            return EntityView(
                entity=entity,
                parent_name=parent_name,
                children=children,
                research=research,
            )

    async def remove(self, kind: EntityKind, row_id: int, cascade: bool = False) -> RemovalResult:
        """Delete a node; refused while children exist unless ``cascade``."""
        async with self.store.transaction():
            return await self.integrity.remove(kind, row_id, cascade)
