"""Hierarchy integrity - block-or-cascade deletion of projects, modules, features.

A node with direct children is only deleted when the caller authorizes
cascade. The physical delete relies on the store's ON DELETE CASCADE keys to
take descendants and every link row pointing at them; research records
themselves are never touched.
"""

from lopen_memory.core.errors import ConflictHasChildrenError, NotFoundError, ValidationError
from lopen_memory.core.logging import get_logger
from lopen_memory.core.types import HIERARCHY, EntityKind, RemovalResult
from lopen_memory.memory.store import SQLiteStore

logger = get_logger("memory.integrity")


def _ids_under(ancestor: EntityKind, kind: EntityKind) -> str:
    """SQL selecting ids of ``kind`` rows anywhere below one ``ancestor`` row.

    The ancestor id is the single bound parameter.
    """
    if kind.parent is None:
        raise ValueError(f"{kind.value} is not below {ancestor.value}")
    if kind.parent is ancestor:
        return f"SELECT id FROM {kind.table} WHERE {kind.parent_column} = ?"
    return (
        f"SELECT id FROM {kind.table} "
        f"WHERE {kind.parent_column} IN ({_ids_under(ancestor, kind.parent)})"
    )


def _levels_below(kind: EntityKind) -> list[EntityKind]:
    levels = []
    child = kind.child
    while child is not None:
        levels.append(child)
        child = child.child
    return levels


class HierarchyIntegrityManager:
    """Child counting and deletion policy for the hierarchy."""

    def __init__(self, store: SQLiteStore):
        self.store = store

    async def child_count(self, kind: EntityKind, row_id: int) -> int:
        """Number of direct children (0 for tasks)."""
        if kind.child is None:
            return 0
        return await self.store.count_by_parent(kind.child, row_id)

    async def descendant_counts(self, kind: EntityKind, row_id: int) -> dict[str, int]:
        """Rows that deleting this node would take with it, per table."""
        counts: dict[str, int] = {}
        for level in _levels_below(kind):
            counts[level.table] = await self.store.scalar(
                f"SELECT COUNT(*) FROM ({_ids_under(kind, level)})", (row_id,)
            )

        links = await self.store.scalar(
            f"SELECT COUNT(*) FROM {kind.link_table} WHERE {kind.link_column} = ?",
            (row_id,),
        )
        for level in _levels_below(kind):
            links += await self.store.scalar(
                f"SELECT COUNT(*) FROM {level.link_table} "
                f"WHERE {level.link_column} IN ({_ids_under(kind, level)})",
                (row_id,),
            )
        counts["research_links"] = links
        return counts

    async def check_removable(self, kind: EntityKind, row_id: int, cascade: bool) -> int:
        """Raise ConflictHasChildrenError unless the node may be deleted.

        Returns the direct child count.
        """
        count = await self.child_count(kind, row_id)
        if count and not cascade:
            logger.warning(
                f"Refusing to remove {kind.value} {row_id}: {count} {kind.child.value}(s)"
            )
            raise ConflictHasChildrenError(kind.value, count, kind.child.value)
        return count

    async def remove(self, kind: EntityKind, row_id: int, cascade: bool = False) -> RemovalResult:
        """Delete a hierarchy node subject to the cascade policy."""
        if kind not in HIERARCHY:
            raise ValidationError(f"{kind.value} is not a hierarchy level")
        row = await self.store.get_row(kind, row_id)
        if row is None:
            raise NotFoundError(kind.value, str(row_id))

        await self.check_removable(kind, row_id, cascade)
        removed = await self.descendant_counts(kind, row_id)
        await self.store.delete(kind, row_id)

        logger.info(f"Removed {kind.value} {row_id} ({row['name']}): {removed}")
        return RemovalResult(kind=kind, id=row_id, name=row["name"], removed=removed)
