"""Research link manager - weak many-to-many associations.

Linking an existing pair and unlinking a missing pair are both silent
no-ops. Deleting a link never deletes either side.
"""

from lopen_memory.core.errors import ValidationError
from lopen_memory.core.logging import get_logger
from lopen_memory.core.types import HIERARCHY, EntityKind, LinkedEntity, Summary
from lopen_memory.memory.store import SQLiteStore

logger = get_logger("memory.links")

# Linked rows of each kind with their ancestor names, bound to one research id
_LINKED_SQL = {
    EntityKind.PROJECT: """
        SELECT p.id AS id, p.name AS name, '' AS context
        FROM projects p
        JOIN research_projects rp ON rp.project_id = p.id
        WHERE rp.research_id = ?
        ORDER BY p.id
    """,
    EntityKind.MODULE: """
        SELECT m.id AS id, m.name AS name, p.name AS context
        FROM modules m
        JOIN research_modules rm ON rm.module_id = m.id
        JOIN projects p ON p.id = m.project_id
        WHERE rm.research_id = ?
        ORDER BY m.id
    """,
    EntityKind.FEATURE: """
        SELECT f.id AS id, f.name AS name, p.name || ' > ' || m.name AS context
        FROM features f
        JOIN research_features rf ON rf.feature_id = f.id
        JOIN modules m ON m.id = f.module_id
        JOIN projects p ON p.id = m.project_id
        WHERE rf.research_id = ?
        ORDER BY f.id
    """,
    EntityKind.TASK: """
        SELECT t.id AS id, t.name AS name,
               p.name || ' > ' || m.name || ' > ' || f.name AS context
        FROM tasks t
        JOIN research_tasks rt ON rt.task_id = t.id
        JOIN features f ON f.id = t.feature_id
        JOIN modules m ON m.id = f.module_id
        JOIN projects p ON p.id = m.project_id
        WHERE rt.research_id = ?
        ORDER BY t.id
    """,
}


def select_link_target(
    project: str | None = None,
    module: str | None = None,
    feature: str | None = None,
    task: str | None = None,
) -> tuple[EntityKind, str]:
    """Pick the single target flag a link/unlink command was given.

    Runs before either side is resolved.
    """
    given = [
        (kind, token)
        for kind, token in zip(HIERARCHY, (project, module, feature, task))
        if token is not None
    ]
    if len(given) != 1:
        raise ValidationError(
            "exactly one of --project, --module, --feature, --task must be provided"
        )
    return given[0]


class ResearchLinkManager:
    """Maintains research <-> project/module/feature/task associations."""

    def __init__(self, store: SQLiteStore):
        self.store = store

    @staticmethod
    def _check_target(target: EntityKind) -> None:
        if target not in HIERARCHY:
            raise ValidationError(f"research cannot be linked to {target.value}")

    async def link(self, research_id: int, target: EntityKind, target_id: int) -> bool:
        """Associate research with a target; returns False if already linked."""
        self._check_target(target)
        created = await self.store.insert_link(target, research_id, target_id)
        if created:
            logger.info(f"Linked research {research_id} -> {target.value} {target_id}")
        else:
            logger.debug(f"Research {research_id} already linked to {target.value} {target_id}")
        return created

    async def unlink(self, research_id: int, target: EntityKind, target_id: int) -> bool:
        """Drop an association; returns False if there was none."""
        self._check_target(target)
        removed = await self.store.delete_link(target, research_id, target_id)
        if removed:
            logger.info(f"Unlinked research {research_id} from {target.value} {target_id}")
        else:
            logger.debug(f"Research {research_id} was not linked to {target.value} {target_id}")
        return removed

    async def is_linked(self, research_id: int, target: EntityKind, target_id: int) -> bool:
        self._check_target(target)
        return await self.store.link_exists(target, research_id, target_id)

    async def links_for(self, research_id: int) -> list[LinkedEntity]:
        """Every hierarchy node linked to a research record.

        Ordered by kind (project, module, feature, task) then id.
        """
        links: list[LinkedEntity] = []
        for kind in HIERARCHY:
            rows = await self.store.fetch_all(_LINKED_SQL[kind], (research_id,))
            links.extend(
                LinkedEntity(kind=kind, id=row["id"], name=row["name"], context=row["context"])
                for row in rows
            )
        return links

    async def research_for(self, target: EntityKind, target_id: int) -> list[Summary]:
        """Research records linked to one hierarchy node, ordered by id."""
        self._check_target(target)
        rows = await self.store.fetch_all(
            f"SELECT r.id, r.name, r.description FROM research r "
            f"JOIN {target.link_table} l ON l.research_id = r.id "
            f"WHERE l.{target.link_column} = ? ORDER BY r.id",
            (target_id,),
        )
        return [Summary(id=row["id"], name=row["name"], description=row["description"]) for row in rows]
