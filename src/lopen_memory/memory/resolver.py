"""Entity resolver - turns a user token into exactly one row id.

A token made only of ASCII digits that fits a SQLite integer is a direct
id and is looked up without any scope check. Anything else is matched by
exact, case-sensitive name equality, filtered by the parent id when one
is given.
"""

from lopen_memory.core.errors import AmbiguousError, NotFoundError
from lopen_memory.core.logging import get_logger
from lopen_memory.core.types import EntityKind
from lopen_memory.memory.store import SQLiteStore

logger = get_logger("memory.resolver")

# Largest value a SQLite INTEGER column holds
MAX_ID = 2**63 - 1


def is_id(token: str) -> bool:
    """True when the token reads as an id SQLite can hold; larger digit strings are names."""
    return token.isascii() and token.isdigit() and int(token) <= MAX_ID


class EntityResolver:
    """Resolves names or ids for every entity kind against one store."""

    def __init__(self, store: SQLiteStore):
        self.store = store

    async def resolve(
        self,
        kind: EntityKind,
        token: str,
        scope_id: int | None = None,
    ) -> int:
        """Resolve ``token`` to a ``kind`` row id.

        Raises:
            NotFoundError: no row matches
            AmbiguousError: the name exists under several parents and no
                scope was given
        """
        token = str(token)
        if is_id(token):
            row_id = int(token)
            if not await self.store.exists(kind, row_id):
                raise NotFoundError(kind.value, token)
            logger.debug(f"Resolved {kind.value} id {row_id}")
            return row_id

        scope = scope_id if kind.parent is not None else None
        ids = await self.store.find_ids(kind, token, scope)
        if not ids:
            raise NotFoundError(kind.value, token)
        if len(ids) > 1:
            raise AmbiguousError(kind.value, token, kind.parent.value)
        logger.debug(f"Resolved {kind.value} '{token}' -> {ids[0]}")
        return ids[0]

    async def project(self, token: str) -> int:
        return await self.resolve(EntityKind.PROJECT, token)

    async def module(self, token: str, project: str | None = None) -> int:
        """Resolve a module, narrowing by the project token when given."""
        scope = await self.project(project) if project is not None else None
        return await self.resolve(EntityKind.MODULE, token, scope)

    async def feature(
        self,
        token: str,
        module: str | None = None,
        project: str | None = None,
    ) -> int:
        """Resolve a feature; ``project`` only narrows the ``module`` lookup."""
        scope = await self.module(module, project) if module is not None else None
        return await self.resolve(EntityKind.FEATURE, token, scope)

    async def task(
        self,
        token: str,
        feature: str | None = None,
        module: str | None = None,
    ) -> int:
        """Resolve a task; ``module`` only narrows the ``feature`` lookup."""
        scope = await self.feature(feature, module) if feature is not None else None
        return await self.resolve(EntityKind.TASK, token, scope)

    async def research(self, token: str) -> int:
        return await self.resolve(EntityKind.RESEARCH, token)
