"""Research manager - the cross-cutting knowledge store."""

from datetime import datetime, timedelta, timezone
from typing import Any

from lopen_memory.core.errors import DuplicateNameError, NotFoundError, ValidationError
from lopen_memory.core.logging import get_logger
from lopen_memory.core.types import (
    HIERARCHY,
    TIMESTAMP_FORMAT,
    EntityKind,
    EntityView,
    LinkedEntity,
    LinkResult,
    RemovalResult,
    Research,
    utc_now,
)
from lopen_memory.memory.links import ResearchLinkManager
from lopen_memory.memory.store import SQLiteStore
from lopen_memory.work.manager import clean_name

logger = get_logger("work.research")

_KIND = EntityKind.RESEARCH
_SEARCH_COLUMNS = ("name", "description", "content", "source")
EARLIEST_TIMESTAMP = "0001-01-01T00:00:00Z"


def parse_researched_at(value: str) -> str:
    """Normalize a researched-at value to ``YYYY-MM-DDTHH:MM:SSZ``.

    Accepts a bare date (midnight UTC) or a full UTC timestamp.
    """
    value = (value or "").strip()
    for fmt in ("%Y-%m-%d", TIMESTAMP_FORMAT):
        try:
            parsed = datetime.strptime(value, fmt)
        except ValueError:
            continue
        if len(value) in (10, 20):
            return parsed.strftime(TIMESTAMP_FORMAT)
    raise ValidationError(
        f"invalid date format '{value}'; use YYYY-MM-DD or YYYY-MM-DDTHH:MM:SSZ"
    )


def stale_cutoff(days: int, now: datetime | None = None) -> str:
    """Timestamp ``days`` before now; older researched_at values are stale."""
    if days < 0:
        raise ValidationError("stale days must not be negative")
    now = now or datetime.now(timezone.utc)
    try:
        cutoff = now - timedelta(days=days)
    except OverflowError:
        # Before year 1 nothing can be older
        return EARLIEST_TIMESTAMP
    return cutoff.strftime(TIMESTAMP_FORMAT)


def _like_pattern(term: str) -> str:
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class ResearchManager:
    """Research records and their links to the hierarchy."""

    def __init__(self, store: SQLiteStore):
        self.store = store
        self.links = ResearchLinkManager(store)

    async def get(self, research_id: int) -> Research:
        row = await self.store.get_row(_KIND, research_id)
        if row is None:
            raise NotFoundError(_KIND.value, str(research_id))
        return Research.from_row(row)

    async def _ensure_unique(self, name: str, exclude_id: int | None = None) -> None:
        ids = await self.store.find_ids(_KIND, name)
        if any(row_id != exclude_id for row_id in ids):
            raise DuplicateNameError(_KIND.value, name)

    async def _update(self, research_id: int, values: dict[str, Any]) -> Research:
        values = {**values, "updated_at": utc_now()}
        if not await self.store.update(_KIND, research_id, values):
            raise NotFoundError(_KIND.value, str(research_id))
        logger.info(f"Updated research {research_id}: {', '.join(values)}")
        return await self.get(research_id)

    async def add(self, name: str, description: str = "") -> Research:
        name = clean_name(name)
        async with self.store.transaction():
            await self._ensure_unique(name)
            now = utc_now()
            research_id = await self.store.insert(
                _KIND,
                {
                    "name": name,
                    "description": description or "",
                    "researched_at": now,
                    "created_at": now,
                    "updated_at": now,
                },
            )
            logger.info(f"Added research {research_id}: {name}")
            return await self.get(research_id)

    async def list_research(self, stale_days: int | None = None) -> list[Research]:
        """All research, or only records researched more than ``stale_days`` ago."""
        if stale_days is None:
            rows = await self.store.list_rows(_KIND)
        else:
            rows = await self.store.fetch_all(
                "SELECT * FROM research WHERE researched_at < ? ORDER BY id",
                (stale_cutoff(stale_days),),
            )
        return [Research.from_row(row) for row in rows]

    async def search(self, term: str, stale_days: int | None = None) -> list[Research]:
        """Case-insensitive substring match over name, description, content and source."""
        pattern = _like_pattern(term)
        clauses = " OR ".join(f"LOWER({column}) LIKE ? ESCAPE '\\'" for column in _SEARCH_COLUMNS)
        sql = f"SELECT * FROM research WHERE ({clauses})"
        params: list[Any] = [pattern] * len(_SEARCH_COLUMNS)
        if stale_days is not None:
            sql += " AND researched_at < ?"
            params.append(stale_cutoff(stale_days))
        rows = await self.store.fetch_all(sql + " ORDER BY id", params)
        return [Research.from_row(row) for row in rows]

    async def show(self, research_id: int) -> EntityView:
        async with self.store.transaction():
            research = await self.get(research_id)
            links = await self.links.links_for(research_id)
            return EntityView(entity=research, links=links)

    async def rename(self, research_id: int, new_name: str) -> tuple[str, Research]:
        new_name = clean_name(new_name)
        async with self.store.transaction():
            current = await self.get(research_id)
            await self._ensure_unique(new_name, exclude_id=research_id)
            return current.name, await self._update(research_id, {"name": new_name})

    async def set_description(self, research_id: int, description: str) -> Research:
        async with self.store.transaction():
            return await self._update(research_id, {"description": description})

    async def set_content(self, research_id: int, content: str, update_date: bool = True) -> Research:
        """Replace content; researched_at moves to now unless ``update_date`` is off."""
        values: dict[str, Any] = {"content": content}
        if update_date:
            values["researched_at"] = utc_now()
        async with self.store.transaction():
            return await self._update(research_id, values)

    async def set_source(self, research_id: int, source: str) -> Research:
        async with self.store.transaction():
            return await self._update(research_id, {"source": source})

    async def set_researched_at(self, research_id: int, value: str) -> Research:
        researched_at = parse_researched_at(value)
        async with self.store.transaction():
            return await self._update(research_id, {"researched_at": researched_at})

    async def _link_target(self, target: EntityKind, target_id: int) -> str:
        if target not in HIERARCHY:
            raise ValidationError(f"research cannot be linked to {target.value}")
        row = await self.store.get_row(target, target_id)
        if row is None:
            raise NotFoundError(target.value, str(target_id))
        return row["name"]

    async def link(self, research_id: int, target: EntityKind, target_id: int) -> LinkResult:
        """Link research to one hierarchy node. Linking twice is a no-op."""
        async with self.store.transaction():
            research = await self.get(research_id)
            target_name = await self._link_target(target, target_id)
            changed = await self.links.link(research_id, target, target_id)
            return LinkResult(research, target, target_id, target_name, linked=True, changed=changed)

    async def unlink(self, research_id: int, target: EntityKind, target_id: int) -> LinkResult:
        """Remove a link. Unlinking a missing pair is a no-op."""
        async with self.store.transaction():
            research = await self.get(research_id)
            target_name = await self._link_target(target, target_id)
            changed = await self.links.unlink(research_id, target, target_id)
            return LinkResult(research, target, target_id, target_name, linked=False, changed=changed)

    async def linked(self, research_id: int) -> list[LinkedEntity]:
        async with self.store.transaction():
            await self.get(research_id)
            return await self.links.links_for(research_id)

    async def remove(self, research_id: int) -> RemovalResult:
        """Delete a research record and its link rows; linked nodes stay."""
        async with self.store.transaction():
            research = await self.get(research_id)
            link_count = 0
            for kind in HIERARCHY:
                link_count += await self.store.count_links(kind, research_id)
            await self.store.delete(_KIND, research_id)
            logger.info(f"Removed research {research_id} ({research.name})")
            return RemovalResult(
                kind=_KIND,
                id=research_id,
                name=research.name,
                removed={"research_links": link_count},
            )
