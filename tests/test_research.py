"""Tests for research records."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from lopen_memory.core.errors import DuplicateNameError, NotFoundError, ValidationError
from lopen_memory.core.types import EntityKind
from lopen_memory.memory.store import SQLiteStore
from lopen_memory.work.manager import HierarchyManager
from lopen_memory.work.research import ResearchManager, parse_researched_at, stale_cutoff

OLD = "2020-01-01T00:00:00Z"


@pytest.fixture
async def store(tmp_path: Path):
    store = SQLiteStore(tmp_path / "test.db")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def research(store: SQLiteStore) -> ResearchManager:
    return ResearchManager(store)


@pytest.fixture
async def tree(store: SQLiteStore):
    """p1 > auth > login > jwt; returns the hierarchy manager."""
    manager = HierarchyManager(store)
    project = await manager.add_project("p1", "/repo")
    module = await manager.add_item(EntityKind.MODULE, project.id, "auth")
    feature = await manager.add_item(EntityKind.FEATURE, module.id, "login")
    await manager.add_item(EntityKind.TASK, feature.id, "jwt")
    return manager


def test_parse_researched_at():
    """Dates become midnight UTC; full timestamps pass through."""
    assert parse_researched_at("2024-03-05") == "2024-03-05T00:00:00Z"
    assert parse_researched_at("2024-03-05T10:20:30Z") == "2024-03-05T10:20:30Z"


@pytest.mark.parametrize(
    "value",
    ["", "yesterday", "2024-3-5", "2024-02-30", "2024-03-05T10:20:30", "2024-03-05 10:20:30Z"],
)
def test_parse_researched_at_rejects(value):
    with pytest.raises(ValidationError):
        parse_researched_at(value)


def test_stale_cutoff():
    now = datetime(2024, 3, 10, 12, 0, 0, tzinfo=timezone.utc)
    assert stale_cutoff(7, now) == "2024-03-03T12:00:00Z"
    with pytest.raises(ValidationError):
        stale_cutoff(-1, now)


@pytest.mark.asyncio
async def test_add_sets_all_timestamps(research: ResearchManager):
    record = await research.add("notes", "JWT notes")
    assert record.researched_at == record.created_at == record.updated_at
    assert record.description == "JWT notes"
    with pytest.raises(DuplicateNameError):
        await research.add("notes")


@pytest.mark.asyncio
async def test_set_content_updates_researched_at(research: ResearchManager, store: SQLiteStore):
    record = await research.add("notes")
    await store.update(EntityKind.RESEARCH, record.id, {"researched_at": OLD, "updated_at": OLD})

    updated = await research.set_content(record.id, "findings")
    assert updated.content == "findings"
    assert updated.researched_at != OLD
    assert updated.updated_at != OLD


@pytest.mark.asyncio
async def test_set_content_can_keep_date(research: ResearchManager, store: SQLiteStore):
    record = await research.add("notes")
    await store.update(EntityKind.RESEARCH, record.id, {"researched_at": OLD})

    updated = await research.set_content(record.id, "findings", update_date=False)
    assert updated.researched_at == OLD


@pytest.mark.asyncio
async def test_set_researched_at_and_source(research: ResearchManager):
    record = await research.add("notes")
    assert (await research.set_researched_at(record.id, "2023-06-01")).researched_at == "2023-06-01T00:00:00Z"
    assert (await research.set_source(record.id, "RFC 7519")).source == "RFC 7519"


@pytest.mark.asyncio
async def test_list_stale(research: ResearchManager):
    old = await research.add("old")
    await research.add("fresh")
    await research.set_researched_at(old.id, "2020-01-01")

    assert [r.name for r in await research.list_research()] == ["old", "fresh"]
    assert [r.name for r in await research.list_research(stale_days=30)] == ["old"]


@pytest.mark.asyncio
async def test_search_is_case_insensitive_across_fields(research: ResearchManager):
    a = await research.add("jwt-libs", "Token libraries")
    b = await research.add("sessions")
    await research.add("unrelated")
    await research.set_source(b.id, "OWASP JWT cheat sheet")

    assert [r.id for r in await research.search("jwt")] == [a.id, b.id]
    assert [r.id for r in await research.search("TOKEN")] == [a.id]


@pytest.mark.asyncio
async def test_search_treats_wildcards_literally(research: ResearchManager):
    await research.add("100%-coverage")
    await research.add("plain")
    assert [r.name for r in await research.search("%")] == ["100%-coverage"]
    assert await research.search("_") == []


@pytest.mark.asyncio
async def test_link_unlink_and_show(research: ResearchManager, tree: HierarchyManager, store: SQLiteStore):
    record = await research.add("notes")

    first = await research.link(record.id, EntityKind.FEATURE, 1)
    again = await research.link(record.id, EntityKind.FEATURE, 1)
    assert (first.changed, again.changed) == (True, False)
    assert first.target_name == "login"
    assert await store.count_links(EntityKind.FEATURE) == 1

    view = await research.show(record.id)
    assert [(link.name, link.context) for link in view.links] == [("login", "p1 > auth")]

    assert (await research.unlink(record.id, EntityKind.FEATURE, 1)).changed is True
    assert (await research.unlink(record.id, EntityKind.FEATURE, 1)).changed is False
    assert await research.linked(record.id) == []


@pytest.mark.asyncio
async def test_link_to_missing_target(research: ResearchManager):
    record = await research.add("notes")
    with pytest.raises(NotFoundError):
        await research.link(record.id, EntityKind.TASK, 7)


@pytest.mark.asyncio
async def test_remove_keeps_linked_nodes(research: ResearchManager, tree: HierarchyManager, store: SQLiteStore):
    record = await research.add("notes")
    await research.link(record.id, EntityKind.PROJECT, 1)
    await research.link(record.id, EntityKind.TASK, 1)

    result = await research.remove(record.id)

    assert result.removed == {"research_links": 2}
    assert not await store.exists(EntityKind.RESEARCH, record.id)
    assert await store.exists(EntityKind.PROJECT, 1)
    assert await store.exists(EntityKind.TASK, 1)
    assert await store.count_links(EntityKind.TASK) == 0


@pytest.mark.asyncio
async def test_hierarchy_removal_keeps_research(research: ResearchManager, tree: HierarchyManager):
    record = await research.add("notes")
    await research.link(record.id, EntityKind.MODULE, 1)

    await tree.remove(EntityKind.PROJECT, 1, cascade=True)

    assert (await research.get(record.id)).name == "notes"
    assert await research.linked(record.id) == []


def test_stale_cutoff_before_year_one():
    """A window reaching past the calendar start matches nothing."""
    now = datetime(2024, 3, 10, tzinfo=timezone.utc)
    assert stale_cutoff(1_000_000, now) == "0001-01-01T00:00:00Z"
    assert stale_cutoff(10**12, now) == "0001-01-01T00:00:00Z"


@pytest.mark.asyncio
async def test_list_with_huge_stale_window(research: ResearchManager):
    old = await research.add("old")
    await research.set_researched_at(old.id, "2020-01-01")
    assert await research.list_research(stale_days=1_000_000) == []
    assert await research.search("old", stale_days=1_000_000) == []
