"""Tests for hierarchy command operations."""

from pathlib import Path

import pytest

from lopen_memory.core.errors import (
    ConflictHasChildrenError,
    DuplicateNameError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from lopen_memory.core.types import EntityKind, State
from lopen_memory.memory.store import SQLiteStore
from lopen_memory.work.manager import HierarchyManager

OLD = "2020-01-01T00:00:00Z"


@pytest.fixture
async def store(tmp_path: Path):
    store = SQLiteStore(tmp_path / "test.db")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def manager(store: SQLiteStore) -> HierarchyManager:
    return HierarchyManager(store)


@pytest.fixture
async def module(manager: HierarchyManager):
    """Project p1 at /repo with module auth."""
    project = await manager.add_project("p1", "/repo")
    return await manager.add_item(EntityKind.MODULE, project.id, "auth")


@pytest.mark.asyncio
async def test_add_project(manager: HierarchyManager):
    """Projects are created incomplete with trimmed names."""
    project = await manager.add_project("  p1 ", "/repo", "Core app")
    assert project.name == "p1"
    assert project.path == "/repo"
    assert project.description == "Core app"
    assert project.completed is False
    assert project.updated_at.endswith("Z")


@pytest.mark.asyncio
async def test_blank_name_rejected(manager: HierarchyManager):
    with pytest.raises(ValidationError):
        await manager.add_project("   ", "/repo")


@pytest.mark.asyncio
async def test_duplicate_project_name(manager: HierarchyManager):
    await manager.add_project("p1", "/repo")
    with pytest.raises(DuplicateNameError):
        await manager.add_project("p1", "/other")


@pytest.mark.asyncio
async def test_item_names_unique_per_parent(manager: HierarchyManager, module):
    """The same module name is fine under another project, not the same one."""
    other = await manager.add_project("p2", "/other")
    await manager.add_item(EntityKind.MODULE, other.id, "auth")
    with pytest.raises(DuplicateNameError) as exc_info:
        await manager.add_item(EntityKind.MODULE, module.parent_id, "auth")
    assert exc_info.value.scope == "project p1"


@pytest.mark.asyncio
async def test_add_item_requires_parent(manager: HierarchyManager):
    with pytest.raises(NotFoundError):
        await manager.add_item(EntityKind.FEATURE, 42, "login")


@pytest.mark.asyncio
async def test_new_item_is_draft(module):
    assert module.state is State.DRAFT
    assert module.to_dict()["project_id"] == module.parent_id


@pytest.mark.asyncio
async def test_lifecycle_walkthrough(manager: HierarchyManager, module):
    """Draft cannot jump to Building; Planning then Building works; reset to Draft works."""
    with pytest.raises(InvalidTransitionError):
        await manager.transition(EntityKind.MODULE, module.id, "Building")
    assert (await manager.get(EntityKind.MODULE, module.id)).state is State.DRAFT

    for target in ("Planning", "Building", "Draft"):
        result = await manager.transition(EntityKind.MODULE, module.id, target)
        assert result.changed is True
        assert result.item.state is State.parse(target)


@pytest.mark.asyncio
async def test_transition_refreshes_timestamp(manager: HierarchyManager, store: SQLiteStore, module):
    await store.update(EntityKind.MODULE, module.id, {"last_worked_on": OLD})
    result = await manager.transition(EntityKind.MODULE, module.id, State.PLANNING)
    assert result.from_state is State.DRAFT
    assert result.item.last_worked_on != OLD


@pytest.mark.asyncio
async def test_noop_transition_writes_nothing(manager: HierarchyManager, store: SQLiteStore, module):
    """Transition to the current state reports a no-op and keeps the timestamp."""
    await store.update(EntityKind.MODULE, module.id, {"last_worked_on": OLD})
    result = await manager.transition(EntityKind.MODULE, module.id, State.DRAFT)
    assert result.changed is False
    assert (await manager.get(EntityKind.MODULE, module.id)).last_worked_on == OLD


@pytest.mark.asyncio
async def test_invalid_transition_leaves_state(manager: HierarchyManager, store: SQLiteStore, module):
    await store.update(EntityKind.MODULE, module.id, {"last_worked_on": OLD})
    with pytest.raises(InvalidTransitionError):
        await manager.transition(EntityKind.MODULE, module.id, State.AMENDING)
    item = await manager.get(EntityKind.MODULE, module.id)
    assert item.state is State.DRAFT
    assert item.last_worked_on == OLD


@pytest.mark.asyncio
async def test_projects_have_no_lifecycle(manager: HierarchyManager, module):
    with pytest.raises(ValidationError):
        await manager.transition(EntityKind.PROJECT, module.parent_id, State.PLANNING)


@pytest.mark.asyncio
async def test_mutations_refresh_timestamp(manager: HierarchyManager, store: SQLiteStore, module):
    """Description, details and rename all touch last_worked_on."""
    for change in (
        lambda: manager.set_description(EntityKind.MODULE, module.id, "Auth"),
        lambda: manager.set_details(EntityKind.MODULE, module.id, "JWT rotation"),
        lambda: manager.rename(EntityKind.MODULE, module.id, "identity"),
    ):
        await store.update(EntityKind.MODULE, module.id, {"last_worked_on": OLD})
        await change()
        assert (await manager.get(EntityKind.MODULE, module.id)).last_worked_on != OLD


@pytest.mark.asyncio
async def test_rename_returns_old_name(manager: HierarchyManager, module):
    old_name, item = await manager.rename(EntityKind.MODULE, module.id, "identity")
    assert old_name == "auth"
    assert item.name == "identity"


@pytest.mark.asyncio
async def test_rename_to_own_name_allowed(manager: HierarchyManager, module):
    _, item = await manager.rename(EntityKind.MODULE, module.id, "auth")
    assert item.name == "auth"


@pytest.mark.asyncio
async def test_rename_collision(manager: HierarchyManager, module):
    await manager.add_item(EntityKind.MODULE, module.parent_id, "billing")
    with pytest.raises(DuplicateNameError):
        await manager.rename(EntityKind.MODULE, module.id, "billing")


@pytest.mark.asyncio
async def test_project_path_and_completion(manager: HierarchyManager, store: SQLiteStore):
    project = await manager.add_project("p1", "/repo")
    await store.update(EntityKind.PROJECT, project.id, {"updated_at": OLD})

    moved = await manager.set_path(project.id, "/new")
    assert moved.path == "/new"
    assert moved.updated_at != OLD

    assert (await manager.set_completed(project.id, True)).completed is True
    assert [p.name for p in await manager.list_projects(completed=True)] == ["p1"]
    assert await manager.list_projects(completed=False) == []
    assert (await manager.set_completed(project.id, False)).completed is False


@pytest.mark.asyncio
async def test_list_items_state_filter(manager: HierarchyManager, module):
    await manager.add_item(EntityKind.MODULE, module.parent_id, "billing")
    await manager.transition(EntityKind.MODULE, module.id, "Planning")

    planning = await manager.list_items(EntityKind.MODULE, module.parent_id, "Planning")
    assert [m.name for m in planning] == ["auth"]
    assert len(await manager.list_items(EntityKind.MODULE, module.parent_id)) == 2
    with pytest.raises(ValidationError):
        await manager.list_items(EntityKind.MODULE, module.parent_id, "planning")


@pytest.mark.asyncio
async def test_show_module(manager: HierarchyManager, store: SQLiteStore, module):
    """Show carries the parent name, child states and linked research."""
    await manager.add_item(EntityKind.FEATURE, module.id, "login")
    research_id = await store.insert(EntityKind.RESEARCH, {"name": "notes"})
    await manager.links.link(research_id, EntityKind.MODULE, module.id)

    view = await manager.show(EntityKind.MODULE, module.id)

    assert view.parent_name == "p1"
    assert [(c.name, c.state) for c in view.children] == [("login", "Draft")]
    assert [r.name for r in view.research] == ["notes"]


@pytest.mark.asyncio
async def test_remove_module_with_features(manager: HierarchyManager, store: SQLiteStore, module):
    """Two features block removal until cascade is given."""
    login = await manager.add_item(EntityKind.FEATURE, module.id, "login")
    await manager.add_item(EntityKind.FEATURE, module.id, "logout")
    task = await manager.add_item(EntityKind.TASK, login.id, "jwt")
    research_id = await store.insert(EntityKind.RESEARCH, {"name": "notes"})
    await manager.links.link(research_id, EntityKind.TASK, task.id)

    with pytest.raises(ConflictHasChildrenError) as exc_info:
        await manager.remove(EntityKind.MODULE, module.id)
    assert (exc_info.value.count, exc_info.value.flag) == (2, "cascade")

    await manager.remove(EntityKind.MODULE, module.id, cascade=True)

    assert await store.scalar("SELECT COUNT(*) FROM features") == 0
    assert await store.scalar("SELECT COUNT(*) FROM tasks") == 0
    assert await store.count_links(EntityKind.TASK) == 0
    assert await store.exists(EntityKind.RESEARCH, research_id)
