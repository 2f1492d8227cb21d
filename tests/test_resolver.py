"""Tests for entity reference resolution."""

from pathlib import Path

import pytest

from lopen_memory.core.errors import AmbiguousError, NotFoundError
from lopen_memory.core.types import EntityKind
from lopen_memory.memory.resolver import EntityResolver, is_id
from lopen_memory.memory.store import SQLiteStore


@pytest.fixture
async def store(tmp_path: Path):
    """Store with two projects that both own an 'auth' module."""
    store = SQLiteStore(tmp_path / "test.db")
    await store.connect()
    p1 = await store.insert(EntityKind.PROJECT, {"name": "p1", "path": "/a"})
    p2 = await store.insert(EntityKind.PROJECT, {"name": "p2", "path": "/b"})
    m1 = await store.insert(EntityKind.MODULE, {"project_id": p1, "name": "auth"})
    m2 = await store.insert(EntityKind.MODULE, {"project_id": p2, "name": "auth"})
    f1 = await store.insert(EntityKind.FEATURE, {"module_id": m1, "name": "login"})
    f2 = await store.insert(EntityKind.FEATURE, {"module_id": m2, "name": "login"})
    await store.insert(EntityKind.TASK, {"feature_id": f1, "name": "jwt"})
    await store.insert(EntityKind.TASK, {"feature_id": f2, "name": "jwt"})
    await store.insert(EntityKind.RESEARCH, {"name": "notes"})
    yield store
    await store.close()


@pytest.fixture
def resolver(store: SQLiteStore) -> EntityResolver:
    return EntityResolver(store)


def test_is_id():
    """Only plain ASCII digit strings count as ids."""
    assert is_id("0")
    assert is_id("42")
    assert not is_id("-1")
    assert not is_id("4a")
    assert not is_id("")
    assert not is_id("²")


@pytest.mark.asyncio
async def test_resolve_by_name(resolver: EntityResolver):
    """A unique name resolves to its id."""
    assert await resolver.project("p2") == 2
    assert await resolver.research("notes") == 1


@pytest.mark.asyncio
async def test_numeric_token_ignores_scope(resolver: EntityResolver):
    """An existing id resolves even when the stated scope does not own it."""
    assert await resolver.resolve(EntityKind.MODULE, "2", scope_id=1) == 2


@pytest.mark.asyncio
async def test_numeric_token_not_found(resolver: EntityResolver):
    """A missing id is NotFound, never a name lookup."""
    with pytest.raises(NotFoundError) as exc_info:
        await resolver.resolve(EntityKind.MODULE, "99")
    assert exc_info.value.entity == "module"
    assert exc_info.value.token == "99"


@pytest.mark.asyncio
async def test_unscoped_duplicate_name_is_ambiguous(resolver: EntityResolver):
    """The same name under two parents needs a narrowing flag."""
    with pytest.raises(AmbiguousError) as exc_info:
        await resolver.module("auth")
    assert exc_info.value.flag == "project"
    assert "--project" in str(exc_info.value)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kind,token,flag",
    [
        (EntityKind.MODULE, "auth", "project"),
        (EntityKind.FEATURE, "login", "module"),
        (EntityKind.TASK, "jwt", "feature"),
    ],
)
async def test_ambiguity_names_parent_flag(resolver: EntityResolver, kind, token, flag):
    """Each level points at its own parent flag."""
    with pytest.raises(AmbiguousError) as exc_info:
        await resolver.resolve(kind, token)
    assert exc_info.value.flag == flag


@pytest.mark.asyncio
async def test_scope_disambiguates(resolver: EntityResolver):
    """A parent token narrows the lookup to one row."""
    assert await resolver.module("auth", project="p2") == 2
    assert await resolver.feature("login", module="auth", project="p1") == 1
    assert await resolver.task("jwt", feature="2") == 2


@pytest.mark.asyncio
async def test_scope_without_match_is_not_found(resolver: EntityResolver, store: SQLiteStore):
    """A name missing under the given parent is NotFound."""
    await store.insert(EntityKind.MODULE, {"project_id": 1, "name": "billing"})
    with pytest.raises(NotFoundError):
        await resolver.module("billing", project="p2")


@pytest.mark.asyncio
async def test_matching_is_exact(resolver: EntityResolver):
    """No case folding or prefix matching."""
    with pytest.raises(NotFoundError):
        await resolver.project("P1")
    with pytest.raises(NotFoundError):
        await resolver.project("p")
    with pytest.raises(NotFoundError):
        await resolver.research("note")


@pytest.mark.asyncio
async def test_missing_parent_in_scope_chain(resolver: EntityResolver):
    """An unknown scope token fails on the scope itself."""
    with pytest.raises(NotFoundError) as exc_info:
        await resolver.module("auth", project="nope")
    assert exc_info.value.entity == "project"


def test_is_id_limited_to_sqlite_integers():
    """Digit strings past the 64-bit range are names, not ids."""
    assert is_id(str(2**63 - 1))
    assert not is_id(str(2**63))
    assert not is_id("99999999999999999999")


@pytest.mark.asyncio
async def test_oversized_numeric_token_not_found(resolver: EntityResolver):
    with pytest.raises(NotFoundError) as exc_info:
        await resolver.project("99999999999999999999")
    assert exc_info.value.token == "99999999999999999999"


@pytest.mark.asyncio
async def test_empty_scope_token_is_not_ignored(resolver: EntityResolver):
    """An explicit empty parent token must resolve, not widen the search."""
    with pytest.raises(NotFoundError) as exc_info:
        await resolver.module("auth", project="")
    assert exc_info.value.entity == "project"
    with pytest.raises(NotFoundError):
        await resolver.task("jwt", feature="")
