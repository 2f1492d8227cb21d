"""
CLI entry point.

Commands:
- project:  add, list, show, rename, set-description, set-path, complete, reopen, remove
- module:   add, list, show, rename, set-description, set-details, transition, remove
- feature:  same as module
- task:     same as module
- research: add, list, show, rename, set-description, set-content, set-source,
            set-researched-at, search, link, unlink, links, remove
- skill:    install

Flags (accepted anywhere on the command line):
- --db PATH: database file (overrides LOPEN_MEMORY_DB)
- --json: structured output
- --debug: verbose logging to stderr

Exit codes: 0 success, 1 validation / not found / ambiguous / blocked,
2 storage failure.
"""

import argparse
import asyncio
import io
import sys
from collections.abc import Awaitable, Callable

from lopen_memory.core.config import Settings, get_settings
from lopen_memory.core.errors import LopenMemoryError
from lopen_memory.core.logging import get_logger, resolve_level, setup_logging
from lopen_memory.core.types import EntityKind, State
from lopen_memory.memory.links import select_link_target
from lopen_memory.memory.resolver import EntityResolver
from lopen_memory.memory.store import SQLiteStore
from lopen_memory.output import Presenter
from lopen_memory.work.manager import HierarchyManager
from lopen_memory.work.research import ResearchManager

logger = get_logger("cli")

ITEM_KINDS = (EntityKind.MODULE, EntityKind.FEATURE, EntityKind.TASK)
STATE_NAMES = ", ".join(s.value for s in State)


class Context:
    """Everything a command handler needs for one invocation."""

    def __init__(self, store: SQLiteStore, presenter: Presenter):
        self.store = store
        self.presenter = presenter
        self.resolver = EntityResolver(store)
        self.hierarchy = HierarchyManager(store)
        self.research = ResearchManager(store)


Handler = Callable[[Context, argparse.Namespace], Awaitable[None]]


class _Parser(argparse.ArgumentParser):
    """Usage errors are caller-input errors: exit 1, not argparse's 2."""

    def error(self, message: str) -> None:
        self.print_usage(sys.stderr)
        self.exit(1, f"error: {message}\n")


# Resolution


async def resolve(ctx: Context, kind: EntityKind, args: argparse.Namespace) -> int:
    """Resolve the ``kind`` flag of a command, narrowed by any parent flags given."""
    token = getattr(args, kind.value)
    if kind is EntityKind.PROJECT:
        return await ctx.resolver.project(token)
    if kind is EntityKind.MODULE:
        return await ctx.resolver.module(token, getattr(args, "project", None))
    if kind is EntityKind.FEATURE:
        return await ctx.resolver.feature(
            token, getattr(args, "module", None), getattr(args, "project", None)
        )
    if kind is EntityKind.TASK:
        return await ctx.resolver.task(
            token, getattr(args, "feature", None), getattr(args, "module", None)
        )
    return await ctx.resolver.research(token)


# Project handlers


async def project_add(ctx: Context, args: argparse.Namespace) -> None:
    project = await ctx.hierarchy.add_project(args.name, args.path, args.description or "")
    ctx.presenter.added(project)


async def project_list(ctx: Context, args: argparse.Namespace) -> None:
    completed = True if args.completed else False if args.incomplete else None
    ctx.presenter.projects(await ctx.hierarchy.list_projects(completed))


async def project_set_path(ctx: Context, args: argparse.Namespace) -> None:
    project_id = await resolve(ctx, EntityKind.PROJECT, args)
    ctx.presenter.updated(await ctx.hierarchy.set_path(project_id, args.path), "path")


def project_set_completed(completed: bool) -> Handler:
    async def handler(ctx: Context, args: argparse.Namespace) -> None:
        project_id = await resolve(ctx, EntityKind.PROJECT, args)
        ctx.presenter.completed(await ctx.hierarchy.set_completed(project_id, completed))

    return handler


# Handlers shared by every hierarchy level


def hierarchy_show(kind: EntityKind) -> Handler:
    async def handler(ctx: Context, args: argparse.Namespace) -> None:
        row_id = await resolve(ctx, kind, args)
        ctx.presenter.show(await ctx.hierarchy.show(kind, row_id))

    return handler


def hierarchy_rename(kind: EntityKind) -> Handler:
    async def handler(ctx: Context, args: argparse.Namespace) -> None:
        row_id = await resolve(ctx, kind, args)
        old_name, entity = await ctx.hierarchy.rename(kind, row_id, args.new_name)
        ctx.presenter.renamed(entity, old_name)

    return handler


def hierarchy_set_description(kind: EntityKind) -> Handler:
    async def handler(ctx: Context, args: argparse.Namespace) -> None:
        row_id = await resolve(ctx, kind, args)
        entity = await ctx.hierarchy.set_description(kind, row_id, args.description)
        ctx.presenter.updated(entity, "description")

    return handler


def hierarchy_remove(kind: EntityKind) -> Handler:
    async def handler(ctx: Context, args: argparse.Namespace) -> None:
        row_id = await resolve(ctx, kind, args)
        cascade = getattr(args, "cascade", False)
        ctx.presenter.removed(await ctx.hierarchy.remove(kind, row_id, cascade))

    return handler


# Module / feature / task handlers


def item_add(kind: EntityKind) -> Handler:
    async def handler(ctx: Context, args: argparse.Namespace) -> None:
        parent_id = await resolve(ctx, kind.parent, args)
        item = await ctx.hierarchy.add_item(kind, parent_id, args.name, args.description or "")
        parent = await ctx.hierarchy.get(kind.parent, parent_id)
        ctx.presenter.added(item, parent.name)

    return handler


def item_list(kind: EntityKind) -> Handler:
    async def handler(ctx: Context, args: argparse.Namespace) -> None:
        parent_id = await resolve(ctx, kind.parent, args)
        ctx.presenter.items(kind, await ctx.hierarchy.list_items(kind, parent_id, args.state))

    return handler


def item_set_details(kind: EntityKind) -> Handler:
    async def handler(ctx: Context, args: argparse.Namespace) -> None:
        item_id = await resolve(ctx, kind, args)
        ctx.presenter.updated(await ctx.hierarchy.set_details(kind, item_id, args.details), "details")

    return handler


def item_transition(kind: EntityKind) -> Handler:
    async def handler(ctx: Context, args: argparse.Namespace) -> None:
        target = State.parse(args.state)
        item_id = await resolve(ctx, kind, args)
        ctx.presenter.transitioned(await ctx.hierarchy.transition(kind, item_id, target))

    return handler


# Research handlers


async def research_add(ctx: Context, args: argparse.Namespace) -> None:
    ctx.presenter.added(await ctx.research.add(args.name, args.description or ""))


async def research_list(ctx: Context, args: argparse.Namespace) -> None:
    ctx.presenter.research_list(await ctx.research.list_research(args.stale_days))


async def research_show(ctx: Context, args: argparse.Namespace) -> None:
    research_id = await resolve(ctx, EntityKind.RESEARCH, args)
    ctx.presenter.show(await ctx.research.show(research_id))


async def research_rename(ctx: Context, args: argparse.Namespace) -> None:
    research_id = await resolve(ctx, EntityKind.RESEARCH, args)
    old_name, research = await ctx.research.rename(research_id, args.new_name)
    ctx.presenter.renamed(research, old_name)


async def research_set_description(ctx: Context, args: argparse.Namespace) -> None:
    research_id = await resolve(ctx, EntityKind.RESEARCH, args)
    research = await ctx.research.set_description(research_id, args.description)
    ctx.presenter.updated(research, "description")


async def research_set_content(ctx: Context, args: argparse.Namespace) -> None:
    research_id = await resolve(ctx, EntityKind.RESEARCH, args)
    research = await ctx.research.set_content(
        research_id, args.content, update_date=not args.no_update_date
    )
    ctx.presenter.updated(research, "content")


async def research_set_source(ctx: Context, args: argparse.Namespace) -> None:
    research_id = await resolve(ctx, EntityKind.RESEARCH, args)
    ctx.presenter.updated(await ctx.research.set_source(research_id, args.source), "source")


async def research_set_researched_at(ctx: Context, args: argparse.Namespace) -> None:
    research_id = await resolve(ctx, EntityKind.RESEARCH, args)
    research = await ctx.research.set_researched_at(research_id, args.date)
    ctx.presenter.updated(research, "researched_at", research.researched_at)


async def research_search(ctx: Context, args: argparse.Namespace) -> None:
    records = await ctx.research.search(args.term, args.stale_days)
    ctx.presenter.research_list(records, f"no research found matching: {args.term}")


def research_link(linked: bool) -> Handler:
    async def handler(ctx: Context, args: argparse.Namespace) -> None:
        # Target count is checked before either side is resolved
        target, token = select_link_target(args.project, args.module, args.feature, args.task)
        research_id = await ctx.resolver.research(args.research)
        target_id = await ctx.resolver.resolve(target, token)
        if linked:
            result = await ctx.research.link(research_id, target, target_id)
        else:
            result = await ctx.research.unlink(research_id, target, target_id)
        ctx.presenter.link_changed(result)

    return handler


async def research_links(ctx: Context, args: argparse.Namespace) -> None:
    research_id = await resolve(ctx, EntityKind.RESEARCH, args)
    ctx.presenter.links(await ctx.research.linked(research_id))


async def research_remove(ctx: Context, args: argparse.Namespace) -> None:
    research_id = await resolve(ctx, EntityKind.RESEARCH, args)
    ctx.presenter.removed(await ctx.research.remove(research_id))


# Parser


def _common_flags() -> argparse.ArgumentParser:
    # SUPPRESS keeps a subcommand from resetting a flag given before it
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--db", default=argparse.SUPPRESS, help="Override the database file path")
    common.add_argument("--json", action="store_true", default=argparse.SUPPRESS, help="Output as JSON")
    common.add_argument("--debug", action="store_true", default=argparse.SUPPRESS, help="Verbose logging")
    return common


def _target(parser: argparse.ArgumentParser, kind: EntityKind, required: bool = True) -> None:
    parser.add_argument(f"--{kind.value}", required=required, help=f"{kind.value.capitalize()} name or numeric ID")


def _scope(parser: argparse.ArgumentParser, kind: EntityKind, required: bool = False) -> None:
    """Add the parent (and grandparent) flags used to narrow a ``kind`` lookup."""
    parent = kind.parent
    if parent is None:
        return
    help_text = f"Parent {parent.value} name or ID" if required else (
        f"Disambiguate by {parent.value} name or ID if the {kind.value} name is not unique"
    )
    parser.add_argument(f"--{parent.value}", required=required, help=help_text)
    if parent.parent is not None:
        parser.add_argument(
            f"--{parent.parent.value}",
            help=f"Disambiguate the {parent.value} by {parent.parent.value} name or ID",
        )


def _add_project_commands(sub: argparse._SubParsersAction, common: argparse.ArgumentParser) -> None:
    kind = EntityKind.PROJECT
    p = sub.add_parser("project", parents=[common], help="A codebase or repository; contains modules")
    actions = p.add_subparsers(dest="action", required=True)

    a = actions.add_parser("add", parents=[common], help="Register a new project")
    a.add_argument("name", help="Unique slug identifying this project")
    a.add_argument("path", help="Absolute path to the root of the repository")
    a.add_argument("description", nargs="?", help="One-sentence description of the project's purpose")
    a.set_defaults(handler=project_add)

    a = actions.add_parser("list", parents=[common], help="List projects")
    flags = a.add_mutually_exclusive_group()
    flags.add_argument("--completed", action="store_true", help="Show only completed projects")
    flags.add_argument("--incomplete", action="store_true", help="Show only incomplete projects")
    a.set_defaults(handler=project_list)

    a = actions.add_parser("show", parents=[common], help="Show a project with its modules and research")
    _target(a, kind)
    a.set_defaults(handler=hierarchy_show(kind))

    a = actions.add_parser("rename", parents=[common], help="Change a project's slug name")
    _target(a, kind)
    a.add_argument("new_name")
    a.set_defaults(handler=hierarchy_rename(kind))

    a = actions.add_parser("set-description", parents=[common], help="Replace the project's description")
    _target(a, kind)
    a.add_argument("description")
    a.set_defaults(handler=hierarchy_set_description(kind))

    a = actions.add_parser("set-path", parents=[common], help="Update the project's filesystem path")
    _target(a, kind)
    a.add_argument("path")
    a.set_defaults(handler=project_set_path)

    a = actions.add_parser("complete", parents=[common], help="Mark a project as complete")
    _target(a, kind)
    a.set_defaults(handler=project_set_completed(True))

    a = actions.add_parser("reopen", parents=[common], help="Reopen a completed project")
    _target(a, kind)
    a.set_defaults(handler=project_set_completed(False))

    a = actions.add_parser("remove", parents=[common], help="Delete a project (--cascade to delete its modules)")
    _target(a, kind)
    a.add_argument("--cascade", action="store_true", help="Also delete all modules, features and tasks")
    a.set_defaults(handler=hierarchy_remove(kind))


_ITEM_HELP = {
    EntityKind.MODULE: "A bounded area of concern within a project; contains features",
    EntityKind.FEATURE: "A discrete deliverable within a module; contains tasks",
    EntityKind.TASK: "A single concrete implementation step within a feature",
}


def _add_item_commands(
    sub: argparse._SubParsersAction,
    common: argparse.ArgumentParser,
    kind: EntityKind,
) -> None:
    name = kind.value
    p = sub.add_parser(name, parents=[common], help=_ITEM_HELP[kind])
    actions = p.add_subparsers(dest="action", required=True)

    a = actions.add_parser("add", parents=[common], help=f"Create a new {name}")
    _scope(a, kind, required=True)
    a.add_argument("name", help=f"Slug unique within the parent {kind.parent.value}")
    a.add_argument("description", nargs="?", help="One-sentence description")
    a.set_defaults(handler=item_add(kind))

    a = actions.add_parser("list", parents=[common], help=f"List {kind.table} of a {kind.parent.value}")
    _scope(a, kind, required=True)
    a.add_argument("--state", help=f"Filter by lifecycle state: {STATE_NAMES}")
    a.set_defaults(handler=item_list(kind))

    a = actions.add_parser("show", parents=[common], help=f"Show a {name} with its children and research")
    _target(a, kind)
    _scope(a, kind)
    a.set_defaults(handler=hierarchy_show(kind))

    a = actions.add_parser("rename", parents=[common], help=f"Change a {name}'s slug name")
    _target(a, kind)
    _scope(a, kind)
    a.add_argument("new_name")
    a.set_defaults(handler=hierarchy_rename(kind))

    a = actions.add_parser("set-description", parents=[common], help=f"Replace the {name}'s description")
    _target(a, kind)
    _scope(a, kind)
    a.add_argument("description")
    a.set_defaults(handler=hierarchy_set_description(kind))

    a = actions.add_parser("set-details", parents=[common], help=f"Replace the {name}'s working notes entirely")
    _target(a, kind)
    _scope(a, kind)
    a.add_argument("details")
    a.set_defaults(handler=item_set_details(kind))

    a = actions.add_parser("transition", parents=[common], help=f"Move a {name} to a new lifecycle state")
    _target(a, kind)
    _scope(a, kind)
    a.add_argument("state", help=f"Target state: {STATE_NAMES}")
    a.set_defaults(handler=item_transition(kind))

    a = actions.add_parser("remove", parents=[common], help=f"Delete a {name}")
    _target(a, kind)
    _scope(a, kind)
    if kind.child is not None:
        a.add_argument("--cascade", action="store_true", help=f"Also delete all child {kind.child.table}")
    a.set_defaults(handler=hierarchy_remove(kind))


def _add_research_commands(sub: argparse._SubParsersAction, common: argparse.ArgumentParser) -> None:
    kind = EntityKind.RESEARCH
    p = sub.add_parser("research", parents=[common], help="Reference material linkable to any work item")
    actions = p.add_subparsers(dest="action", required=True)

    a = actions.add_parser("add", parents=[common], help="Create a research record")
    a.add_argument("name", help="Globally unique slug")
    a.add_argument("description", nargs="?", help="What this research is about")
    a.set_defaults(handler=research_add)

    a = actions.add_parser("list", parents=[common], help="List research records")
    a.add_argument("--stale-days", type=int, help="Only records researched more than N days ago")
    a.set_defaults(handler=research_list)

    a = actions.add_parser("show", parents=[common], help="Show a research record and its links")
    _target(a, kind)
    a.set_defaults(handler=research_show)

    a = actions.add_parser("rename", parents=[common], help="Change a research record's slug name")
    _target(a, kind)
    a.add_argument("new_name")
    a.set_defaults(handler=research_rename)

    a = actions.add_parser("set-description", parents=[common], help="Replace the description")
    _target(a, kind)
    a.add_argument("description")
    a.set_defaults(handler=research_set_description)

    a = actions.add_parser("set-content", parents=[common], help="Replace the findings; refreshes researched_at")
    _target(a, kind)
    a.add_argument("content")
    a.add_argument("--no-update-date", action="store_true", help="Keep the current researched_at")
    a.set_defaults(handler=research_set_content)

    a = actions.add_parser("set-source", parents=[common], help="Set the source citation")
    _target(a, kind)
    a.add_argument("source")
    a.set_defaults(handler=research_set_source)

    a = actions.add_parser("set-researched-at", parents=[common], help="Set when the research was done")
    _target(a, kind)
    a.add_argument("date", help="YYYY-MM-DD or YYYY-MM-DDTHH:MM:SSZ")
    a.set_defaults(handler=research_set_researched_at)

    a = actions.add_parser("search", parents=[common], help="Case-insensitive search over all text fields")
    a.add_argument("term")
    a.add_argument("--stale-days", type=int, help="Only records researched more than N days ago")
    a.set_defaults(handler=research_search)

    for action, linked in (("link", True), ("unlink", False)):
        verb = "Associate" if linked else "Dissociate"
        a = actions.add_parser(action, parents=[common], help=f"{verb} research and one work item")
        _target(a, kind)
        for target in (EntityKind.PROJECT, EntityKind.MODULE, EntityKind.FEATURE, EntityKind.TASK):
            a.add_argument(
                f"--{target.value}",
                help="exactly one of --project, --module, --feature, --task is required",
            )
        a.set_defaults(handler=research_link(linked))

    a = actions.add_parser("links", parents=[common], help="List everything a research record is linked to")
    _target(a, kind)
    a.set_defaults(handler=research_links)

    a = actions.add_parser("remove", parents=[common], help="Delete a research record (linked items stay)")
    _target(a, kind)
    a.set_defaults(handler=research_remove)


def build_parser() -> argparse.ArgumentParser:
    common = _common_flags()
    parser = _Parser(
        prog="lopen-memory",
        parents=[common],
        description="Persistent structured memory store for LLM coding agents. "
        "Organises work as Project → Module → Feature → Task, each moving through "
        "Draft → Planning → Building → Complete → Amending, with research records "
        "linkable to any of them.",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    _add_project_commands(sub, common)
    for kind in ITEM_KINDS:
        _add_item_commands(sub, common, kind)
    _add_research_commands(sub, common)

    s = sub.add_parser("skill", parents=[common], help="Install the agent skill file")
    actions = s.add_subparsers(dest="action", required=True)
    a = actions.add_parser("install", parents=[common], help="Write SKILL.md into the agent skills directory")
    a.add_argument("--skills-dir", help="Base skills directory (default ~/.agents/skills)")
    a.set_defaults(handler=None)
    return parser


async def run_command(args: argparse.Namespace, settings: Settings, presenter: Presenter) -> None:
    """Open the store and run one command inside a single transaction.

    Output is held back until the transaction has committed.
    """
    db_path = settings.resolve_db_path(getattr(args, "db", None))
    store = SQLiteStore(db_path)
    pending = io.StringIO()
    await store.connect()
    try:
        ctx = Context(store, presenter.buffered(pending))
        async with store.transaction():
            await args.handler(ctx, args)
    finally:
        await store.close()
    presenter.out.write(pending.getvalue())


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    settings = get_settings()

    debug_mode = getattr(args, "debug", False)
    setup_logging(level=resolve_level(settings.log_level, debug_mode), log_file=settings.log_file)

    presenter = Presenter(json_mode=getattr(args, "json", False))
    try:
        if args.command == "skill":
            from lopen_memory import skill

            dest = skill.install(settings.resolve_skills_dir(args.skills_dir))
            presenter.skill_installed(str(dest))
        else:
            logger.debug(f"Running {args.command} {args.action}")
            asyncio.run(run_command(args, settings, presenter))
    except LopenMemoryError as e:
        logger.debug(f"{args.command} {args.action} failed: {e.kind}")
        presenter.error(e)
        return e.exit_code
    return 0
