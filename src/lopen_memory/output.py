"""Presentation of command results as plain text or JSON.

Receives already-resolved, already-validated results and only formats
them. Results go to stdout, errors to stderr.
"""

import json
import sys
from typing import Any, TextIO

from lopen_memory.core.errors import LopenMemoryError
from lopen_memory.core.types import (
    EntityKind,
    EntityView,
    LinkedEntity,
    LinkResult,
    Project,
    RemovalResult,
    Research,
    Summary,
    TransitionResult,
    WorkItem,
)


def field(label: str, value: Any) -> str:
    """Labelled field line with the label padded to align values."""
    return f"{label + ':':<16}{value}"


def indent_content(content: str) -> str:
    return "\n".join(f"  {line}" for line in content.splitlines())


def _summary_line(item: Summary) -> str:
    tail = item.state if item.state is not None else (item.description or "")
    return f"  {item.id:<4} {item.name:<20} {tail}"


def _link_line(link: LinkedEntity) -> str:
    if not link.context:
        return f"  {link.kind.value:<10} {link.id:<4} {link.name}"
    return f"  {link.kind.value:<10} {link.id:<4} {link.name:<24} ({link.context})"


class Presenter:
    """Writes command results in the selected format."""

    def __init__(self, json_mode: bool = False, out: TextIO | None = None, err: TextIO | None = None):
        self.json_mode = json_mode
        self.out = out or sys.stdout
        self.err = err or sys.stderr

    def buffered(self, out: TextIO) -> "Presenter":
        """Same format, results written to ``out``; errors still go to stderr."""
        return Presenter(self.json_mode, out, self.err)

    # Primitives

    def line(self, text: str = "") -> None:
        print(text, file=self.out)

    def emit(self, data: Any) -> None:
        print(json.dumps(data, indent=2, ensure_ascii=False), file=self.out)

    def _result(self, data: Any, text: str) -> None:
        if self.json_mode:
            self.emit(data)
        else:
            self.line(text)

    def error(self, exc: LopenMemoryError) -> None:
        if self.json_mode:
            print(json.dumps({"error": exc.to_dict()}, indent=2, ensure_ascii=False), file=self.err)
        else:
            print(f"error: {exc}", file=self.err)

    # Hierarchy

    def added(self, entity: Project | WorkItem | Research, parent_name: str | None = None) -> None:
        text = f"added {entity.kind.value} {entity.id}: {entity.name}"
        if parent_name is not None:
            text += f" ({entity.kind.parent.value}: {parent_name})"
        self._result(entity.to_dict(), text)

    def projects(self, projects: list[Project]) -> None:
        if self.json_mode:
            self.emit([p.to_dict() for p in projects])
            return
        if not projects:
            self.line("no projects found")
        for p in projects:
            status = "complete" if p.completed else "incomplete"
            self.line(f"{p.id:<4} {p.name:<20} {p.path:<40} {status}")

    def items(self, kind: EntityKind, items: list[WorkItem]) -> None:
        if self.json_mode:
            self.emit([item.to_dict() for item in items])
            return
        if not items:
            self.line(f"no {kind.table} found")
        for item in items:
            self.line(f"{item.id:<4} {item.name:<20} {item.state.value:<12} {item.last_worked_on}")

    def show(self, view: EntityView) -> None:
        entity = view.entity
        if isinstance(entity, Research):
            self._show_research(view)
            return

        kind = entity.kind
        child_key = kind.child.table if kind.child else None
        if self.json_mode:
            data = entity.to_dict()
            if child_key:
                data[child_key] = [c.to_dict() for c in view.children]
            data["research"] = [r.to_dict() for r in view.research]
            self.emit(data)
            return

        self.line(field("id", entity.id))
        self.line(field("name", entity.name))
        if isinstance(entity, Project):
            self.line(field("path", entity.path))
            self.line(field("description", entity.description))
            self.line(field("completed", "true" if entity.completed else "false"))
            self.line(field("updated_at", entity.updated_at))
        else:
            self.line(field(kind.parent.value, view.parent_name or ""))
            self.line(field("description", entity.description))
            self.line(field("details", entity.details))
            self.line(field("state", entity.state.value))
            self.line(field("last_worked_on", entity.last_worked_on))
        if view.children:
            self.line()
            self.line(f"{child_key}:")
            for child in view.children:
                self.line(_summary_line(child))
        if view.research:
            self.line()
            self.line("research:")
            for research in view.research:
                self.line(_summary_line(research))

    def renamed(self, entity: Project | WorkItem | Research, old_name: str) -> None:
        self._result(
            entity.to_dict(),
            f"renamed {entity.kind.value} {entity.id}: {old_name} → {entity.name}",
        )

    def updated(self, entity: Project | WorkItem | Research, what: str, suffix: str = "") -> None:
        text = f"updated {what} for {entity.kind.value}: {entity.name}"
        if suffix:
            text += f" → {suffix}"
        self._result(entity.to_dict(), text)

    def completed(self, project: Project) -> None:
        verb = "marked complete" if project.completed else "reopened"
        self._result(project.to_dict(), f"project {project.name} {verb}")

    def transitioned(self, result: TransitionResult) -> None:
        item = result.item
        if self.json_mode:
            self.emit({**item.to_dict(), "from": result.from_state.value, "changed": result.changed})
        elif result.changed:
            self.line(f"{item.kind.value} {item.name}: {result.from_state} → {result.to_state}")
        else:
            self.line(f"{item.kind.value} {item.name} is already {result.to_state}")

    def removed(self, result: RemovalResult) -> None:
        self._result(result.to_dict(), f"removed {result.kind.value} {result.id}: {result.name}")

    # Research

    def research_list(self, records: list[Research], empty: str = "no research found") -> None:
        if self.json_mode:
            self.emit([r.to_dict() for r in records])
            return
        if not records:
            self.line(empty)
        for r in records:
            self.line(f"{r.id:<4} {r.name:<24} {r.researched_at[:10]}  {r.description}")

    def _show_research(self, view: EntityView) -> None:
        r = view.entity
        if self.json_mode:
            self.emit({**r.to_dict(), "linked_to": [link.to_dict() for link in view.links]})
            return
        self.line(field("id", r.id))
        self.line(field("name", r.name))
        self.line(field("description", r.description))
        self.line(field("source", r.source))
        self.line(field("researched_at", r.researched_at))
        self.line(field("created_at", r.created_at))
        self.line(field("updated_at", r.updated_at))
        if r.content:
            self.line()
            self.line("content:")
            self.line(indent_content(r.content))
        if view.links:
            self.line()
            self.line("linked to:")
            for link in view.links:
                self.line(_link_line(link))

    def link_changed(self, result: LinkResult) -> None:
        kind = result.target_kind.value
        data = {
            "linked": result.linked,
            "changed": result.changed,
            "research": result.research.name,
            kind: result.target_name,
        }
        if result.linked:
            text = f"linked research {result.research.name} → {kind}: {result.target_name}"
        else:
            text = f"unlinked research {result.research.name} from {kind}: {result.target_name}"
        self._result(data, text)

    def links(self, links: list[LinkedEntity]) -> None:
        if self.json_mode:
            self.emit([link.to_dict() for link in links])
            return
        if not links:
            self.line("no links found for this research")
        for link in links:
            self.line(_link_line(link))

    def skill_installed(self, path: str) -> None:
        self._result({"installed": True, "path": path}, f"skill installed: {path}")
