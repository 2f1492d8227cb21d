"""
Error taxonomy.

Every error carries structured fields so callers can match on kind; the
message is rendered from those fields on demand. ``exit_code`` is what the
command surface returns when the error reaches it.
"""

from typing import Any


class LopenMemoryError(Exception):
    """Base class for all recoverable command errors."""

    kind = "error"
    exit_code = 1

    def message(self) -> str:
        return self.kind

    def fields(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message(), **self.fields()}

    def __str__(self) -> str:
        return self.message()


class NotFoundError(LopenMemoryError):
    kind = "not_found"

    def __init__(self, entity: str, token: str):
        super().__init__(entity, token)
        self.entity = entity
        self.token = str(token)

    def message(self) -> str:
        return f"{self.entity} not found: {self.token}"

    def fields(self) -> dict[str, Any]:
        return {"entity": self.entity, "token": self.token}


class AmbiguousError(LopenMemoryError):
    kind = "ambiguous"

    def __init__(self, entity: str, token: str, flag: str):
        super().__init__(entity, token, flag)
        self.entity = entity
        self.token = token
        self.flag = flag

    def message(self) -> str:
        return (
            f"{self.entity} name '{self.token}' is ambiguous; "
            f"specify --{self.flag} to narrow scope"
        )

    def fields(self) -> dict[str, Any]:
        return {"entity": self.entity, "token": self.token, "flag": self.flag}


class ValidationError(LopenMemoryError):
    kind = "validation"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def message(self) -> str:
        return self.reason

    def fields(self) -> dict[str, Any]:
        return {"reason": self.reason}


class DuplicateNameError(ValidationError):
    """A name already exists in the scope it must be unique in."""

    kind = "duplicate_name"

    def __init__(self, entity: str, name: str, scope: str | None = None):
        where = f" in {scope}" if scope else ""
        super().__init__(f"{entity} '{name}' already exists{where}")
        self.entity = entity
        self.name = name
        self.scope = scope

    def fields(self) -> dict[str, Any]:
        return {"reason": self.reason, "entity": self.entity, "name": self.name, "scope": self.scope}


class ConflictHasChildrenError(LopenMemoryError):
    kind = "has_children"

    def __init__(self, entity: str, count: int, child: str, flag: str = "cascade"):
        super().__init__(entity, count, child, flag)
        self.entity = entity
        self.count = count
        self.child = child
        self.flag = flag

    def message(self) -> str:
        return f"{self.entity} has {self.count} {self.child}(s); pass --{self.flag} to remove them"

    def fields(self) -> dict[str, Any]:
        return {"entity": self.entity, "count": self.count, "child": self.child, "flag": self.flag}


class InvalidTransitionError(LopenMemoryError):
    kind = "invalid_transition"

    def __init__(self, entity: str, name: str, from_state: str, to_state: str):
        super().__init__(entity, name, from_state, to_state)
        self.entity = entity
        self.name = name
        self.from_state = from_state
        self.to_state = to_state

    def message(self) -> str:
        return f"invalid transition: {self.from_state} → {self.to_state} for {self.entity} {self.name}"

    def fields(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "name": self.name,
            "from": self.from_state,
            "to": self.to_state,
        }


class StorageError(LopenMemoryError):
    """Persistence layer failure. Never retried."""

    kind = "storage"
    exit_code = 2

    def __init__(self, cause: BaseException | str):
        super().__init__(cause)
        self.cause = cause

    def message(self) -> str:
        return str(self.cause)

    def fields(self) -> dict[str, Any]:
        return {"cause": type(self.cause).__name__ if isinstance(self.cause, BaseException) else "storage"}
