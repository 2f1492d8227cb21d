"""
Core module - configuration, errors, shared types.

Components:
- config: Settings management via pydantic-settings
- errors: Tagged error taxonomy with exit codes
- types: Lifecycle states, entity kinds and records
- logging: Structured logging setup
"""

from lopen_memory.core.config import Settings
from lopen_memory.core.errors import LopenMemoryError
from lopen_memory.core.types import EntityKind, State

__all__ = ["Settings", "LopenMemoryError", "EntityKind", "State"]
