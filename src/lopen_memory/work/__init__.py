"""
Work module - command operations over the store.

Components:
- manager: projects, modules, features, tasks
- research: research records, search and links
"""

from lopen_memory.work.manager import HierarchyManager
from lopen_memory.work.research import ResearchManager

__all__ = ["HierarchyManager", "ResearchManager"]
