"""
lopen-memory - persistent structured memory for LLM coding agents.

Package structure:
- core: config, logging, error taxonomy, shared types
- memory: SQLite store, reference resolution, lifecycle, integrity, research links
- work: command operations for the hierarchy and research records
- output: plain text / JSON presentation
- cli: command-line entry point
"""

__version__ = "0.1.0"
