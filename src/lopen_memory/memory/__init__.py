"""
Memory module - persistence and the rules around it.

Layers:
- store: SQLite tables, foreign-key cascades, transactions
- resolver: token -> row id with parent-scope disambiguation
- lifecycle: Draft -> Planning -> Building -> Complete -> Amending
- integrity: block-or-cascade deletion of hierarchy nodes
- links: idempotent research associations

Storage: SQLite (WAL)
"""
