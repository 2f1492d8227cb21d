"""Lifecycle state machine shared by modules, features and tasks.

Forward progress is strictly sequential. Any started item may be reset to
Draft; Amending may only go back to Draft.
"""

from lopen_memory.core.errors import InvalidTransitionError
from lopen_memory.core.types import State

TRANSITIONS: dict[State, frozenset[State]] = {
    State.DRAFT: frozenset({State.PLANNING}),
    State.PLANNING: frozenset({State.BUILDING, State.DRAFT}),
    State.BUILDING: frozenset({State.COMPLETE, State.DRAFT}),
    State.COMPLETE: frozenset({State.AMENDING, State.DRAFT}),
    State.AMENDING: frozenset({State.DRAFT}),
}


def allowed_transitions(current: State) -> frozenset[State]:
    """Targets reachable from ``current`` in one step."""
    return TRANSITIONS[current]


def can_transition(current: State, target: State) -> bool:
    return target in TRANSITIONS[current]


def validate_transition(
    current: State | str,
    target: State | str,
    entity: str = "item",
    name: str = "",
) -> bool:
    """Check a requested transition.

    Returns:
        True when the state must change, False for a no-op (already in
        ``target``).

    Raises:
        ValidationError: a state name is not one of the five states
        InvalidTransitionError: ``target`` is not reachable from ``current``
    """
    current = State.parse(current)
    target = State.parse(target)
    if current is target:
        return False
    if not can_transition(current, target):
        raise InvalidTransitionError(entity, name, current.value, target.value)
    return True
