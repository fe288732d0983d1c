"""
Canonical workflow types (``inventory_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document state machines.  The transaction lifecycle
in ``inventory_services.workflows`` is declared with these types, and the
Transaction Engine consults ``Workflow.find_transition`` before any stock
effect runs.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* No self-transitions: a state never transitions to itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class StockEffect(str, Enum):
    """What a transition does to item stock."""

    NONE = "none"
    APPLY = "apply"  # inflow for purchases, outflow for sales
    REVERSE = "reverse"  # undo whatever was applied


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Descriptive only; the engine evaluates it.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    stock_effect: StockEffect = StockEffect.NONE


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    ``terminal_states`` have no outgoing transitions.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"{self.name}: initial state '{self.initial_state}' not in states"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"{self.name}: transition {t.from_state} -> {t.to_state} "
                    "references an unknown state"
                )
            if t.from_state == t.to_state:
                raise ValueError(f"{self.name}: self-transition on '{t.from_state}'")
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"{self.name}: terminal state '{t.from_state}' has an outgoing transition"
                )

    def find_transition(self, from_state: str, to_state: str) -> Transition | None:
        """Return the transition from -> to, or None if not permitted."""
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None

    def transitions_from(self, state: str) -> tuple[Transition, ...]:
        return tuple(t for t in self.transitions if t.from_state == state)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states
