"""
Document lifecycle state machines.

Each lifecycle (purchase order, ASN, receipt session) is a frozen
``Workflow``: a closed set of states and the named actions that move
between them. Services never assign ``status`` directly; they ask the
workflow for the target state of an action and get an
``InvalidStateError`` back when the action is illegal from the current
state. The tables are pure data and are unit-tested exhaustively.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple, Union

from inbound.core.enum_utils import get_enum_value
from inbound.core.exceptions import InvalidStateError


StateLike = Union[str, Enum]


@dataclass(frozen=True)
class Transition:
    """A named action legal from any of ``from_states`` that lands in ``to_state``."""
    action: str
    from_states: Tuple[str, ...]
    to_state: str


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    ``transitions`` reference only members of ``states``; terminal states
    have no outgoing transitions.
    """
    name: str
    initial_state: str
    states: Tuple[str, ...]
    transitions: Tuple[Transition, ...]
    terminal_states: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.initial_state not in self.states:
            raise ValueError(f"{self.name}: initial state {self.initial_state} is not a state")
        for transition in self.transitions:
            unknown = [
                s for s in (*transition.from_states, transition.to_state)
                if s not in self.states
            ]
            if unknown:
                raise ValueError(f"{self.name}.{transition.action}: unknown states {unknown}")
            leaving_terminal = set(transition.from_states) & set(self.terminal_states)
            if leaving_terminal:
                raise ValueError(
                    f"{self.name}.{transition.action}: leaves terminal states {sorted(leaving_terminal)}"
                )

    def _find(self, action: str) -> Transition:
        for transition in self.transitions:
            if transition.action == action:
                return transition
        raise KeyError(f"{self.name} has no action '{action}'")

    def can(self, current: StateLike, action: str) -> bool:
        return get_enum_value(current) in self._find(action).from_states

    def target(self, current: StateLike, action: str) -> str:
        """Return the state ``action`` leads to from ``current``.

        Raises:
            InvalidStateError: the action is not legal from ``current``.
        """
        transition = self._find(action)
        state = get_enum_value(current)
        if state not in transition.from_states:
            raise InvalidStateError(self.name, state, action)
        return transition.to_state

    def actions_from(self, current: StateLike) -> list[str]:
        state = get_enum_value(current)
        return [t.action for t in self.transitions if state in t.from_states]

    def is_terminal(self, current: StateLike) -> bool:
        return get_enum_value(current) in self.terminal_states


def states(*members: Enum) -> Tuple[str, ...]:
    return tuple(get_enum_value(m) for m in members)


def ensure_state(
    entity: str,
    current: StateLike,
    allowed: Iterable[StateLike],
    action: str,
    message: Optional[str] = None,
) -> None:
    """Guard for actions that do not change state (edits, scans)."""
    state = get_enum_value(current)
    if state not in {get_enum_value(a) for a in allowed}:
        raise InvalidStateError(entity, state, action, message)
