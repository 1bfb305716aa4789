from __future__ import annotations
"""Simple finite state machine utility for enforcing allowed status transitions.

Used for the repair lifecycle and the estimate approval workflow.
Usage:
    from repair_tracker.utils.fsm import TransitionValidator
    ESTIMATE_FSM = TransitionValidator({
        'Not Required': {'Pending'},
        'Pending': {'Approved', 'Declined'},
        'Approved': set(),
        'Declined': set(),
    }, field_name='estimate_status')
    ESTIMATE_FSM.assert_can_transition(current, target)

Raises InvalidStateError if invalid.
"""
from typing import Dict, Iterable, Set
from repair_tracker.errors import InvalidStateError

class TransitionValidator:
    def __init__(self, graph: Dict[str, Set[str]], field_name: str = 'status'):
        self.graph = {str(k): {str(v) for v in vs} for k, vs in graph.items()}
        self.field_name = field_name

    def can_transition(self, current, target) -> bool:
        return str(target) in self.graph.get(str(current), set())

    def assert_can_transition(self, current, target):
        if not self.can_transition(current, target):
            raise InvalidStateError(f"Invalid {self.field_name} transition {current} -> {target}")
        return True

    def terminal_states(self) -> Iterable[str]:
        return sorted(s for s, nxt in self.graph.items() if not nxt)

    def states(self):
        return list(self.graph.keys())

__all__ = ['TransitionValidator']
