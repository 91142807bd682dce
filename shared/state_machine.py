from enum import Enum
from typing import List
from dataclasses import dataclass


class SessionState(str, Enum):
    REGISTERING = "registering"
    TEAMS_FORMED = "teams_formed"
    ACTIVE = "active"


class AssignmentStatus(str, Enum):
    AVAILABLE = "available"
    CURRENT = "current"
    COMPLETED = "completed"


class TransitionError(Exception):
    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from {from_state} to {to_state}"
        super().__init__(self.reason)


@dataclass
class Transition:
    from_state: SessionState
    to_state: SessionState
    action: str


class SessionStateMachine:
    TRANSITIONS = [
        Transition(SessionState.REGISTERING, SessionState.TEAMS_FORMED, "form_teams"),
        Transition(SessionState.TEAMS_FORMED, SessionState.ACTIVE, "distribute"),
    ]

    ALLOWED_ACTIONS = {
        SessionState.REGISTERING: ["register_participant", "form_teams"],
        SessionState.TEAMS_FORMED: ["register_participant", "assign_participant", "distribute"],
        SessionState.ACTIVE: ["register_participant", "assign_participant", "update_status"],
    }

    def __init__(self, initial_state: SessionState = SessionState.REGISTERING):
        self._state = initial_state

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def allowed_actions(self) -> List[str]:
        return self.ALLOWED_ACTIONS.get(self._state, [])

    def transition(self, action: str) -> SessionState:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                self._state = t.to_state
                return self._state

        raise TransitionError(
            self._state.value,
            "unknown",
            f"No valid transition for action '{action}' from state '{self._state.value}'"
        )

    @classmethod
    def from_state_string(cls, state_str: str) -> "SessionStateMachine":
        try:
            state = SessionState(state_str)
        except ValueError:
            state = SessionState.REGISTERING
        return cls(initial_state=state)


def is_valid_status(label: str) -> bool:
    return label in [s.value for s in AssignmentStatus]
