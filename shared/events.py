from enum import Enum
from dataclasses import dataclass
from datetime import datetime
import json


class EventType(str, Enum):
    # Session lifecycle
    SESSION_CREATED = "session.created"
    STATE_CHANGED = "state.changed"

    # Registration and teams
    PARTICIPANT_REGISTERED = "participant.registered"
    TEAMS_FORMED = "teams.formed"
    MEMBERSHIP_CHANGED = "membership.changed"

    # Territories
    TERRITORIES_DISTRIBUTED = "territories.distributed"
    ASSIGNMENT_STATUS_CHANGED = "assignment.status_changed"


@dataclass
class Event:
    type: EventType
    session_id: str
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.utcnow().isoformat() + "Z"
        if self.data is None:
            self.data = {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        return cls(
            type=EventType(data["type"]) if data["type"] in [e.value for e in EventType] else data["type"],
            session_id=data["session_id"],
            timestamp=data.get("timestamp"),
            data=data.get("data", {})
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        return cls.from_dict(json.loads(json_str))


def state_changed_event(session_id: str, from_state: str, to_state: str) -> Event:
    return Event(
        type=EventType.STATE_CHANGED,
        session_id=session_id,
        data={
            "from_state": from_state,
            "to_state": to_state
        }
    )


def session_created_event(session_id: str) -> Event:
    return Event(type=EventType.SESSION_CREATED, session_id=session_id)


def participant_registered_event(session_id: str, participant_id: str, handle: str) -> Event:
    return Event(
        type=EventType.PARTICIPANT_REGISTERED,
        session_id=session_id,
        data={
            "participant_id": participant_id,
            "handle": handle
        }
    )


def teams_formed_event(session_id: str, teams_created: int, participants_assigned: int) -> Event:
    return Event(
        type=EventType.TEAMS_FORMED,
        session_id=session_id,
        data={
            "teams_created": teams_created,
            "participants_assigned": participants_assigned
        }
    )


def membership_changed_event(session_id: str, participant_id: str, team_id: str, role_name: str) -> Event:
    return Event(
        type=EventType.MEMBERSHIP_CHANGED,
        session_id=session_id,
        data={
            "participant_id": participant_id,
            "team_id": team_id,
            "role_name": role_name
        }
    )


def territories_distributed_event(session_id: str, teams_count: int, regions_distributed: int) -> Event:
    return Event(
        type=EventType.TERRITORIES_DISTRIBUTED,
        session_id=session_id,
        data={
            "teams_count": teams_count,
            "regions_distributed": regions_distributed
        }
    )


def assignment_status_event(session_id: str, assignment_id: str, old_status: str, new_status: str) -> Event:
    return Event(
        type=EventType.ASSIGNMENT_STATUS_CHANGED,
        session_id=session_id,
        data={
            "assignment_id": assignment_id,
            "old_status": old_status,
            "new_status": new_status
        }
    )
