import logging
from typing import Optional, Tuple, List

from sqlalchemy.exc import IntegrityError

from .models import db, MappingSession, Participant, TeamMember
from .errors import ValidationError, PreconditionError, NotFoundError
from .name_generator import session_display_name
from shared.events import session_created_event, participant_registered_event
from shared.pubsub import EventPublisher
from shared.state_machine import SessionState, SessionStateMachine

logger = logging.getLogger(__name__)

MAX_SESSION_ID_LENGTH = 50
DEFAULT_COORDINATOR_SUFFIXES = ('-COORD', '-ADMIN', 'COORD', 'ADMIN')


def clean_session_id(raw: str, suffixes=DEFAULT_COORDINATOR_SUFFIXES) -> Tuple[str, bool]:
    """
    Normalize a typed session code.

    Codes are case-insensitive; a coordinator suffix ('GRID2025-COORD')
    marks a coordinator login for the same session.
    """
    if not raw or not raw.strip():
        raise ValidationError("Session ID is required", code='missing_field', details={'field': 'session_id'})

    code = raw.strip().upper()
    is_coordinator = False
    for suffix in suffixes:
        if suffix in code:
            code = code.replace(suffix, '')
            is_coordinator = True

    if not code:
        raise ValidationError(
            f"Session ID '{raw}' has no session part",
            code='missing_field',
            details={'field': 'session_id'}
        )
    return code, is_coordinator


class SessionRegistry:
    """
    Sessions and their participants:
    - Lazily create sessions on first reference
    - Register participants (append-only, one handle per session)
    - Participant listings with team and role
    """

    def __init__(self, publisher: EventPublisher = None):
        self.publisher = publisher or EventPublisher()

    def get_session(self, session_id: str) -> MappingSession:
        session = db.session.get(MappingSession, session_id)
        if session is None:
            raise NotFoundError(
                f"Session {session_id} not found",
                code='unknown_session',
                details={'session_id': session_id}
            )
        return session

    def ensure_session(self, session_id: str) -> dict:
        """Return the session, creating it in 'registering' state if it does not exist yet."""
        session_id = (session_id or '').strip()
        if not session_id:
            raise ValidationError("Session ID is required", code='missing_field', details={'field': 'session_id'})
        if len(session_id) > MAX_SESSION_ID_LENGTH:
            raise ValidationError(
                f"Session ID must be at most {MAX_SESSION_ID_LENGTH} characters",
                code='invalid_input',
                details={'session_id': session_id}
            )

        session = db.session.get(MappingSession, session_id)
        if session is not None:
            return {'created': False, 'session': session}

        session = MappingSession(
            id=session_id,
            name=session_display_name(session_id),
            status=SessionState.REGISTERING.value
        )
        db.session.add(session)
        try:
            db.session.commit()
        except IntegrityError:
            # Another caller created it first
            db.session.rollback()
            return {'created': False, 'session': self.get_session(session_id)}

        logger.info(f"Created new session: {session_id}")
        self.publisher.publish_session_event(session_id, session_created_event(session_id))
        return {'created': True, 'session': session}

    def register_participant(self, display_name: str, handle: str, session_id: str) -> Participant:
        display_name = (display_name or '').strip()
        handle = (handle or '').strip()
        session_id = (session_id or '').strip()

        if not display_name or not handle or not session_id:
            raise ValidationError(
                "Display name, handle, and session ID are required",
                code='missing_field',
                details={'display_name': display_name, 'handle': handle, 'session_id': session_id}
            )

        self.get_session(session_id)

        if self.find_participant(handle, session_id) is not None:
            raise PreconditionError(
                f"'{handle}' is already registered in session {session_id}",
                code='duplicate',
                details={'handle': handle, 'session_id': session_id}
            )

        participant = Participant(display_name=display_name, handle=handle, session_id=session_id)
        db.session.add(participant)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise PreconditionError(
                f"'{handle}' is already registered in session {session_id}",
                code='duplicate',
                details={'handle': handle, 'session_id': session_id}
            )

        logger.info(f"Registered participant {display_name} (@{handle}) for session {session_id}")
        self.publisher.publish_session_event(
            session_id,
            participant_registered_event(session_id, participant.id, handle)
        )
        return participant

    def get_participant(self, participant_id: str) -> Participant:
        participant = db.session.get(Participant, participant_id)
        if participant is None:
            raise NotFoundError(
                f"Participant {participant_id} not found",
                code='unknown_participant',
                details={'participant_id': participant_id}
            )
        return participant

    def find_participant(self, handle: str, session_id: str = None) -> Optional[Participant]:
        query = Participant.query.filter_by(handle=handle)
        if session_id:
            query = query.filter_by(session_id=session_id)
        return query.order_by(Participant.created_at.desc()).first()

    def list_participants(self, session_id: str) -> dict:
        """Participants in registration order, with their team and role when assigned."""
        session = self.get_session(session_id)

        rows = (
            db.session.query(Participant, TeamMember)
            .outerjoin(TeamMember, TeamMember.participant_id == Participant.id)
            .filter(Participant.session_id == session_id)
            .order_by(Participant.created_at, Participant.id)
            .all()
        )

        participants: List[dict] = []
        for participant, member in rows:
            entry = participant.to_dict()
            entry['team_assigned'] = member is not None
            entry['team_id'] = member.team_id if member else None
            entry['team_name'] = member.team.name if member else None
            entry['team_index'] = member.team.team_index if member else None
            entry['role_name'] = member.role_name if member else None
            entry['role_description'] = member.role_description if member else None
            entry['role_icon'] = member.role_icon if member else None
            participants.append(entry)

        return {
            'session_id': session_id,
            'session_status': session.status,
            'participant_count': len(participants),
            'team_formation_ready': len(participants) >= 1,
            'participants': participants,
        }

    def get_participant_team(self, participant_id: str) -> dict:
        """The participant's team, role and teammates; team is None before formation."""
        participant = self.get_participant(participant_id)
        member = participant.membership
        if member is None:
            return {'participant': participant.to_dict(), 'team': None, 'role': None}

        return {
            'participant': participant.to_dict(),
            'team': member.team.to_dict(include_members=True),
            'role': {
                'role_name': member.role_name,
                'role_description': member.role_description,
                'role_icon': member.role_icon,
            },
        }

    def session_state(self, session_id: str) -> dict:
        session = self.get_session(session_id)
        sm = SessionStateMachine.from_state_string(session.status)
        data = session.to_dict()
        data['allowed_actions'] = sm.allowed_actions
        return data
