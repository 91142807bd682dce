import logging
from typing import List

from sqlalchemy import func

from .models import db, Participant, Team, TeamMember
from .errors import PreconditionError, NotFoundError
from .roles import get_role, role_for_position
from .transaction import atomic
from shared.events import membership_changed_event
from shared.pubsub import EventPublisher

logger = logging.getLogger(__name__)


class TeamRoster:
    """
    Operator changes to team membership after formation: placing late
    arrivals, moving people between teams, and changing roles. Every write
    here is checked by the session isolation hook on flush.
    """

    def __init__(self, publisher: EventPublisher = None):
        self.publisher = publisher or EventPublisher()

    def _get_participant(self, participant_id: str) -> Participant:
        participant = db.session.get(Participant, participant_id)
        if participant is None:
            raise NotFoundError(
                f"Participant {participant_id} not found",
                code='unknown_participant',
                details={'participant_id': participant_id}
            )
        return participant

    def _get_team(self, team_id: str) -> Team:
        team = db.session.get(Team, team_id)
        if team is None:
            raise NotFoundError(f"Team {team_id} not found", code='unknown_team', details={'team_id': team_id})
        return team

    def _get_member(self, participant_id: str) -> TeamMember:
        member = (
            TeamMember.query
            .filter_by(participant_id=participant_id)
            .with_for_update()
            .first()
        )
        if member is None:
            self._get_participant(participant_id)
            raise PreconditionError(
                f"Participant {participant_id} is not on a team yet",
                code='not_assigned',
                details={'participant_id': participant_id}
            )
        return member

    def _next_position(self, session_id: str) -> int:
        highest = (
            db.session.query(func.max(TeamMember.position))
            .join(Team, Team.id == TeamMember.team_id)
            .filter(Team.session_id == session_id)
            .scalar()
        )
        return 0 if highest is None else highest + 1

    def assign_participant(self, participant_id: str, team_id: str, role_name: str = None) -> TeamMember:
        """Place a participant who has no team yet (e.g. registered after formation)."""
        with atomic():
            participant = self._get_participant(participant_id)
            if participant.membership is not None:
                raise PreconditionError(
                    f"Participant {participant_id} is already on team {participant.membership.team_id}",
                    code='duplicate',
                    details={'participant_id': participant_id, 'team_id': participant.membership.team_id}
                )

            team = self._get_team(team_id)
            position = self._next_position(team.session_id)
            role = get_role(role_name) if role_name else role_for_position(position)

            member = TeamMember(
                team_id=team_id,
                participant_id=participant_id,
                role_name=role.name,
                role_description=role.description,
                role_icon=role.icon,
                position=position
            )
            db.session.add(member)
            db.session.flush()
            session_id = team.session_id

        logger.info(f"Assigned participant {participant_id} to team {team_id} as {role.name}")
        self.publisher.publish_session_event(
            session_id,
            membership_changed_event(session_id, participant_id, team_id, role.name)
        )
        return member

    def move_participant(self, participant_id: str, new_team_id: str) -> TeamMember:
        with atomic():
            member = self._get_member(participant_id)
            old_team_id = member.team_id
            member.team_id = new_team_id
            db.session.flush()
            team = self._get_team(new_team_id)
            session_id = team.session_id

        logger.info(f"Moved participant {participant_id} from team {old_team_id} to {new_team_id}")
        self.publisher.publish_session_event(
            session_id,
            membership_changed_event(session_id, participant_id, new_team_id, member.role_name)
        )
        return member

    def move_members(self, from_team_id: str, to_team_id: str) -> List[TeamMember]:
        """Move a whole team's member list onto another team of the same session."""
        with atomic():
            self._get_team(from_team_id)
            target = self._get_team(to_team_id)
            members = (
                TeamMember.query
                .filter_by(team_id=from_team_id)
                .order_by(TeamMember.position)
                .with_for_update()
                .all()
            )
            for member in members:
                member.team_id = to_team_id
            db.session.flush()
            session_id = target.session_id

        logger.info(f"Moved {len(members)} members from team {from_team_id} to {to_team_id}")
        for member in members:
            self.publisher.publish_session_event(
                session_id,
                membership_changed_event(session_id, member.participant_id, to_team_id, member.role_name)
            )
        return members

    def update_member_role(self, participant_id: str, role_name: str) -> TeamMember:
        role = get_role(role_name)
        with atomic():
            member = self._get_member(participant_id)
            member.role_name = role.name
            member.role_description = role.description
            member.role_icon = role.icon
            db.session.flush()
            session_id = member.team.session_id
            team_id = member.team_id

        logger.info(f"Participant {participant_id} is now {role.name}")
        self.publisher.publish_session_event(
            session_id,
            membership_changed_event(session_id, participant_id, team_id, role.name)
        )
        return member
