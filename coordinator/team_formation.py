import logging
import math
import random
from datetime import datetime
from typing import Optional, List

from sqlalchemy.exc import IntegrityError

from .models import db, Participant, Team, TeamMember
from .errors import ValidationError, PreconditionError, NotFoundError
from .name_generator import team_name
from .roles import role_for_position
from .transaction import atomic, lock_session, on_commit
from shared.events import teams_formed_event, state_changed_event
from shared.pubsub import EventPublisher
from shared.state_machine import SessionStateMachine, TransitionError

logger = logging.getLogger(__name__)


class TeamFormationEngine:
    """
    Partitions a session's participants into teams, once per session.

    The partition is a fresh random permutation dealt round-robin across
    ceil(N / k) teams, so team sizes differ by at most one. Roles cycle by
    global placement order, not per team.
    """

    def __init__(self, publisher: EventPublisher = None):
        self.publisher = publisher or EventPublisher()

    def form_teams(self, session_id: str, team_size: int, rng: Optional[random.Random] = None) -> dict:
        if isinstance(team_size, bool) or not isinstance(team_size, int) or team_size < 1:
            raise ValidationError(
                f"Desired team size must be at least 1, got {team_size}",
                code='invalid_size',
                details={'session_id': session_id, 'team_size': team_size}
            )
        rng = rng or random.Random()

        try:
            with atomic():
                session = lock_session(session_id)

                existing = Team.query.filter_by(session_id=session_id).count()
                if existing > 0:
                    raise PreconditionError(
                        f"Teams already exist for session {session_id} ({existing} teams). "
                        f"Cannot recreate teams - refresh to see them.",
                        code='already_formed',
                        details={'session_id': session_id, 'teams': existing}
                    )

                participants = (
                    Participant.query
                    .filter_by(session_id=session_id)
                    .order_by(Participant.created_at, Participant.id)
                    .all()
                )
                count = len(participants)
                if count < 1:
                    raise PreconditionError(
                        f"Need at least 1 participant to form teams in session {session_id}, found {count}",
                        code='too_few_participants',
                        details={'session_id': session_id, 'participant_count': count, 'needed': 1}
                    )

                sm = SessionStateMachine.from_state_string(session.status)
                try:
                    old_state = sm.state.value
                    new_state = sm.transition('form_teams')
                except TransitionError as e:
                    raise PreconditionError(
                        f"Cannot form teams for session {session_id}: {e}",
                        code='already_formed',
                        details={'session_id': session_id, 'status': session.status}
                    )

                team_count = math.ceil(count / team_size)
                logger.info(
                    f"Forming {team_count} teams of target size {team_size} "
                    f"from {count} participants in session {session_id}"
                )

                shuffled = list(participants)
                rng.shuffle(shuffled)

                teams = [
                    Team(session_id=session_id, name=team_name(index), team_index=index)
                    for index in range(team_count)
                ]
                db.session.add_all(teams)

                for position, participant in enumerate(shuffled):
                    team = teams[position % team_count]
                    role = role_for_position(position)
                    logger.debug(
                        f"Placing participant {position + 1} on {team.name} as {role.name}"
                    )
                    db.session.add(TeamMember(
                        team=team,
                        participant=participant,
                        role_name=role.name,
                        role_description=role.description,
                        role_icon=role.icon,
                        position=position
                    ))

                session.status = new_state.value
                session.teams_formed_at = datetime.utcnow()
                db.session.flush()

                result = self._summary(session_id, teams, count)
        except IntegrityError:
            # A concurrent formation committed first
            raise PreconditionError(
                f"Teams already exist for session {session_id}. Cannot recreate teams - refresh to see them.",
                code='already_formed',
                details={'session_id': session_id}
            )

        logger.info(f"Team formation completed for session {session_id}")
        on_commit(
            self.publisher.publish_session_event,
            session_id,
            teams_formed_event(session_id, result['teams_created'], result['participants_assigned'])
        )
        on_commit(
            self.publisher.publish_session_event,
            session_id,
            state_changed_event(session_id, old_state, new_state.value)
        )
        return result

    def _summary(self, session_id: str, teams: List[Team], participant_count: int) -> dict:
        per_team = []
        for team in teams:
            members = sorted(team.members, key=lambda m: m.position)
            per_team.append({
                'team_id': team.id,
                'team_name': team.name,
                'team_index': team.team_index,
                'member_count': len(members),
                'members': [
                    {
                        'participant_id': m.participant.id,
                        'display_name': m.participant.display_name,
                        'handle': m.participant.handle,
                        'role_name': m.role_name,
                        'role_icon': m.role_icon,
                        'position': m.position,
                    }
                    for m in members
                ],
            })

        return {
            'session_id': session_id,
            'teams_created': len(teams),
            'participants_assigned': participant_count,
            'unassigned_participants': participant_count - sum(t['member_count'] for t in per_team),
            'per_team_members': per_team,
        }

    def list_teams(self, session_id: str) -> List[Team]:
        return Team.query.filter_by(session_id=session_id).order_by(Team.team_index).all()

    def get_team(self, team_id: str) -> Team:
        team = db.session.get(Team, team_id)
        if team is None:
            raise NotFoundError(f"Team {team_id} not found", code='unknown_team', details={'team_id': team_id})
        return team
