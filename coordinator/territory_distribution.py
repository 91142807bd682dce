import logging
from datetime import datetime

from sqlalchemy import func

from .models import db, MappingSession, Team, Region, TerritoryAssignment
from .errors import PreconditionError, NotFoundError
from .transaction import atomic, lock_session, on_commit
from shared.events import territories_distributed_event, state_changed_event
from shared.pubsub import EventPublisher
from shared.state_machine import SessionStateMachine, AssignmentStatus, TransitionError

logger = logging.getLogger(__name__)


class TerritoryDistributionEngine:
    """
    Deals every active catalog region to a session's teams, once per session.

    Regions are taken in name order and dealt round-robin by team_index, so
    per-team counts differ by at most one and the result is reproducible.
    """

    def __init__(self, publisher: EventPublisher = None):
        self.publisher = publisher or EventPublisher()

    def distribute_territories(self, session_id: str) -> dict:
        with atomic():
            session = lock_session(session_id)

            teams = Team.query.filter_by(session_id=session_id).order_by(Team.team_index).all()
            team_count = len(teams)
            if team_count == 0:
                raise PreconditionError(
                    f"No teams found for session {session_id}. Create teams first.",
                    code='no_teams',
                    details={'session_id': session_id}
                )

            existing = TerritoryAssignment.query.filter_by(session_id=session_id).count()
            if existing > 0:
                raise PreconditionError(
                    f"Territories already distributed for session {session_id} "
                    f"({existing} assignments). Cannot redistribute.",
                    code='already_distributed',
                    details={'session_id': session_id, 'assignments': existing}
                )

            sm = SessionStateMachine.from_state_string(session.status)
            try:
                old_state = sm.state.value
                new_state = sm.transition('distribute')
            except TransitionError as e:
                raise PreconditionError(
                    f"Cannot distribute territories for session {session_id}: {e}",
                    code='already_distributed',
                    details={'session_id': session_id, 'status': session.status}
                )

            regions = Region.query.filter_by(is_active=True).order_by(Region.name, Region.id).all()
            logger.info(f"Distributing {len(regions)} active regions to {team_count} teams in session {session_id}")

            for position, region in enumerate(regions):
                team = teams[position % team_count]
                logger.debug(f"Region {region.name} -> {team.name}")
                db.session.add(TerritoryAssignment(
                    session_id=session_id,
                    team_id=team.id,
                    region_id=region.id,
                    status=AssignmentStatus.AVAILABLE.value,
                    region_name=region.name,
                    region_external_id=region.external_id
                ))

            session.status = new_state.value
            session.territories_distributed_at = datetime.utcnow()
            db.session.flush()

        result = {
            'session_id': session_id,
            'teams_count': team_count,
            'regions_distributed': len(regions),
            'avg_regions_per_team': round(len(regions) / team_count, 2),
        }

        logger.info(f"Distributed {len(regions)} regions across {team_count} teams in session {session_id}")
        on_commit(
            self.publisher.publish_session_event,
            session_id,
            territories_distributed_event(session_id, team_count, len(regions))
        )
        on_commit(
            self.publisher.publish_session_event,
            session_id,
            state_changed_event(session_id, old_state, new_state.value)
        )
        return result

    def verify_distribution(self, session_id: str) -> dict:
        """Read-only check for regions dealt twice and assignments whose team or region is gone."""
        if db.session.get(MappingSession, session_id) is None:
            raise NotFoundError(
                f"Session {session_id} not found",
                code='unknown_session',
                details={'session_id': session_id}
            )

        total = TerritoryAssignment.query.filter_by(session_id=session_id).count()

        duplicates = (
            db.session.query(TerritoryAssignment.region_id)
            .filter(TerritoryAssignment.session_id == session_id)
            .group_by(TerritoryAssignment.region_id)
            .having(func.count(TerritoryAssignment.id) > 1)
            .count()
        )

        orphans = (
            db.session.query(TerritoryAssignment.id)
            .outerjoin(Team, Team.id == TerritoryAssignment.team_id)
            .outerjoin(Region, Region.id == TerritoryAssignment.region_id)
            .filter(
                TerritoryAssignment.session_id == session_id,
                (Team.id.is_(None)) | (Region.id.is_(None))
            )
            .count()
        )

        per_team = (
            db.session.query(Team.name, func.count(TerritoryAssignment.id))
            .outerjoin(TerritoryAssignment, TerritoryAssignment.team_id == Team.id)
            .filter(Team.session_id == session_id)
            .group_by(Team.id, Team.name, Team.team_index)
            .order_by(Team.team_index)
            .all()
        )

        return {
            'session_id': session_id,
            'total_assignments': total,
            'duplicates': duplicates,
            'orphans': orphans,
            'no_duplicates': duplicates == 0,
            'no_orphans': orphans == 0,
            'validation_passed': duplicates == 0 and orphans == 0,
            'regions_per_team': [
                {'team_name': name, 'region_count': region_count}
                for name, region_count in per_team
            ],
        }
