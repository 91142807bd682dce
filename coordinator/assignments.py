import logging
from datetime import datetime
from typing import List, Optional

from .models import db, MappingSession, Team, TerritoryAssignment, _iso
from .errors import ValidationError, NotFoundError
from .transaction import atomic
from shared.events import assignment_status_event
from shared.pubsub import EventPublisher
from shared.state_machine import AssignmentStatus, is_valid_status

logger = logging.getLogger(__name__)


class AssignmentTracker:
    """
    Status changes and lookups for individual territory assignments.

    Each change is a single-row read-modify-write under a row lock, so
    updates to different assignments never wait on each other.
    """

    def __init__(self, publisher: EventPublisher = None):
        self.publisher = publisher or EventPublisher()

    def _lock_assignment(self, assignment_id: str) -> TerritoryAssignment:
        assignment = (
            TerritoryAssignment.query
            .filter_by(id=assignment_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if assignment is None:
            raise NotFoundError(
                f"Territory assignment {assignment_id} not found",
                code='unknown_assignment',
                details={'assignment_id': assignment_id}
            )
        return assignment

    def set_assignment_status(self, assignment_id: str, new_status: str,
                              actor_participant_id: Optional[str] = None,
                              notes: Optional[str] = None) -> dict:
        if not is_valid_status(new_status):
            raise ValidationError(
                f"Invalid status: {new_status}. Must be available, current, or completed",
                code='invalid_status',
                details={'assignment_id': assignment_id, 'status': new_status}
            )

        with atomic():
            assignment = self._lock_assignment(assignment_id)
            old_status = assignment.status
            now = datetime.utcnow()

            if new_status != old_status:
                if new_status == AssignmentStatus.CURRENT.value:
                    if assignment.started_at is None:
                        assignment.started_at = now
                elif new_status == AssignmentStatus.COMPLETED.value:
                    if assignment.started_at is None:
                        assignment.started_at = now
                    assignment.completed_at = now
                    assignment.completed_by = actor_participant_id
                # back to available keeps the audit timestamps
                assignment.status = new_status

            if notes is not None:
                assignment.notes = notes

            db.session.flush()
            session_id = assignment.session_id
            snapshot = {
                'assignment_id': assignment.id,
                'region_name': assignment.region_name,
                'old_status': old_status,
                'new_status': assignment.status,
                'started_at': _iso(assignment.started_at),
                'completed_at': _iso(assignment.completed_at),
                'completed_by': assignment.completed_by,
                'notes': assignment.notes,
            }

        logger.info(f"Territory {assignment_id} status: {old_status} -> {new_status}")
        if old_status != new_status:
            self.publisher.publish_session_event(
                session_id,
                assignment_status_event(session_id, assignment_id, old_status, new_status)
            )
        return snapshot

    def get_assignment(self, assignment_id: str) -> dict:
        assignment = db.session.get(TerritoryAssignment, assignment_id)
        if assignment is None:
            raise NotFoundError(
                f"Territory assignment {assignment_id} not found",
                code='unknown_assignment',
                details={'assignment_id': assignment_id}
            )

        data = assignment.to_dict()
        data['region'] = assignment.region.to_dict() if assignment.region else None
        data['team'] = assignment.team.to_dict() if assignment.team else None
        session = db.session.get(MappingSession, assignment.session_id)
        data['session'] = session.to_dict() if session else None
        completer = assignment.completed_by_participant
        data['completed_by_participant'] = completer.to_dict() if completer else None
        data['duration_seconds'] = assignment.duration_seconds
        return data

    def list_assignments(self, session_id: str, status: Optional[str] = None) -> List[TerritoryAssignment]:
        if status is not None and not is_valid_status(status):
            raise ValidationError(
                f"Invalid status filter: {status}",
                code='invalid_status',
                details={'session_id': session_id, 'status': status}
            )

        query = (
            TerritoryAssignment.query
            .join(Team, Team.id == TerritoryAssignment.team_id)
            .filter(TerritoryAssignment.session_id == session_id)
        )
        if status:
            query = query.filter(TerritoryAssignment.status == status)
        return query.order_by(Team.team_index, TerritoryAssignment.region_name).all()

    def available_for_team(self, team_id: str) -> List[TerritoryAssignment]:
        return (
            TerritoryAssignment.query
            .filter_by(team_id=team_id, status=AssignmentStatus.AVAILABLE.value)
            .order_by(TerritoryAssignment.region_name)
            .all()
        )

    def region_for_query(self, assignment_id: str) -> dict:
        """Identifiers an external geodata client needs to fetch this territory."""
        assignment = db.session.get(TerritoryAssignment, assignment_id)
        if assignment is None:
            raise NotFoundError(
                f"Territory assignment {assignment_id} not found",
                code='unknown_assignment',
                details={'assignment_id': assignment_id}
            )
        region = assignment.region
        return {
            'assignment_id': assignment.id,
            'region_name': assignment.region_name,
            'code': region.code if region else None,
            'external_id': assignment.region_external_id,
            'query_ready': bool(region and region.query_ready),
        }
