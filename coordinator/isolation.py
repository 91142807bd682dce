"""
Session isolation for memberships and territory assignments.

Every write of a TeamMember or TerritoryAssignment goes through the session
flush, so the check lives in a ``before_flush`` hook: a row that would link a
participant, team or region across sessions is rejected before any SQL is
sent, and the surrounding transaction keeps its previous state. A Participant
or Team never changes session once written. Bulk INSERT/UPDATE statements,
ORM or Core, would skip the flush, so they are refused outright for the
guarded tables; UPDATE statements on participants and teams are refused too.
"""
import logging

from sqlalchemy import event, inspect, or_, and_
from sqlalchemy.orm import aliased

from .models import db, MappingSession, Participant, Team, TeamMember, Region, TerritoryAssignment
from .errors import IsolationViolation, NotFoundError

logger = logging.getLogger(__name__)

GUARDED_TABLES = (TeamMember.__tablename__, TerritoryAssignment.__tablename__)
SESSION_OWNED_TABLES = (Participant.__tablename__, Team.__tablename__)


def _resolve(session, obj, relationship: str, foreign_key: str, model):
    """
    Find the row ``obj`` points at, re-reading persistent rows under a share lock.

    A relationship set in this unit of work wins over the raw foreign key;
    rows pending in the same flush are taken as they are.
    """
    history = inspect(obj).attrs[relationship].history
    if history.has_changes():
        target = getattr(obj, relationship)
        if target is None:
            return None
        if inspect(target).pending:
            return target
        ident = target.id
    else:
        ident = getattr(obj, foreign_key)
        if ident is None:
            return None

    return (
        session.query(model)
        .filter(model.id == ident)
        .with_for_update(read=True)
        .first()
    )


def _missing(kind: str, ident, code: str):
    return NotFoundError(
        f"{kind} {ident} does not exist",
        code=code,
        details={f"{kind.lower()}_id": ident}
    )


def check_membership(session, member: TeamMember):
    participant = _resolve(session, member, 'participant', 'participant_id', Participant)
    if participant is None:
        raise _missing('Participant', member.participant_id, 'unknown_participant')

    team = _resolve(session, member, 'team', 'team_id', Team)
    if team is None:
        raise _missing('Team', member.team_id, 'unknown_team')

    if participant.session_id != team.session_id:
        logger.warning(
            f"Rejected membership: participant {participant.id} ({participant.session_id}) "
            f"-> team {team.id} ({team.session_id})"
        )
        raise IsolationViolation(
            f'Session mismatch: participant belongs to session "{participant.session_id}" '
            f'but team belongs to session "{team.session_id}". Participants can only be '
            f'assigned to teams within their own session.',
            code='session_mismatch',
            details={
                'participant_id': participant.id,
                'participant_session_id': participant.session_id,
                'team_id': team.id,
                'team_session_id': team.session_id,
            }
        )


def check_assignment(session, assignment: TerritoryAssignment):
    team = _resolve(session, assignment, 'team', 'team_id', Team)
    if team is None:
        raise _missing('Team', assignment.team_id, 'unknown_team')

    region = _resolve(session, assignment, 'region', 'region_id', Region)
    if region is None:
        raise _missing('Region', assignment.region_id, 'unknown_region')

    if team.session_id != assignment.session_id:
        logger.warning(
            f"Rejected assignment of region {region.id}: team {team.id} ({team.session_id}) "
            f"is outside session {assignment.session_id}"
        )
        raise IsolationViolation(
            f'Session mismatch: assignment belongs to session "{assignment.session_id}" '
            f'but team belongs to session "{team.session_id}".',
            code='session_mismatch',
            details={
                'session_id': assignment.session_id,
                'team_id': team.id,
                'team_session_id': team.session_id,
                'region_id': region.id,
            }
        )

    history = inspect(assignment).attrs['completed_by_participant'].history
    if assignment.completed_by is None and not history.has_changes():
        return

    completer = _resolve(session, assignment, 'completed_by_participant', 'completed_by', Participant)
    if completer is None:
        if assignment.completed_by is None:
            return
        raise _missing('Participant', assignment.completed_by, 'unknown_participant')

    if completer.session_id != assignment.session_id:
        logger.warning(
            f"Rejected completion of assignment {assignment.id} by participant "
            f"{completer.id} from session {completer.session_id}"
        )
        raise IsolationViolation(
            f'Session mismatch: participant belongs to session "{completer.session_id}" '
            f'but the territory belongs to session "{assignment.session_id}".',
            code='session_mismatch',
            details={
                'session_id': assignment.session_id,
                'participant_id': completer.id,
                'participant_session_id': completer.session_id,
                'assignment_id': assignment.id,
            }
        )


def check_session_unchanged(obj):
    """Participants and teams keep the session they were created in."""
    state = inspect(obj)
    column = state.attrs['session_id'].history
    old_session_id = column.deleted[0] if column.deleted else obj.session_id
    new_session_id = obj.session_id

    # the relationship is synced into session_id only after this hook
    relationship = state.attrs['session'].history
    if relationship.added and relationship.added[0] is not None:
        new_session_id = relationship.added[0].id

    if old_session_id is None or old_session_id == new_session_id:
        return

    kind = type(obj).__name__
    logger.warning(f"Rejected move of {kind.lower()} {obj.id} from session {old_session_id} to {new_session_id}")
    raise IsolationViolation(
        f'{kind} {obj.id} belongs to session "{old_session_id}" and cannot move '
        f'to session "{new_session_id}".',
        code='session_reassignment',
        details={
            f'{kind.lower()}_id': obj.id,
            'session_id': old_session_id,
            'new_session_id': new_session_id,
        }
    )


@event.listens_for(db.session, "before_flush")
def _enforce_session_isolation(session, flush_context, instances) -> None:
    """Validate every new or changed membership/assignment before it is written."""
    with session.no_autoflush:
        for obj in list(session.dirty):
            if isinstance(obj, (Participant, Team)):
                check_session_unchanged(obj)
        for obj in list(session.new) + list(session.dirty):
            if isinstance(obj, TeamMember):
                check_membership(session, obj)
            elif isinstance(obj, TerritoryAssignment):
                check_assignment(session, obj)


def _target_table(orm_execute_state):
    mapper = orm_execute_state.bind_mapper
    if mapper is not None:
        return mapper.local_table.name
    table = getattr(orm_execute_state.statement, 'table', None)
    return getattr(table, 'name', None)


@event.listens_for(db.session, "do_orm_execute")
def _block_bulk_writes(orm_execute_state) -> None:
    if not (orm_execute_state.is_insert or orm_execute_state.is_update):
        return
    table = _target_table(orm_execute_state)
    if table in GUARDED_TABLES or (orm_execute_state.is_update and table in SESSION_OWNED_TABLES):
        raise IsolationViolation(
            f"Bulk writes to {table} bypass the session isolation check",
            code='bulk_write_blocked',
            details={'table': table}
        )


def verify_isolation(session_id: str) -> dict:
    """Read-only audit of the session's memberships and assignments."""
    if db.session.get(MappingSession, session_id) is None:
        raise NotFoundError(
            f"Session {session_id} not found",
            code='unknown_session',
            details={'session_id': session_id}
        )

    membership_violations = (
        db.session.query(TeamMember.id)
        .join(Team, Team.id == TeamMember.team_id)
        .join(Participant, Participant.id == TeamMember.participant_id)
        .filter(
            or_(Team.session_id == session_id, Participant.session_id == session_id),
            Team.session_id != Participant.session_id
        )
        .count()
    )

    completer = aliased(Participant)
    assignment_violations = (
        db.session.query(TerritoryAssignment.id)
        .join(Team, Team.id == TerritoryAssignment.team_id)
        .outerjoin(completer, completer.id == TerritoryAssignment.completed_by)
        .filter(
            or_(TerritoryAssignment.session_id == session_id, Team.session_id == session_id),
            or_(
                Team.session_id != TerritoryAssignment.session_id,
                and_(completer.id.isnot(None), completer.session_id != TerritoryAssignment.session_id)
            )
        )
        .count()
    )

    total_teams = Team.query.filter_by(session_id=session_id).count()
    total_members = (
        db.session.query(TeamMember.id)
        .join(Team, Team.id == TeamMember.team_id)
        .filter(Team.session_id == session_id)
        .count()
    )
    teams_without_members = (
        Team.query
        .filter(Team.session_id == session_id, ~Team.members.any())
        .count()
    )

    violations = membership_violations + assignment_violations
    return {
        'session_id': session_id,
        'violations_found': violations,
        'membership_violations': membership_violations,
        'assignment_violations': assignment_violations,
        'total_teams': total_teams,
        'total_members': total_members,
        'teams_without_members': teams_without_members,
        'session_isolation_valid': violations == 0,
        'all_teams_have_members': teams_without_members == 0,
        'verification_passed': violations == 0 and teams_without_members == 0,
    }
