"""
Read-only progress views computed from territory assignment rows.

Nothing here writes or caches; every call recomputes from the current rows,
so it is safe to run alongside status changes.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import List

from sqlalchemy import func, case

from .models import db, MappingSession, Team, TeamMember, TerritoryAssignment
from .errors import NotFoundError
from shared.state_machine import AssignmentStatus

STATUSES = [s.value for s in AssignmentStatus]


def percentage(part: int, total: int) -> float:
    """part/total as a percentage rounded half-up to two places; 0 for an empty total."""
    if not total:
        return 0
    value = Decimal(part) * 100 / Decimal(total)
    return float(value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def _status_counts(rows) -> dict:
    counts = {status: 0 for status in STATUSES}
    for status, count in rows:
        counts[status] = count
    counts['total'] = sum(counts[s] for s in STATUSES)
    return counts


class ProgressAggregator:

    def _get_session(self, session_id: str) -> MappingSession:
        session = db.session.get(MappingSession, session_id)
        if session is None:
            raise NotFoundError(
                f"Session {session_id} not found",
                code='unknown_session',
                details={'session_id': session_id}
            )
        return session

    def _team_rows(self, session_id: str):
        completed = func.sum(case((TerritoryAssignment.status == 'completed', 1), else_=0))
        current = func.sum(case((TerritoryAssignment.status == 'current', 1), else_=0))
        available = func.sum(case((TerritoryAssignment.status == 'available', 1), else_=0))
        return (
            db.session.query(
                Team.id, Team.name, Team.team_index,
                func.count(TerritoryAssignment.id), completed, current, available
            )
            .outerjoin(TerritoryAssignment, TerritoryAssignment.team_id == Team.id)
            .filter(Team.session_id == session_id)
            .group_by(Team.id, Team.name, Team.team_index)
            .order_by(Team.team_index)
            .all()
        )

    def availability_overview(self, session_id: str) -> dict:
        self._get_session(session_id)
        rows = (
            db.session.query(TerritoryAssignment.status, func.count(TerritoryAssignment.id))
            .filter(TerritoryAssignment.session_id == session_id)
            .group_by(TerritoryAssignment.status)
            .all()
        )
        counts = _status_counts(rows)
        total = counts['total']
        return {
            'session_id': session_id,
            'total_territories': total,
            'available_count': counts['available'],
            'current_count': counts['current'],
            'completed_count': counts['completed'],
            'available_percentage': percentage(counts['available'], total),
            'current_percentage': percentage(counts['current'], total),
            'completed_percentage': percentage(counts['completed'], total),
        }

    def team_progress(self, team_id: str) -> dict:
        team = db.session.get(Team, team_id)
        if team is None:
            raise NotFoundError(f"Team {team_id} not found", code='unknown_team', details={'team_id': team_id})

        def by_status(status, *order):
            return (
                TerritoryAssignment.query
                .filter_by(team_id=team_id, status=status)
                .order_by(*order)
                .all()
            )

        available = by_status('available', TerritoryAssignment.region_name)
        current = by_status('current', TerritoryAssignment.started_at.desc(), TerritoryAssignment.region_name)
        completed = by_status('completed', TerritoryAssignment.completed_at.desc(), TerritoryAssignment.region_name)
        total = len(available) + len(current) + len(completed)

        return {
            'team_id': team.id,
            'team_name': team.name,
            'session_id': team.session_id,
            'total_territories': total,
            'available_count': len(available),
            'current_count': len(current),
            'completed_count': len(completed),
            'completion_percentage': percentage(len(completed), total),
            'available_territories': [a.to_dict() for a in available],
            'current_territories': [a.to_dict() for a in current],
            'completed_territories': [a.to_dict() for a in completed],
        }

    def leaderboard(self, session_id: str) -> List[dict]:
        self._get_session(session_id)
        rows = []
        for team_id, name, index, total, completed, current, available in self._team_rows(session_id):
            completed = int(completed or 0)
            rows.append({
                'team_id': team_id,
                'team_name': name,
                'team_index': index,
                'total_territories': total,
                'completed_count': completed,
                'current_count': int(current or 0),
                'available_count': int(available or 0),
                'completion_percentage': percentage(completed, total),
            })

        rows.sort(key=lambda r: (-r['completion_percentage'], r['team_name']))
        for rank, row in enumerate(rows, start=1):
            row['rank'] = rank
        return rows

    def session_progress(self, session_id: str) -> dict:
        session = self._get_session(session_id)

        member_counts = dict(
            db.session.query(Team.id, func.count(TeamMember.id))
            .outerjoin(TeamMember, TeamMember.team_id == Team.id)
            .filter(Team.session_id == session_id)
            .group_by(Team.id)
            .all()
        )

        teams_data = []
        overall = {'total': 0, 'completed': 0, 'current': 0, 'available': 0}
        for team_id, name, index, total, completed, current, available in self._team_rows(session_id):
            completed, current, available = int(completed or 0), int(current or 0), int(available or 0)
            overall['total'] += total
            overall['completed'] += completed
            overall['current'] += current
            overall['available'] += available
            teams_data.append({
                'team_id': team_id,
                'team_name': name,
                'team_index': index,
                'member_count': member_counts.get(team_id, 0),
                'total_territories': total,
                'completed_count': completed,
                'current_count': current,
                'available_count': available,
                'completion_percentage': percentage(completed, total),
            })

        return {
            'session_id': session_id,
            'session_status': session.status,
            'total_teams': len(teams_data),
            'total_territories': overall['total'],
            'completed_count': overall['completed'],
            'current_count': overall['current'],
            'available_count': overall['available'],
            'completion_percentage': percentage(overall['completed'], overall['total']),
            'is_complete': overall['total'] > 0 and overall['completed'] == overall['total'],
            'teams_data': teams_data,
        }

    def get_progress(self, session_id: str) -> dict:
        progress = self.session_progress(session_id)
        return {
            'session_id': session_id,
            'per_team': progress['teams_data'],
            'leaderboard': self.leaderboard(session_id),
            'overview': self.availability_overview(session_id),
        }
