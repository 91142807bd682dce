import uuid
from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def new_id() -> str:
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


class MappingSession(db.Model):
    __tablename__ = 'sessions'

    id = db.Column(db.String(50), primary_key=True)
    name = db.Column(db.String(200), nullable=True)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='registering')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    teams_formed_at = db.Column(db.DateTime, nullable=True)
    territories_distributed_at = db.Column(db.DateTime, nullable=True)

    participants = db.relationship('Participant', back_populates='session')
    teams = db.relationship('Team', back_populates='session', order_by='Team.team_index')

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('registering', 'teams_formed', 'active')",
            name='session_status_values'
        ),
    )

    def to_dict(self):
        return {
            'session_id': self.id,
            'name': self.name,
            'description': self.description,
            'status': self.status,
            'participant_count': len(self.participants),
            'team_count': len(self.teams),
            'created_at': _iso(self.created_at),
            'teams_formed_at': _iso(self.teams_formed_at),
            'territories_distributed_at': _iso(self.territories_distributed_at),
        }


class Participant(db.Model):
    __tablename__ = 'participants'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    display_name = db.Column(db.String(100), nullable=False)
    handle = db.Column(db.String(100), nullable=False)  # external mapping-platform username
    session_id = db.Column(db.String(50), db.ForeignKey('sessions.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    session = db.relationship('MappingSession', back_populates='participants')
    membership = db.relationship('TeamMember', back_populates='participant', uselist=False)

    __table_args__ = (
        db.UniqueConstraint('session_id', 'handle', name='unique_handle_per_session'),
    )

    def to_dict(self):
        return {
            'participant_id': self.id,
            'display_name': self.display_name,
            'handle': self.handle,
            'session_id': self.session_id,
            'created_at': _iso(self.created_at),
        }


class Team(db.Model):
    __tablename__ = 'teams'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    session_id = db.Column(db.String(50), db.ForeignKey('sessions.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    team_index = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    session = db.relationship('MappingSession', back_populates='teams')
    members = db.relationship('TeamMember', back_populates='team', order_by='TeamMember.position')
    assignments = db.relationship('TerritoryAssignment', back_populates='team')

    __table_args__ = (
        db.UniqueConstraint('session_id', 'team_index', name='unique_team_index_per_session'),
    )

    def to_dict(self, include_members: bool = False):
        data = {
            'team_id': self.id,
            'team_name': self.name,
            'team_index': self.team_index,
            'session_id': self.session_id,
            'member_count': len(self.members),
        }
        if include_members:
            data['members'] = [m.to_dict() for m in self.members]
        return data


class TeamMember(db.Model):
    __tablename__ = 'team_members'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    team_id = db.Column(db.String(36), db.ForeignKey('teams.id'), nullable=False, index=True)
    participant_id = db.Column(db.String(36), db.ForeignKey('participants.id'), nullable=False, unique=True)
    role_name = db.Column(db.String(50), nullable=False)
    role_description = db.Column(db.Text, nullable=False)
    role_icon = db.Column(db.String(10), nullable=False)
    position = db.Column(db.Integer, nullable=True)  # placement order within the session
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    team = db.relationship('Team', back_populates='members')
    participant = db.relationship('Participant', back_populates='membership')

    def to_dict(self):
        return {
            'participant_id': self.participant_id,
            'display_name': self.participant.display_name if self.participant else None,
            'handle': self.participant.handle if self.participant else None,
            'team_id': self.team_id,
            'role_name': self.role_name,
            'role_description': self.role_description,
            'role_icon': self.role_icon,
            'position': self.position,
        }


class Region(db.Model):
    __tablename__ = 'regions'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False, unique=True)
    name_en = db.Column(db.String(200), nullable=True)
    code = db.Column(db.String(20), nullable=True, unique=True)  # e.g. ISO 3166-2 'IN-MH'
    external_id = db.Column(db.BigInteger, nullable=True, unique=True)  # map relation id
    classification = db.Column(db.String(30), nullable=False)
    area_km2 = db.Column(db.Float, nullable=True)
    population = db.Column(db.Integer, nullable=True)
    capital = db.Column(db.String(100), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def query_ready(self) -> bool:
        return bool(self.code)

    def to_dict(self):
        return {
            'region_id': self.id,
            'name': self.name,
            'name_en': self.name_en,
            'code': self.code,
            'external_id': self.external_id,
            'classification': self.classification,
            'area_km2': self.area_km2,
            'population': self.population,
            'capital': self.capital,
            'is_active': self.is_active,
            'query_ready': self.query_ready,
        }


class TerritoryAssignment(db.Model):
    __tablename__ = 'territory_assignments'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    session_id = db.Column(db.String(50), db.ForeignKey('sessions.id'), nullable=False, index=True)
    team_id = db.Column(db.String(36), db.ForeignKey('teams.id'), nullable=False, index=True)
    region_id = db.Column(db.String(36), db.ForeignKey('regions.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='available')
    assigned_at = db.Column(db.DateTime, default=datetime.utcnow)
    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    completed_by = db.Column(db.String(36), db.ForeignKey('participants.id'), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Copied from the catalog at distribution time
    region_name = db.Column(db.String(200), nullable=True)
    region_external_id = db.Column(db.BigInteger, nullable=True)

    team = db.relationship('Team', back_populates='assignments')
    region = db.relationship('Region')
    completed_by_participant = db.relationship('Participant', foreign_keys=[completed_by])

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('available', 'current', 'completed')",
            name='assignment_status_values'
        ),
    )

    @property
    def duration_seconds(self):
        if self.completed_at and self.started_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self):
        return {
            'assignment_id': self.id,
            'session_id': self.session_id,
            'team_id': self.team_id,
            'region_id': self.region_id,
            'region_name': self.region_name,
            'status': self.status,
            'assigned_at': _iso(self.assigned_at),
            'started_at': _iso(self.started_at),
            'completed_at': _iso(self.completed_at),
            'completed_by': self.completed_by,
            'notes': self.notes,
        }
