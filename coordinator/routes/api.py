import random

from flask import Blueprint, request, jsonify, current_app

from ..errors import ValidationError
from ..isolation import verify_isolation
from ..session_registry import clean_session_id
from ..transaction import atomic

bp = Blueprint('api', __name__, url_prefix='/api/v1')


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _required(data: dict, field: str):
    value = data.get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", code='missing_field', details={'field': field})
    return value


def _formation_args(data: dict):
    team_size = data.get('team_size', current_app.config['DEFAULT_TEAM_SIZE'])
    seed = data.get('seed')
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int)):
        raise ValidationError("seed must be an integer", code='invalid_input', details={'seed': seed})
    rng = random.Random(seed) if seed is not None else None
    return team_size, rng


# ==================== Sessions & Participants ====================

@bp.route('/join', methods=['POST'])
def join_session():
    """Join by typed session code; coordinator codes open the session without registering."""
    data = _body()
    session_id, is_coordinator = clean_session_id(
        data.get('session_code', ''),
        current_app.config['COORDINATOR_SUFFIXES']
    )
    result = current_app.registry.ensure_session(session_id)

    if is_coordinator:
        return jsonify({
            'is_coordinator': True,
            'created': result['created'],
            'session': result['session'].to_dict()
        })

    participant = current_app.registry.register_participant(
        _required(data, 'display_name'), _required(data, 'handle'), session_id
    )
    return jsonify({
        'is_coordinator': False,
        'created': result['created'],
        'participant': participant.to_dict()
    }), 201


@bp.route('/sessions/<session_id>', methods=['POST'])
def ensure_session(session_id):
    result = current_app.registry.ensure_session(session_id)
    return jsonify({
        'created': result['created'],
        'session': result['session'].to_dict()
    }), 201 if result['created'] else 200


@bp.route('/sessions/<session_id>', methods=['GET'])
def get_session(session_id):
    return jsonify(current_app.registry.session_state(session_id))


@bp.route('/sessions/<session_id>/participants', methods=['POST'])
def register_participant(session_id):
    data = _body()
    current_app.registry.ensure_session(session_id)
    participant = current_app.registry.register_participant(
        data.get('display_name'), data.get('handle'), session_id
    )
    return jsonify({'message': 'Participant registered', 'participant': participant.to_dict()}), 201


@bp.route('/sessions/<session_id>/participants', methods=['GET'])
def list_participants(session_id):
    return jsonify(current_app.registry.list_participants(session_id))


@bp.route('/sessions/<session_id>/events', methods=['GET'])
def recent_events(session_id):
    count = request.args.get('count', 50, type=int)
    events = current_app.publisher.get_recent_events(session_id, count)
    return jsonify({'session_id': session_id, 'events': [e.to_dict() for e in events]})


# ==================== Teams ====================

@bp.route('/sessions/<session_id>/teams', methods=['POST'])
def form_teams(session_id):
    team_size, rng = _formation_args(_body())
    result = current_app.formation.form_teams(session_id, team_size, rng=rng)
    return jsonify(result), 201


@bp.route('/sessions/<session_id>/teams', methods=['GET'])
def list_teams(session_id):
    current_app.registry.get_session(session_id)
    teams = current_app.formation.list_teams(session_id)
    return jsonify({
        'session_id': session_id,
        'teams': [t.to_dict(include_members=True) for t in teams],
        'count': len(teams)
    })


@bp.route('/teams/<team_id>', methods=['GET'])
def get_team(team_id):
    team = current_app.formation.get_team(team_id)
    return jsonify(team.to_dict(include_members=True))


@bp.route('/teams/<team_id>/progress', methods=['GET'])
def team_progress(team_id):
    return jsonify(current_app.progress.team_progress(team_id))


@bp.route('/teams/<team_id>/available', methods=['GET'])
def team_available(team_id):
    current_app.formation.get_team(team_id)
    assignments = current_app.assignments.available_for_team(team_id)
    return jsonify({'team_id': team_id, 'territories': [a.to_dict() for a in assignments]})


@bp.route('/participants/<participant_id>/team', methods=['POST'])
def place_participant(participant_id):
    """Assign an unplaced participant to a team, or move an already placed one."""
    data = _body()
    team_id = _required(data, 'team_id')
    participant = current_app.registry.get_participant(participant_id)

    if participant.membership is None:
        member = current_app.roster.assign_participant(participant_id, team_id, data.get('role_name'))
        return jsonify({'message': 'Participant assigned', 'member': member.to_dict()}), 201

    member = current_app.roster.move_participant(participant_id, team_id)
    return jsonify({'message': 'Participant moved', 'member': member.to_dict()})


@bp.route('/participants/<participant_id>/team', methods=['GET'])
def participant_team(participant_id):
    return jsonify(current_app.registry.get_participant_team(participant_id))


@bp.route('/participants/<participant_id>/role', methods=['PUT'])
def update_role(participant_id):
    data = _body()
    member = current_app.roster.update_member_role(participant_id, _required(data, 'role_name'))
    return jsonify({'message': 'Role updated', 'member': member.to_dict()})


# ==================== Territories ====================

@bp.route('/sessions/<session_id>/territories', methods=['POST'])
def distribute_territories(session_id):
    result = current_app.distribution.distribute_territories(session_id)
    return jsonify(result), 201


@bp.route('/sessions/<session_id>/territories', methods=['GET'])
def list_territories(session_id):
    current_app.registry.get_session(session_id)
    status = request.args.get('status')
    assignments = current_app.assignments.list_assignments(session_id, status=status)
    return jsonify({
        'session_id': session_id,
        'territories': [a.to_dict() for a in assignments],
        'count': len(assignments)
    })


@bp.route('/sessions/<session_id>/setup', methods=['POST'])
def setup_session(session_id):
    """Form teams and distribute territories in one transaction; a failed distribution keeps no teams."""
    team_size, rng = _formation_args(_body())
    with atomic():
        teams = current_app.formation.form_teams(session_id, team_size, rng=rng)
        territories = current_app.distribution.distribute_territories(session_id)
    return jsonify({
        'session_id': session_id,
        'team_formation': teams,
        'territory_distribution': territories
    }), 201


@bp.route('/assignments/<assignment_id>', methods=['GET'])
def get_assignment(assignment_id):
    return jsonify(current_app.assignments.get_assignment(assignment_id))


@bp.route('/assignments/<assignment_id>/region', methods=['GET'])
def assignment_region(assignment_id):
    return jsonify(current_app.assignments.region_for_query(assignment_id))


@bp.route('/assignments/<assignment_id>/status', methods=['POST'])
def set_assignment_status(assignment_id):
    data = _body()
    snapshot = current_app.assignments.set_assignment_status(
        assignment_id,
        _required(data, 'status'),
        data.get('participant_id'),
        data.get('notes')
    )
    return jsonify(snapshot)


# ==================== Progress & Verification ====================

@bp.route('/sessions/<session_id>/progress', methods=['GET'])
def session_progress(session_id):
    return jsonify(current_app.progress.get_progress(session_id))


@bp.route('/sessions/<session_id>/leaderboard', methods=['GET'])
def leaderboard(session_id):
    return jsonify({'session_id': session_id, 'leaderboard': current_app.progress.leaderboard(session_id)})


@bp.route('/sessions/<session_id>/verify/isolation', methods=['GET'])
def verify_session_isolation(session_id):
    return jsonify(verify_isolation(session_id))


@bp.route('/sessions/<session_id>/verify/distribution', methods=['GET'])
def verify_session_distribution(session_id):
    return jsonify(current_app.distribution.verify_distribution(session_id))


# ==================== Region Catalog ====================

@bp.route('/regions', methods=['POST'])
def load_regions():
    data = request.get_json(silent=True)
    rows = data.get('regions') if isinstance(data, dict) else data
    if not isinstance(rows, list):
        raise ValidationError("Expected a list of regions", code='invalid_catalog_row')
    return jsonify(current_app.catalog.load_regions(rows))


@bp.route('/regions', methods=['GET'])
def list_regions():
    regions = current_app.catalog.list_active_regions()
    return jsonify({'regions': [r.to_dict() for r in regions], 'count': len(regions)})


@bp.route('/regions/statistics', methods=['GET'])
def region_statistics():
    return jsonify(current_app.catalog.get_statistics())
