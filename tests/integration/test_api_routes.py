"""
Integration tests for API routes.
Tests the session, team, territory, progress and catalog endpoints end to end.
"""
import json

import pytest

from coordinator.errors import PreconditionError


def _regions(count):
    return [
        {'name': f'Region {i + 1:02d}', 'code': f'IN-R{i + 1:02d}', 'classification': 'state'}
        for i in range(count)
    ]


@pytest.fixture
def populated(client, db_session):
    """Session GRID with 7 registered participants and a 10-region catalog."""
    for i in range(7):
        client.post('/api/v1/sessions/GRID/participants',
            json={'display_name': f'Mapper {i + 1}', 'handle': f'mapper_{i + 1}'})
    client.post('/api/v1/regions', json={'regions': _regions(10)})
    return 'GRID'


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_check(self, client, db_session):
        response = client.get('/health')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'healthy'
        assert data['database'] == 'connected'
        assert data['redis'] == 'disabled'


class TestSessions:
    """Tests for session and participant endpoints."""

    def test_ensure_session(self, client, db_session):
        first = client.post('/api/v1/sessions/GRID')
        second = client.post('/api/v1/sessions/GRID')

        assert first.status_code == 201
        assert json.loads(first.data)['created'] is True
        assert second.status_code == 200
        assert json.loads(second.data)['created'] is False

    def test_get_session(self, client, populated):
        data = json.loads(client.get('/api/v1/sessions/GRID').data)

        assert data['status'] == 'registering'
        assert data['participant_count'] == 7
        assert 'form_teams' in data['allowed_actions']

    def test_get_unknown_session(self, client, db_session):
        response = client.get('/api/v1/sessions/NOPE')

        assert response.status_code == 404
        data = json.loads(response.data)
        assert data['code'] == 'unknown_session'
        assert data['kind'] == 'NotFoundError'

    def test_register_duplicate(self, client, populated):
        response = client.post('/api/v1/sessions/GRID/participants',
            json={'display_name': 'Again', 'handle': 'mapper_1'})

        assert response.status_code == 409
        assert json.loads(response.data)['code'] == 'duplicate'

    def test_register_missing_fields(self, client, db_session):
        response = client.post('/api/v1/sessions/GRID/participants', json={'handle': 'x'})

        assert response.status_code == 400
        assert json.loads(response.data)['code'] == 'missing_field'

    def test_list_participants(self, client, populated):
        data = json.loads(client.get('/api/v1/sessions/GRID/participants').data)

        assert data['participant_count'] == 7
        assert data['team_formation_ready'] is True


class TestJoin:
    """Tests for joining by typed session code."""

    def test_participant_join(self, client, db_session):
        response = client.post('/api/v1/join',
            json={'session_code': ' grid ', 'display_name': 'Asha', 'handle': 'asha'})

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['is_coordinator'] is False
        assert data['participant']['session_id'] == 'GRID'

    def test_coordinator_join(self, client, db_session):
        response = client.post('/api/v1/join', json={'session_code': 'grid-coord'})

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['is_coordinator'] is True
        assert data['session']['participant_count'] == 0

    def test_missing_code(self, client, db_session):
        response = client.post('/api/v1/join', json={'display_name': 'Asha', 'handle': 'asha'})
        assert response.status_code == 400


class TestTeamFormation:
    """Tests for team formation endpoints."""

    def test_form_teams(self, client, populated):
        response = client.post('/api/v1/sessions/GRID/teams', json={'team_size': 3, 'seed': 11})

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['teams_created'] == 3
        assert [t['member_count'] for t in data['per_team_members']] == [3, 2, 2]

    def test_form_teams_twice(self, client, populated):
        client.post('/api/v1/sessions/GRID/teams', json={'team_size': 3})
        response = client.post('/api/v1/sessions/GRID/teams', json={'team_size': 3})

        assert response.status_code == 409
        assert json.loads(response.data)['code'] == 'already_formed'

    def test_invalid_size(self, client, populated):
        response = client.post('/api/v1/sessions/GRID/teams', json={'team_size': 0})

        assert response.status_code == 400
        assert json.loads(response.data)['code'] == 'invalid_size'

    def test_default_size(self, client, populated):
        data = json.loads(client.post('/api/v1/sessions/GRID/teams', json={}).data)
        assert data['teams_created'] == 3

    def test_list_and_get_teams(self, client, populated):
        client.post('/api/v1/sessions/GRID/teams', json={'team_size': 3})

        teams = json.loads(client.get('/api/v1/sessions/GRID/teams').data)['teams']
        team = json.loads(client.get(f"/api/v1/teams/{teams[0]['team_id']}").data)

        assert [t['team_name'] for t in teams] == ['Team Alpha', 'Team Beta', 'Team Gamma']
        assert team['member_count'] == 3
        assert len(team['members']) == 3

    def test_participant_team(self, client, populated):
        client.post('/api/v1/sessions/GRID/teams', json={'team_size': 3})
        participant = json.loads(client.get('/api/v1/sessions/GRID/participants').data)['participants'][0]

        data = json.loads(client.get(f"/api/v1/participants/{participant['participant_id']}/team").data)

        assert data['team']['team_id'] == participant['team_id']


class TestMembership:
    """Tests for placing, moving and re-roling participants."""

    def test_place_late_arrival(self, client, populated):
        client.post('/api/v1/sessions/GRID/teams', json={'team_size': 3})
        late = json.loads(client.post('/api/v1/sessions/GRID/participants',
            json={'display_name': 'Late', 'handle': 'late'}).data)['participant']
        team_id = json.loads(client.get('/api/v1/sessions/GRID/teams').data)['teams'][1]['team_id']

        response = client.post(f"/api/v1/participants/{late['participant_id']}/team", json={'team_id': team_id})

        assert response.status_code == 201
        assert json.loads(response.data)['member']['team_id'] == team_id

    def test_cross_session_move_forbidden(self, client, populated):
        client.post('/api/v1/sessions/GRID/teams', json={'team_size': 3})
        client.post('/api/v1/sessions/OTHER/participants', json={'display_name': 'O', 'handle': 'o'})
        client.post('/api/v1/sessions/OTHER/teams', json={'team_size': 3})
        other_team = json.loads(client.get('/api/v1/sessions/OTHER/teams').data)['teams'][0]['team_id']
        participant = json.loads(client.get('/api/v1/sessions/GRID/participants').data)['participants'][0]

        response = client.post(f"/api/v1/participants/{participant['participant_id']}/team",
            json={'team_id': other_team})

        assert response.status_code == 403
        data = json.loads(response.data)
        assert data['code'] == 'session_mismatch'
        assert data['details']['team_session_id'] == 'OTHER'
        after = json.loads(client.get('/api/v1/sessions/GRID/participants').data)['participants'][0]
        assert after['team_id'] == participant['team_id']

    def test_update_role(self, client, populated):
        client.post('/api/v1/sessions/GRID/teams', json={'team_size': 3})
        participant = json.loads(client.get('/api/v1/sessions/GRID/participants').data)['participants'][0]

        response = client.put(f"/api/v1/participants/{participant['participant_id']}/role",
            json={'role_name': 'Seeker'})

        assert response.status_code == 200
        assert json.loads(response.data)['member']['role_icon'] == '🔍'


class TestTerritories:
    """Tests for distribution and assignment status endpoints."""

    def test_distribute_requires_teams(self, client, populated):
        response = client.post('/api/v1/sessions/GRID/territories')

        assert response.status_code == 409
        assert json.loads(response.data)['code'] == 'no_teams'

    def test_setup_and_verify(self, client, populated):
        response = client.post('/api/v1/sessions/GRID/setup', json={'team_size': 3, 'seed': 5})

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['territory_distribution']['regions_distributed'] == 10

        isolation = json.loads(client.get('/api/v1/sessions/GRID/verify/isolation').data)
        distribution = json.loads(client.get('/api/v1/sessions/GRID/verify/distribution').data)
        assert isolation['verification_passed'] is True
        assert distribution['validation_passed'] is True
        assert [r['region_count'] for r in distribution['regions_per_team']] == [4, 3, 3]

    def test_setup_failure_keeps_no_teams(self, app, client, populated, mocker):
        """Formation is undone when distribution fails in the same call."""
        mocker.patch.object(
            app.distribution, 'distribute_territories',
            side_effect=PreconditionError("Catalog unavailable", code='catalog_unavailable')
        )

        response = client.post('/api/v1/sessions/GRID/setup', json={'team_size': 3})

        assert response.status_code == 409
        assert json.loads(response.data)['code'] == 'catalog_unavailable'
        assert json.loads(client.get('/api/v1/sessions/GRID/teams').data)['teams'] == []
        session = json.loads(client.get('/api/v1/sessions/GRID').data)
        assert session['status'] == 'registering'
        assert 'form_teams' in session['allowed_actions']

    def test_distribute_twice(self, client, populated):
        client.post('/api/v1/sessions/GRID/setup', json={'team_size': 3})

        response = client.post('/api/v1/sessions/GRID/territories')

        assert response.status_code == 409
        assert json.loads(response.data)['code'] == 'already_distributed'

    def test_status_flow_and_progress(self, client, populated):
        client.post('/api/v1/sessions/GRID/setup', json={'team_size': 3})
        territories = json.loads(client.get('/api/v1/sessions/GRID/territories').data)['territories']
        participant = json.loads(client.get('/api/v1/sessions/GRID/participants').data)['participants'][0]
        target = territories[0]

        response = client.post(f"/api/v1/assignments/{target['assignment_id']}/status",
            json={'status': 'completed', 'participant_id': participant['participant_id'], 'notes': 'done'})

        assert response.status_code == 200
        snapshot = json.loads(response.data)
        assert snapshot['old_status'] == 'available'
        assert snapshot['completed_by'] == participant['participant_id']

        completed = json.loads(client.get('/api/v1/sessions/GRID/territories?status=completed').data)
        assert completed['count'] == 1

        progress = json.loads(client.get('/api/v1/sessions/GRID/progress').data)
        assert progress['overview']['completed_count'] == 1
        assert progress['overview']['completed_percentage'] == 10.0
        assert progress['leaderboard'][0]['team_id'] == target['team_id']
        assert progress['leaderboard'][0]['rank'] == 1

    def test_invalid_status(self, client, populated):
        client.post('/api/v1/sessions/GRID/setup', json={'team_size': 3})
        target = json.loads(client.get('/api/v1/sessions/GRID/territories').data)['territories'][0]

        response = client.post(f"/api/v1/assignments/{target['assignment_id']}/status",
            json={'status': 'finished'})

        assert response.status_code == 400
        assert json.loads(response.data)['code'] == 'invalid_status'

    def test_unknown_assignment(self, client, db_session):
        response = client.post('/api/v1/assignments/missing/status', json={'status': 'current'})

        assert response.status_code == 404
        assert json.loads(response.data)['code'] == 'unknown_assignment'

    def test_assignment_detail_and_team_progress(self, client, populated):
        client.post('/api/v1/sessions/GRID/setup', json={'team_size': 3})
        target = json.loads(client.get('/api/v1/sessions/GRID/territories').data)['territories'][0]

        detail = json.loads(client.get(f"/api/v1/assignments/{target['assignment_id']}").data)
        region = json.loads(client.get(f"/api/v1/assignments/{target['assignment_id']}/region").data)
        team = json.loads(client.get(f"/api/v1/teams/{target['team_id']}/progress").data)

        assert detail['region']['name'] == target['region_name']
        assert region['query_ready'] is True
        assert team['available_count'] == team['total_territories']


class TestRegions:

    def test_load_and_statistics(self, client, db_session):
        loaded = json.loads(client.post('/api/v1/regions', json=_regions(3)).data)
        stats = json.loads(client.get('/api/v1/regions/statistics').data)

        assert loaded == {'inserted': 3, 'updated': 0, 'total': 3}
        assert stats['active_regions'] == 3

    def test_invalid_payload(self, client, db_session):
        response = client.post('/api/v1/regions', json={'regions': 'nope'})
        assert response.status_code == 400

    def test_non_object_row(self, client, db_session):
        response = client.post('/api/v1/regions', json=['not-a-row'])

        assert response.status_code == 400
        assert json.loads(response.data)['code'] == 'invalid_catalog_row'

    def test_invalid_row(self, client, db_session):
        response = client.post('/api/v1/regions', json=[{'name': 'X', 'code': 'X', 'classification': 'planet'}])

        assert response.status_code == 400
        assert json.loads(response.data)['code'] == 'invalid_catalog_row'
