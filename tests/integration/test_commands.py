"""
Integration tests for the flask CLI commands.
"""
import json

import pytest

from coordinator.models import Region, Team, TerritoryAssignment


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def catalog_file(tmp_path):
    path = tmp_path / 'regions.json'
    path.write_text(json.dumps([
        {'name': f'Region {i + 1:02d}', 'code': f'IN-R{i + 1:02d}', 'classification': 'state'}
        for i in range(5)
    ]))
    return str(path)


class TestCatalogCommands:

    def test_load(self, runner, db_session, catalog_file):
        result = runner.invoke(args=['catalog', 'load', catalog_file])

        assert result.exit_code == 0
        assert 'Inserted: 5' in result.output
        assert Region.query.count() == 5

    def test_stats(self, runner, make_regions):
        make_regions(4)

        result = runner.invoke(args=['catalog', 'stats'])

        assert result.exit_code == 0
        assert 'Regions:          4' in result.output


class TestSessionCommands:

    def test_form_distribute_verify(self, runner, make_session, make_participants, make_regions):
        session_id = make_session('CLI')
        make_participants(session_id, 5)
        make_regions(6)

        formed = runner.invoke(args=['session', 'form-teams', session_id, '--team-size', '2', '--seed', '9'])
        distributed = runner.invoke(args=['session', 'distribute', session_id])
        verified = runner.invoke(args=['session', 'verify', session_id])
        progress = runner.invoke(args=['session', 'progress', session_id])

        assert formed.exit_code == 0
        assert 'Formed 3 teams from 5 participants' in formed.output
        assert distributed.exit_code == 0
        assert verified.exit_code == 0
        assert 'PASS' in verified.output
        assert progress.exit_code == 0
        assert '1. Team Alpha' in progress.output
        assert Team.query.filter_by(session_id=session_id).count() == 3
        assert TerritoryAssignment.query.filter_by(session_id=session_id).count() == 6

    def test_form_teams_error(self, runner, make_session):
        session_id = make_session('EMPTY')

        result = runner.invoke(args=['session', 'form-teams', session_id])

        assert result.exit_code != 0
        assert 'participant' in result.output
