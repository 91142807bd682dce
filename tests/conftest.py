"""
Pytest configuration and fixtures for session coordinator tests.
"""
import os
import sys
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'

from coordinator.app import create_app
from coordinator.models import db, Region
from coordinator.catalog import CatalogStore
from coordinator.session_registry import SessionRegistry


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create database session for testing."""
    # Clear all tables before each test
    db.session.remove()

    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture
def registry(db_session):
    return SessionRegistry()


@pytest.fixture
def make_session(registry):
    """Factory for sessions in 'registering' state; returns the session id."""
    def _make(session_id='GRID2025'):
        registry.ensure_session(session_id)
        return session_id
    return _make


@pytest.fixture
def make_participants(registry):
    """Factory registering ``count`` participants in a session, in order."""
    def _make(session_id, count, prefix='mapper'):
        return [
            registry.register_participant(f'{prefix.title()} {i + 1}', f'{prefix}_{i + 1}', session_id)
            for i in range(count)
        ]
    return _make


@pytest.fixture
def make_regions(db_session):
    """Factory loading ``count`` active regions named 'Region 01', 'Region 02', ..."""
    def _make(count, classification='state'):
        CatalogStore().load_regions([
            {
                'name': f'Region {i + 1:02d}',
                'code': f'IN-R{i + 1:02d}',
                'classification': classification,
                'external_id': 1000 + i,
            }
            for i in range(count)
        ])
        return Region.query.order_by(Region.name).all()
    return _make


@pytest.fixture
def formed_session(make_session, make_participants):
    """A session with 7 participants formed into teams of 3 (seeded)."""
    import random
    from coordinator.team_formation import TeamFormationEngine

    session_id = make_session('FORMED')
    make_participants(session_id, 7)
    TeamFormationEngine().form_teams(session_id, 3, rng=random.Random(7))
    return session_id


@pytest.fixture
def active_session(formed_session, make_regions):
    """The formed session with 10 regions distributed over its 3 teams."""
    from coordinator.territory_distribution import TerritoryDistributionEngine

    make_regions(10)
    TerritoryDistributionEngine().distribute_territories(formed_session)
    return formed_session


@pytest.fixture
def mock_redis(mocker):
    """MagicMock standing in for a redis client."""
    return mocker.MagicMock()
