import os
import logging

from flask import Flask, jsonify

from .config import config
from .models import db
from .errors import CoordinatorError
from .catalog import CatalogStore
from .session_registry import SessionRegistry
from .team_formation import TeamFormationEngine
from .roster import TeamRoster
from .territory_distribution import TerritoryDistributionEngine
from .assignments import AssignmentTracker
from .progress import ProgressAggregator
from . import isolation  # noqa: F401  registers the session flush hooks
from shared.pubsub import EventPublisher

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """Application factory for the session coordinator service."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    # Initialize extensions
    db.init_app(app)

    if app.config['EVENTS_ENABLED']:
        publisher = EventPublisher.from_url(app.config['REDIS_URL'])
    else:
        publisher = EventPublisher()

    # Create tables
    with app.app_context():
        db.create_all()

    # Store services on app for access in routes and commands
    app.publisher = publisher
    app.catalog = CatalogStore()
    app.registry = SessionRegistry(publisher)
    app.formation = TeamFormationEngine(publisher)
    app.roster = TeamRoster(publisher)
    app.distribution = TerritoryDistributionEngine(publisher)
    app.assignments = AssignmentTracker(publisher)
    app.progress = ProgressAggregator()

    register_error_handlers(app)
    register_health_routes(app)

    from .routes import api
    app.register_blueprint(api.bp)

    from .commands import register_commands
    register_commands(app)

    logger.info(f"Coordinator started with '{config_name}' config (events {'on' if publisher.enabled else 'off'})")
    return app


def register_error_handlers(app: Flask):

    @app.errorhandler(CoordinatorError)
    def handle_coordinator_error(error: CoordinatorError):
        db.session.rollback()
        if error.status_code >= 500:
            logger.error(f"{type(error).__name__}: {error.message}")
        return jsonify(error.to_dict()), error.status_code


def register_health_routes(app: Flask):

    @app.route('/health')
    def health_check():
        """Health check endpoint."""
        try:
            db.session.execute(db.text('SELECT 1'))
            db_ok = True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            db_ok = False

        body = {'database': 'connected' if db_ok else 'disconnected'}
        healthy = db_ok
        if app.publisher.enabled:
            redis_ok = app.publisher.ping()
            body['redis'] = 'connected' if redis_ok else 'disconnected'
            healthy = healthy and redis_ok
        else:
            body['redis'] = 'disabled'

        body['status'] = 'healthy' if healthy else 'unhealthy'
        return jsonify(body), 200 if healthy else 503
