"""
HolyLoy Points Ledger
Flask application factory
"""
import os
import logging
from flask import Flask
from flask_cors import CORS

from .extensions import db, migrate
from .config import get_config
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration environment (development, production, testing)

    Returns:
        Configured Flask application
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    # Setup logging before anything else
    setup_logging()

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    CORS(
        app,
        origins=app.config['CORS_ORIGINS'],
        supports_credentials=True,
        allow_headers=['Content-Type', 'Authorization', 'X-Account-ID', 'Idempotency-Key']
    )

    # Register blueprints
    from .api.admin import admin_bp
    from .api.merchant import merchant_bp
    from .api.accounts import accounts_bp

    app.register_blueprint(admin_bp, url_prefix='/api/admin')
    app.register_blueprint(merchant_bp, url_prefix='/api/merchant')
    app.register_blueprint(accounts_bp, url_prefix='/api/accounts')

    # Register CLI commands
    from .commands import init_app as init_commands
    init_commands(app)

    # Background reconciliation jobs
    from .utils.scheduler import init_scheduler
    init_scheduler(app)

    # Register error handlers
    register_error_handlers(app)

    # Health check endpoint
    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'service': 'holyloy-ledger'}

    return app


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from .utils import errors
    from .utils.errors import ledger_error_response, error_response, ErrorCode
    from .utils.exceptions import LedgerError

    @app.errorhandler(LedgerError)
    def handle_ledger_error(error):
        return ledger_error_response(error)

    @app.errorhandler(400)
    def bad_request(error):
        return errors.bad_request(str(error))

    @app.errorhandler(404)
    def not_found(error):
        return errors.not_found('Not found')

    @app.errorhandler(405)
    def method_not_allowed(error):
        return error_response('Method not allowed', ErrorCode.INVALID_REQUEST, 405, log_error=False)

    @app.errorhandler(500)
    def internal_error(error):
        return errors.internal_error()
