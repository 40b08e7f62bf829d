"""Flask application factory with security and metrics defaults."""

from __future__ import annotations

from typing import Optional

from flask import Flask, jsonify, request
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from werkzeug.exceptions import HTTPException

from core.exceptions import (
    ApplicationError,
    AuthenticationError,
    AuthorizationError,
    LotteryAlreadyRunningError,
    LotteryStateError,
    NotFoundError,
    ValidationError,
)
from database.admin_queries import LotteryReportDatabase
from services.config_service import LotteryConfigService
from services.job_worker import LotteryWorker
from services.lottery_service import LotteryJobManager
from web.auth import init_login_manager
from web.config_middleware import (
    configure_app,
    csrf,
    setup_extensions,
    setup_security_headers,
    setup_metrics,
)
from web.routes import register_routes
from web.routes.lottery import lottery_bp

# Checked in order; subclasses come before their bases
ERROR_STATUS = (
    (LotteryAlreadyRunningError, 409),
    (LotteryStateError, 409),
    (AuthenticationError, 401),
    (AuthorizationError, 403),
    (ValidationError, 400),
    (NotFoundError, 404),
)


def create_app(
    config,
    testing: bool = False,
    manager: Optional[LotteryJobManager] = None,
    config_service: Optional[LotteryConfigService] = None,
) -> Flask:
    """Create and configure Flask application.

    Args:
        config: Application configuration
        testing: Whether running in testing mode
        manager: Job manager shared with the event loop; built from config when omitted
        config_service: Lottery configuration service

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)

    # Configure application
    configure_app(app, config, testing)

    # Setup extensions
    setup_extensions(app, testing)
    csrf.exempt(lottery_bp)

    # Setup middleware
    setup_security_headers(app)
    setup_metrics(app)

    # Initialize authentication
    init_login_manager(app, LotteryReportDatabase(config.database_path))

    if manager is None:
        manager = LotteryJobManager(LotteryWorker(
            attempts=config.lottery_attempts,
            progress_batch=config.lottery_progress_batch,
            commit_timeout=config.lottery_commit_timeout,
            commit_retries=config.lottery_commit_retries,
        ))
    app.config["LOTTERY_MANAGER"] = manager
    app.config["LOTTERY_CONFIG_SERVICE"] = config_service or LotteryConfigService()

    # Register routes
    register_routes(app)

    # Setup additional handlers
    _setup_routes(app)
    _setup_error_handlers(app)

    return app


def _setup_routes(app: Flask) -> None:
    """Setup basic application routes.

    Args:
        app: Flask application instance
    """
    @app.route('/metrics')
    def metrics():
        """Expose Prometheus metrics."""
        data = generate_latest()
        return data, 200, {'Content-Type': CONTENT_TYPE_LATEST}


def error_status(error: ApplicationError) -> int:
    for exc_type, status in ERROR_STATUS:
        if isinstance(error, exc_type):
            return status
    return 500


def _setup_error_handlers(app: Flask) -> None:
    """Setup error handlers.

    Args:
        app: Flask application instance
    """
    @app.errorhandler(ApplicationError)
    def application_error(error: ApplicationError):
        status = error_status(error)
        if status >= 500:
            app.logger.exception(f"Unhandled application error on {request.path}: {error}")
            return jsonify({"error": "Internal server error"}), status
        return jsonify({"error": str(error)}), status

    @app.errorhandler(HTTPException)
    def http_error(error: HTTPException):
        return jsonify({"error": error.description}), error.code

    @app.errorhandler(500)
    def internal_error(error):
        """Handle 500 errors."""
        app.logger.error(f"Internal server error: {error}")
        return jsonify({"error": "Internal server error"}), 500
