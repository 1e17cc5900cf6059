"""
Flask Application Factory for the Tenant Schema Provisioning service.

This module implements the application factory pattern for creating Flask app instances.
The factory pattern allows for:
- Multiple app instances with different configurations (dev, prod, test)
- Easier testing by creating isolated app instances
- Delayed initialization of extensions
- Better separation of concerns

The create_app() function initializes the Flask application with:
- Configuration loading
- Database and migration setup (tenant registry)
- Tenant schema provisioner (connection factory, dialect, changelog)
- Redis-backed schema locks (optional)
- CORS configuration
- Blueprint registration
- Error handlers
- Logging configuration
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from flask import Flask, jsonify
from flask.logging import default_handler
from werkzeug.exceptions import HTTPException

from app.config import config
from app.extensions import db, migrate, cors, redis_manager
from app.utils.responses import error_response


def create_app(config_name=None):
    """
    Application factory function to create and configure Flask app instance.

    Args:
        config_name: Configuration name ('development', 'production', 'testing')
                    If None, uses FLASK_ENV environment variable or defaults to 'development'

    Returns:
        Flask: Configured Flask application instance

    Example:
        app = create_app('testing')
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    config_class = config.get(config_name, config['default'])
    app.config.from_object(config_class)

    # Initialize configuration (calls init_app on config class)
    config_class.init_app(app)

    # Configure logging first so extension setup is logged
    configure_logging(app)

    initialize_extensions(app)
    register_blueprints(app)
    register_error_handlers(app)
    register_shell_context(app)

    app.logger.info(f"Flask app created with config: {config_name}")
    app.logger.info(f"Debug mode: {app.config.get('DEBUG')}")

    return app


def initialize_extensions(app):
    """
    Initialize Flask extensions with the app instance.

    Args:
        app: Flask application instance

    Extensions initialized:
        - SQLAlchemy (db): Tenant registry ORM
        - Flask-Migrate (migrate): Registry migrations
        - Flask-CORS (cors): Cross-Origin Resource Sharing
        - RedisManager: Shared schema locks
        - TenantDatabaseManager: Tenant connections and schema provisioner
    """
    db.init_app(app)
    migrate.init_app(app, db)

    cors.init_app(
        app,
        origins=app.config.get('CORS_ORIGINS', ['http://localhost:3000']),
        supports_credentials=app.config.get('CORS_ALLOW_CREDENTIALS', True),
        max_age=app.config.get('CORS_MAX_AGE', 3600),
        allow_headers=['Content-Type'],
        methods=['GET', 'POST', 'OPTIONS']
    )

    redis_manager.init_app(app)

    # Model lifecycle hooks (Tenant validation before insert)
    from app.models.base import register_base_model_events
    register_base_model_events(db)

    # Fails at startup on an unsupported dialect
    from app.utils.database import tenant_db_manager
    tenant_db_manager.init_app(app)

    app.logger.info("Extensions initialized: db, migrate, cors, redis, tenant_db_manager")


def register_blueprints(app):
    """
    Register Flask blueprints for API routes.

    Args:
        app: Flask application instance

    Blueprints registered:
        - tenants: Tenant schema provisioning endpoints (/api/tenants)
    """
    from app.routes.tenants import tenants_bp
    app.register_blueprint(tenants_bp)
    app.logger.info("Registered blueprint: tenants (/api/tenants)")

    @app.route('/health')
    def health_check():
        """Health check endpoint for monitoring."""
        return jsonify({
            'status': 'healthy',
            'service': 'Tenant Schema Provisioner',
            'version': '1.0.0'
        }), 200

    @app.route('/')
    def index():
        """Root endpoint with API information."""
        return jsonify({
            'service': 'Tenant Schema Provisioner',
            'version': '1.0.0',
            'status': 'running',
            'endpoints': {
                'health': '/health',
                'tenants': '/api/tenants',
                'provision': '/api/tenants/provision',
                'update': '/api/tenants/update',
                'rollback': '/api/tenants/rollback'
            }
        }), 200


def register_error_handlers(app):
    """
    Register global error handlers for the application.

    Errors use the JSON envelope of app.utils.responses.

    Args:
        app: Flask application instance
    """
    @app.errorhandler(400)
    def bad_request(error):
        """Handle 400 Bad Request errors."""
        return error_response(
            'BAD_REQUEST',
            str(error.description) if hasattr(error, 'description') else 'Bad request',
            status_code=400
        )

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 Not Found errors."""
        return error_response('NOT_FOUND', 'The requested resource was not found', status_code=404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        """Handle 405 Method Not Allowed errors."""
        return error_response(
            'METHOD_NOT_ALLOWED', 'The method is not allowed for this resource', status_code=405
        )

    @app.errorhandler(500)
    def internal_server_error(error):
        """Handle 500 Internal Server Error."""
        app.logger.error(f"Internal Server Error: {error}")
        return error_response('INTERNAL_ERROR', 'An internal server error occurred', status_code=500)

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle all unhandled exceptions."""
        if isinstance(error, HTTPException):
            return error_response(
                error.name.upper().replace(' ', '_'), error.description, status_code=error.code
            )

        app.logger.error(f"Unhandled exception: {error}", exc_info=True)
        db.session.rollback()
        return error_response('INTERNAL_ERROR', 'An unexpected error occurred', status_code=500)


def configure_logging(app):
    """
    Configure application logging.

    Sets up both console and file logging with rotation.
    Log levels and formats are configured from app.config.

    Args:
        app: Flask application instance

    Configuration:
        - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        - LOG_FORMAT: Log message format
        - LOG_FILE: Path to log file
        - LOG_MAX_BYTES: Maximum log file size before rotation
        - LOG_BACKUP_COUNT: Number of backup log files to keep
    """
    app.logger.removeHandler(default_handler)

    log_level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO').upper())
    app.logger.setLevel(log_level)

    formatter = logging.Formatter(
        app.config.get('LOG_FORMAT', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )

    handlers = [logging.StreamHandler()]

    log_file = app.config.get('LOG_FILE')
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)

        handlers.append(RotatingFileHandler(
            log_file,
            maxBytes=app.config.get('LOG_MAX_BYTES', 10485760),  # 10MB
            backupCount=app.config.get('LOG_BACKUP_COUNT', 5)
        ))

    # app.logger is the "app" logger: module loggers (app.tenant_db.*) propagate to it.
    # Handlers of a previous create_app() call are replaced.
    for handler in list(app.logger.handlers):
        if getattr(handler, '_app_handler', False):
            app.logger.removeHandler(handler)
            handler.close()

    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        handler._app_handler = True
        app.logger.addHandler(handler)

    app.logger.info(f"Logging configured: level={log_level}, file={log_file}")


def register_shell_context(app):
    """
    Register shell context for Flask shell.

    Context objects:
        - db: SQLAlchemy database instance
        - Tenant: Registry model
        - provisioner: SchemaProvisioner of the app
    """
    @app.shell_context_processor
    def make_shell_context():
        """Create shell context with commonly used objects."""
        from app.models.tenant import Tenant
        from app.utils.database import tenant_db_manager

        return {
            'db': db,
            'Tenant': Tenant,
            'provisioner': tenant_db_manager.provisioner,
        }
