"""
Credit Portfolio Management System
Flask API for portfolio analytics, compliance tracking, reporting and AI-assisted credit review
"""

import logging
from datetime import datetime, timezone
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import structlog
import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from credit_portfolio.config import Config

__version__ = '1.0.0'

# Initialize extensions
db = SQLAlchemy()
jwt = JWTManager()
cors = CORS()
limiter = Limiter(key_func=get_remote_address)
migrate = Migrate()

def create_app(config_class=Config):
    """Application factory pattern for creating Flask app."""
    app = Flask(__name__)
    app.config.from_object(config_class)
    config_class.init_app(app)

    # Initialize Sentry for error tracking
    if app.config.get('SENTRY_DSN'):
        sentry_sdk.init(
            dsn=app.config['SENTRY_DSN'],
            integrations=[
                FlaskIntegration(),
                SqlalchemyIntegration(),
            ],
            traces_sample_rate=1.0,
            environment=app.config.get('FLASK_ENV', 'production')
        )

    # Setup structured logging
    setup_logging(app)

    # Initialize extensions
    db.init_app(app)
    jwt.init_app(app)
    cors.init_app(app, origins=app.config.get('CORS_ORIGINS', '*'))
    limiter.init_app(app)
    migrate.init_app(app, db)

    register_blueprints(app)
    register_error_handlers(app)
    register_security_headers(app)
    register_health_check(app)

    return app

def setup_logging(app):
    """Configure structured logging for production."""
    log_level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO'))

    if app.config.get('LOG_FORMAT') == 'json':
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=log_level)

def register_blueprints(app):
    """Register all application blueprints."""
    from credit_portfolio.api.auth import auth_bp
    from credit_portfolio.api.portfolio_routes import portfolio_bp
    from credit_portfolio.api.analytics_routes import analytics_bp
    from credit_portfolio.api.gst_routes import gst_bp
    from credit_portfolio.api.report_routes import reports_bp
    from credit_portfolio.api.chat_routes import chat_bp

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(portfolio_bp, url_prefix='/api/portfolio')
    app.register_blueprint(gst_bp, url_prefix='/api')
    app.register_blueprint(analytics_bp, url_prefix='/api/analytics')
    app.register_blueprint(reports_bp, url_prefix='/api/reports')
    app.register_blueprint(chat_bp, url_prefix='/api/chat')

# status code -> (error, message)
HTTP_ERRORS = {
    400: ('Bad Request', 'The request was malformed or invalid'),
    401: ('Unauthorized', 'Authentication required'),
    403: ('Forbidden', 'Insufficient permissions'),
    404: ('Not Found', 'The requested resource was not found'),
    405: ('Method Not Allowed', 'The method is not allowed for this endpoint'),
    413: ('Payload Too Large', 'Request size exceeds maximum limit of {max_content_length} bytes'),
    429: ('Rate Limit Exceeded', 'Too many requests. Please try again later.'),
    500: ('Internal Server Error', 'An unexpected error occurred'),
}

def _error_response(status_code, message=None):
    error, default_message = HTTP_ERRORS[status_code]
    return jsonify({
        'error': error,
        'message': message or default_message,
        'status_code': status_code
    }), status_code

def register_error_handlers(app):
    """JSON bodies for HTTP errors and for rejected JWTs."""

    def make_handler(status_code):
        def handler(error):
            if status_code == 500:
                app.logger.error(f'Internal server error: {str(error)}')
            message = HTTP_ERRORS[status_code][1].format(
                max_content_length=app.config.get('MAX_CONTENT_LENGTH'))
            return _error_response(status_code, message)
        return handler

    for status_code in HTTP_ERRORS:
        app.register_error_handler(status_code, make_handler(status_code))

    @jwt.unauthorized_loader
    def missing_token(reason):
        return _error_response(401, reason)

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return _error_response(401, f'Invalid token: {reason}')

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return _error_response(401, 'Token has expired')

def register_security_headers(app):
    """Add security headers to all responses."""

    @app.after_request
    def add_security_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        response.headers['Content-Security-Policy'] = "default-src 'self'"

        if app.config.get('SECURE_SSL_REDIRECT'):
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'

        return response

def integration_status(config):
    """Which outbound providers have credentials; unconfigured ones fall back or fail per request."""
    gst_ready = all(config.get(key) for key in ('WHITEBOOKS_CLIENT_ID', 'WHITEBOOKS_CLIENT_SECRET',
                                                'WHITEBOOKS_EMAIL'))
    return {
        'gst_provider': 'configured' if gst_ready else 'not_configured',
        'ai_assistant': 'configured' if config.get('ANTHROPIC_API_KEY') else 'mock_responses'
    }

def register_health_check(app):

    @app.route('/health')
    def health_check():
        """Database round trip plus integration configuration; 503 when the database is down."""
        try:
            db.session.execute(text('SELECT 1'))
            db_status = 'healthy'
        except SQLAlchemyError as e:
            app.logger.error(f'Database health check failed: {str(e)}')
            db_status = 'unhealthy'

        structlog.get_logger().info('health_check', database=db_status)

        healthy = db_status == 'healthy'
        return jsonify({
            'status': 'healthy' if healthy else 'unhealthy',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'services': {
                'database': db_status,
                'application': 'healthy'
            },
            'integrations': integration_status(app.config),
            'version': __version__
        }), 200 if healthy else 503
