"""
Configuration management for Credit Portfolio Management System
Supports multiple environments with secure defaults
"""

import os
from datetime import timedelta
from dotenv import load_dotenv

# Load environment variables
basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, '.env'))

class Config:
    """Base configuration class with common settings."""

    # Flask Core Settings
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    FLASK_ENV = os.environ.get('FLASK_ENV') or 'production'

    # Database Configuration
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        f'sqlite:///{os.path.join(basedir, "credit_portfolio.db")}'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 3600,
    }

    # JWT Configuration
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or SECRET_KEY
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(
        seconds=int(os.environ.get('JWT_ACCESS_TOKEN_EXPIRES', 3600))
    )
    JWT_REFRESH_TOKEN_EXPIRES = timedelta(days=30)

    # Account Security
    PASSWORD_MIN_LENGTH = int(os.environ.get('PASSWORD_MIN_LENGTH', 8))
    LOGIN_MAX_FAILED_ATTEMPTS = int(os.environ.get('LOGIN_MAX_FAILED_ATTEMPTS', 5))
    ACCOUNT_LOCKOUT = timedelta(minutes=int(os.environ.get('ACCOUNT_LOCKOUT_MINUTES', 60)))

    # Request size limit for JSON payloads
    MAX_CONTENT_LENGTH = int(os.environ.get('MAX_CONTENT_LENGTH', 10 * 1024 * 1024))  # 10MB

    # Rate Limiting Configuration
    RATELIMIT_STORAGE_URI = os.environ.get('RATE_LIMIT_STORAGE_URI') or 'memory://'
    RATELIMIT_DEFAULT = os.environ.get('DEFAULT_RATE_LIMIT', '1000 per hour')
    RATELIMIT_ENABLED = True

    # CORS Configuration
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

    # Security Configuration
    SECURE_SSL_REDIRECT = os.environ.get('SECURE_SSL_REDIRECT', 'False').lower() == 'true'
    SESSION_COOKIE_SECURE = os.environ.get('SESSION_COOKIE_SECURE', 'True').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = os.environ.get('SESSION_COOKIE_HTTPONLY', 'True').lower() == 'true'

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.environ.get('LOG_FORMAT', 'json')
    SENTRY_DSN = os.environ.get('SENTRY_DSN')

    # Portfolio Configuration
    DEFAULT_CURRENCY = os.environ.get('DEFAULT_CURRENCY', 'INR')
    PORTFOLIO_DEFAULT_PAGE_SIZE = int(os.environ.get('PORTFOLIO_DEFAULT_PAGE_SIZE', 20))
    PORTFOLIO_MAX_PAGE_SIZE = int(os.environ.get('PORTFOLIO_MAX_PAGE_SIZE', 200))

    # Retry Configuration
    RETRY_MAX_RETRIES = int(os.environ.get('RETRY_MAX_RETRIES', 3))
    RETRY_DELAY_SECONDS = int(os.environ.get('RETRY_DELAY_SECONDS', 30))
    RETRY_BACKOFF_MULTIPLIER = float(os.environ.get('RETRY_BACKOFF_MULTIPLIER', 2))

    # GST (Whitebooks) Configuration
    WHITEBOOKS_BASE_URL = os.environ.get('WHITEBOOKS_BASE_URL', 'https://api.whitebooks.in/public')
    WHITEBOOKS_CLIENT_ID = os.environ.get('WHITEBOOKS_CLIENT_ID')
    WHITEBOOKS_CLIENT_SECRET = os.environ.get('WHITEBOOKS_CLIENT_SECRET')
    WHITEBOOKS_EMAIL = os.environ.get('WHITEBOOKS_EMAIL')
    WHITEBOOKS_TIMEOUT = float(os.environ.get('WHITEBOOKS_TIMEOUT', 30))
    GST_MAX_REFRESHES = int(os.environ.get('GST_MAX_REFRESHES', 2))
    GST_REFRESH_WINDOW_DAYS = int(os.environ.get('GST_REFRESH_WINDOW_DAYS', 30))
    GST_FRESHNESS_DAYS = int(os.environ.get('GST_FRESHNESS_DAYS', 7))
    GST_API_COST_INR = float(os.environ.get('GST_API_COST_INR', 0.10))

    # AI Chat (Anthropic) Configuration
    ANTHROPIC_API_KEY = os.environ.get('ANTHROPIC_API_KEY')
    ANTHROPIC_API_URL = os.environ.get('ANTHROPIC_API_URL', 'https://api.anthropic.com/v1')
    ANTHROPIC_VERSION = os.environ.get('ANTHROPIC_VERSION', '2023-06-01')
    CLAUDE_MODEL = os.environ.get('CLAUDE_MODEL', 'claude-sonnet-4-20250514')
    CLAUDE_MAX_TOKENS = int(os.environ.get('CLAUDE_MAX_TOKENS', 10000))
    CLAUDE_TEMPERATURE = float(os.environ.get('CLAUDE_TEMPERATURE', 0.3))
    CLAUDE_TIMEOUT = float(os.environ.get('CLAUDE_TIMEOUT', 120))

    # Business Configuration
    AUDIT_LOG_RETENTION_DAYS = int(os.environ.get('AUDIT_LOG_RETENTION_DAYS', 2555))  # 7 years

    @staticmethod
    def init_app(app):
        """Initialize application with configuration."""
        pass

class DevelopmentConfig(Config):
    """Development environment configuration."""
    DEBUG = True
    FLASK_ENV = 'development'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        f'sqlite:///{os.path.join(basedir, "dev_credit_portfolio.db")}'
    SECURE_SSL_REDIRECT = False
    SESSION_COOKIE_SECURE = False
    LOG_FORMAT = os.environ.get('LOG_FORMAT', 'console')

class TestingConfig(Config):
    """Testing environment configuration."""
    TESTING = True
    FLASK_ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(seconds=300)  # 5 minutes for tests
    SECURE_SSL_REDIRECT = False
    SESSION_COOKIE_SECURE = False
    RATELIMIT_ENABLED = False
    LOG_FORMAT = 'console'
    SENTRY_DSN = None
    WHITEBOOKS_CLIENT_ID = None
    WHITEBOOKS_CLIENT_SECRET = None
    WHITEBOOKS_EMAIL = None
    ANTHROPIC_API_KEY = None

class ProductionConfig(Config):
    """Production environment configuration."""
    DEBUG = False
    TESTING = False
    FLASK_ENV = 'production'

    @classmethod
    def init_app(cls, app):
        Config.init_app(app)

        # Log to syslog in production
        import logging
        from logging.handlers import SysLogHandler
        syslog_handler = SysLogHandler()
        syslog_handler.setLevel(logging.WARNING)
        app.logger.addHandler(syslog_handler)

# Configuration mapping
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
