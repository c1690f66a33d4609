import os
import secrets
from dotenv import load_dotenv
from typing import Optional

# Find the absolute path of the root directory
basedir = os.path.abspath(os.path.dirname(__file__))

# Load the .env file from the root directory
load_dotenv(os.path.join(basedir, '.env'))


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid"""
    pass


def _env_int(key: str, default: int) -> int:
    value = os.environ.get(key)
    if value in (None, ''):
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be an integer, got '{value}'")


class Config:
    """
    Base configuration class. Contains default configuration settings
    and settings applicable to all environments.
    """
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)
    FLASK_ENV = os.environ.get('FLASK_ENV')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    @classmethod
    def validate_required_config(cls) -> None:
        """Validate that all required configuration is present"""
        if os.environ.get('FLASK_ENV') == 'testing' or os.environ.get('SKIP_ENV_VALIDATION'):
            return

        required_vars = ['STRIPE_SECRET_KEY', 'STRIPE_WEBHOOK_SECRET']
        if not (os.environ.get('DATABASE_URL') or os.environ.get('POSTGRES_URI')):
            required_vars.append('DATABASE_URL')

        missing_vars = [var for var in required_vars if not os.environ.get(var)]
        if missing_vars:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing_vars)}"
            )

    @staticmethod
    def get_required_env(key: str) -> str:
        """Get required environment variable or raise error"""
        value = os.environ.get(key)
        if not value:
            raise ConfigurationError(f"Required environment variable {key} is not set")
        return value

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('POSTGRES_URI') or \
        'sqlite:///' + os.path.join(basedir, 'revenue.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Stripe
    STRIPE_SECRET_KEY = os.environ.get('STRIPE_SECRET_KEY')
    STRIPE_WEBHOOK_SECRET = os.environ.get('STRIPE_WEBHOOK_SECRET')
    STRIPE_WEBHOOK_TOLERANCE_SECONDS = _env_int('STRIPE_WEBHOOK_TOLERANCE_SECONDS', 300)

    # Payment sessions
    PAYMENT_AMOUNT_CENTS = _env_int('PAYMENT_AMOUNT_CENTS', 50000)
    PAYMENT_SUCCESS_URL = os.environ.get('PAYMENT_SUCCESS_URL', 'http://localhost:3000/journey/success')
    PAYMENT_CANCEL_URL = os.environ.get('PAYMENT_CANCEL_URL', 'http://localhost:3000/journey/cancel')

    # Outcome tracking and correlation
    HYPOTHESIS_MIN_LENGTH = _env_int('HYPOTHESIS_MIN_LENGTH', 10)
    CORRELATION_MAX_AGE_DAYS = _env_int('CORRELATION_MAX_AGE_DAYS', 30)
    CORRELATION_DISPATCH = os.environ.get('CORRELATION_DISPATCH', 'celery')  # 'celery' or 'inline'
    CLIENT_TOKEN_MAX_ATTEMPTS = _env_int('CLIENT_TOKEN_MAX_ATTEMPTS', 100)
    CONTENT_VERSION_MAX_ATTEMPTS = _env_int('CONTENT_VERSION_MAX_ATTEMPTS', 3)
    WEBHOOK_REJECTION_ALERT_THRESHOLD = _env_int('WEBHOOK_REJECTION_ALERT_THRESHOLD', 5)

    # Dashboards
    DASHBOARD_CACHE_TTL = _env_int('DASHBOARD_CACHE_TTL', 300)
    DISPLAY_TIMEZONE = os.environ.get('DISPLAY_TIMEZONE', 'UTC')

    # Celery uses 'redis' as the hostname, the service name in docker-compose
    CELERY_BROKER_URL = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'

    MAX_CONTENT_LENGTH = 1024 * 1024  # Webhook bodies are small
    JSON_SORT_KEYS = False

    @classmethod
    def init_app(cls, app):
        """Initialize application with this config"""
        if app.config['CORRELATION_DISPATCH'] not in ('celery', 'inline'):
            raise ConfigurationError(
                f"CORRELATION_DISPATCH must be 'celery' or 'inline', got '{app.config['CORRELATION_DISPATCH']}'"
            )


class DevelopmentConfig(Config):
    """Development environment configuration"""
    DEBUG = True
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        Config.SQLALCHEMY_DATABASE_URI
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class TestingConfig(Config):
    """Testing environment configuration"""
    TESTING = True
    DEBUG = True

    # Use in-memory SQLite for tests
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    STRIPE_SECRET_KEY = 'sk_test_revenue_engine'
    STRIPE_WEBHOOK_SECRET = 'whsec_test_revenue_engine'

    # Correlate in-process; no broker in tests
    CORRELATION_DISPATCH = 'inline'
    DASHBOARD_CACHE_TTL = 60

    CELERY_BROKER_URL = 'redis://localhost:6379/1'
    CELERY_RESULT_BACKEND = 'redis://localhost:6379/1'


class ProductionConfig(Config):
    """Production environment configuration"""
    DEBUG = False
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', '')

    REDIS_URL = os.environ.get('REDIS_URL', '')
    CELERY_BROKER_URL = os.environ.get('REDIS_URL', '')
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL', '')

    # Managed Redis/Valkey over TLS needs ssl_cert_reqs in the URL
    if CELERY_BROKER_URL.startswith('rediss://') and 'ssl_cert_reqs' not in CELERY_BROKER_URL:
        separator = '&' if '?' in CELERY_BROKER_URL else '?'
        CELERY_BROKER_URL += f"{separator}ssl_cert_reqs=CERT_NONE"
        CELERY_RESULT_BACKEND += f"{separator}ssl_cert_reqs=CERT_NONE"

    @classmethod
    def init_app(cls, app):
        """Production-specific initialization"""
        Config.init_app(app)

        if not app.config.get('SQLALCHEMY_DATABASE_URI'):
            app.config['SQLALCHEMY_DATABASE_URI'] = cls.get_required_env('POSTGRES_URI')

        cls.validate_required_config()

        # Warnings and above also go to syslog
        import logging
        from logging.handlers import SysLogHandler
        syslog_handler = SysLogHandler()
        syslog_handler.setLevel(logging.WARNING)
        app.logger.addHandler(syslog_handler)


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name: Optional[str] = None) -> type[Config]:
    """Get configuration class based on environment"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    return config.get(config_name, DevelopmentConfig)
