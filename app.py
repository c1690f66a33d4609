# app.py

from flask import Flask, g, request, jsonify
from flask_migrate import Migrate
from config import get_config
from extensions import db
import os
import uuid
from werkzeug.middleware.proxy_fix import ProxyFix
from logging_config import setup_logging, get_logger

# Configure logging as early as possible
setup_logging(app_name="revenue-intelligence-engine", log_level=os.environ.get('LOG_LEVEL', 'INFO'))
logger = get_logger(__name__)


def init_sentry():
    """Initialize Sentry error tracking in production."""
    sentry_dsn = os.environ.get('SENTRY_DSN')
    if sentry_dsn and os.environ.get('FLASK_ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
        from sentry_sdk.integrations.celery import CeleryIntegration

        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[
                FlaskIntegration(transaction_style='endpoint'),
                SqlalchemyIntegration(),
                CeleryIntegration()
            ],
            traces_sample_rate=0.1,
            environment=os.environ.get('FLASK_ENV', 'development'),
            release=os.environ.get('GIT_SHA', 'unknown')
        )
        logger.info("Sentry error tracking initialized")


init_sentry()


def create_app(config_name=None, test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)
    config_class.init_app(app)

    if test_config:
        app.config.update(test_config)

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    db.init_app(app)
    Migrate(app, db)

    app.services = _build_registry(app.config)

    # Request tracking middleware
    @app.before_request
    def before_request():
        g.request_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())
        logger.info("Request started",
                    request_id=g.request_id,
                    method=request.method,
                    path=request.path)

    @app.after_request
    def after_request(response):
        response.headers['X-Request-ID'] = getattr(g, 'request_id', '')
        logger.info("Request completed",
                    request_id=getattr(g, 'request_id', None),
                    status_code=response.status_code)
        return response

    # Global error handlers
    @app.errorhandler(500)
    def internal_error(error):
        logger.error("Internal server error",
                     request_id=getattr(g, 'request_id', None),
                     error=str(error))
        return jsonify({'error': 'Internal server error', 'request_id': getattr(g, 'request_id', None)}), 500

    @app.errorhandler(404)
    def not_found_error(error):
        logger.warning("Not found",
                       request_id=getattr(g, 'request_id', None),
                       path=request.path)
        return jsonify({'error': 'Not found', 'code': 'NOT_FOUND'}), 404

    @app.route('/health')
    def health_check():
        """Health check endpoint for monitoring"""
        from sqlalchemy import text
        health_status = {
            'status': 'healthy',
            'service': 'revenue-intelligence-engine'
        }

        try:
            db.session.execute(text('SELECT 1'))
            health_status['database'] = 'connected'
        except Exception as e:
            health_status['database'] = 'error'
            health_status['status'] = 'degraded'
            logger.error(f"Health check database error: {e}")

        return jsonify(health_status), 200 if health_status['status'] == 'healthy' else 503

    from routes.webhook_routes import webhook_bp
    from routes.admin_routes import admin_bp

    app.register_blueprint(webhook_bp, url_prefix='/api/webhooks')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')

    from scripts import commands
    commands.init_app(app)

    return app


def _build_registry(config):
    """Register every repository and service with lazy factories"""
    from services.service_registry_enhanced import create_enhanced_registry, ServiceLifecycle
    registry = create_enhanced_registry()

    # Use a factory for db_session so tests pick up the active session
    registry.register_factory(
        'db_session',
        lambda: _get_current_db_session(),
        lifecycle=ServiceLifecycle.SCOPED
    )
    registry.register_singleton('cache', lambda: _create_cache_service(config))

    # Repositories
    registry.register_factory(
        'client_repository',
        lambda db_session: _create_client_repository(db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'content_version_repository',
        lambda db_session: _create_content_version_repository(db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'payment_event_repository',
        lambda db_session: _create_payment_event_repository(db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'content_snapshot_repository',
        lambda db_session: _create_content_snapshot_repository(db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'correlation_repository',
        lambda db_session: _create_correlation_repository(db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'webhook_rejection_repository',
        lambda db_session: _create_webhook_rejection_repository(db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'failed_webhook_queue_repository',
        lambda db_session: _create_failed_webhook_queue_repository(db_session),
        dependencies=['db_session']
    )

    # Services
    registry.register_singleton(
        'client',
        lambda client_repository, content_version_repository: _create_client_service(
            client_repository, content_version_repository, config
        ),
        dependencies=['client_repository', 'content_version_repository']
    )
    registry.register_singleton(
        'outcome_tracker',
        lambda client_repository, content_version_repository, cache: _create_outcome_tracker_service(
            client_repository, content_version_repository, cache, config
        ),
        dependencies=['client_repository', 'content_version_repository', 'cache']
    )
    registry.register_singleton(
        'content_snapshot',
        lambda content_snapshot_repository, content_version_repository: _create_content_snapshot_service(
            content_snapshot_repository, content_version_repository
        ),
        dependencies=['content_snapshot_repository', 'content_version_repository']
    )
    registry.register_singleton(
        'correlation_engine',
        lambda correlation_repository, content_snapshot_repository, payment_event_repository,
        outcome_tracker, cache: _create_correlation_engine_service(
            correlation_repository, content_snapshot_repository, payment_event_repository,
            outcome_tracker, cache, config
        ),
        dependencies=['correlation_repository', 'content_snapshot_repository', 'payment_event_repository',
                      'outcome_tracker', 'cache']
    )
    registry.register_singleton(
        'dashboard',
        lambda client_repository, payment_event_repository, correlation_repository,
        webhook_rejection_repository, failed_webhook_queue_repository, cache: _create_dashboard_service(
            client_repository, payment_event_repository, correlation_repository,
            webhook_rejection_repository, failed_webhook_queue_repository, cache, config
        ),
        dependencies=['client_repository', 'payment_event_repository', 'correlation_repository',
                      'webhook_rejection_repository', 'failed_webhook_queue_repository', 'cache']
    )
    registry.register_singleton('payment_gateway', lambda: _create_payment_gateway(config))
    registry.register_singleton(
        'payment_session',
        lambda client_repository, content_snapshot, payment_gateway: _create_payment_session_service(
            client_repository, content_snapshot, payment_gateway, config
        ),
        dependencies=['client_repository', 'content_snapshot', 'payment_gateway']
    )
    registry.register_singleton(
        'webhook_error_recovery',
        lambda failed_webhook_queue_repository, correlation_engine: _create_webhook_error_recovery_service(
            failed_webhook_queue_repository, correlation_engine
        ),
        dependencies=['failed_webhook_queue_repository', 'correlation_engine']
    )
    registry.register_singleton(
        'correlation_dispatcher',
        lambda webhook_error_recovery, correlation_engine: _create_correlation_dispatcher(
            webhook_error_recovery, correlation_engine, config
        ),
        dependencies=['webhook_error_recovery', 'correlation_engine']
    )
    registry.register_singleton(
        'webhook_ingest',
        lambda payment_event_repository, client_repository, webhook_rejection_repository,
        correlation_dispatcher: _create_webhook_ingest_service(
            payment_event_repository, client_repository, webhook_rejection_repository,
            correlation_dispatcher, config
        ),
        dependencies=['payment_event_repository', 'client_repository', 'webhook_rejection_repository',
                      'correlation_dispatcher']
    )

    errors = registry.validate_dependencies()
    if errors:
        raise RuntimeError(f"Service registry misconfigured: {'; '.join(errors)}")
    logger.debug(f"Service initialization order: {registry.get_initialization_order()}")

    if config.get('FLASK_ENV') == 'production':
        registry.warmup(['cache', 'payment_gateway'])

    return registry


# Service Factory Functions
# These are only called when the service is first requested

def _create_cache_service(config):
    from services.cache_service import CacheService
    return CacheService(default_ttl=config['DASHBOARD_CACHE_TTL'])


def _create_client_repository(db_session):
    from repositories.client_repository import ClientRepository
    return ClientRepository(session=db_session)


def _create_content_version_repository(db_session):
    from repositories.content_version_repository import ContentVersionRepository
    return ContentVersionRepository(session=db_session)


def _create_payment_event_repository(db_session):
    from repositories.payment_event_repository import PaymentEventRepository
    return PaymentEventRepository(session=db_session)


def _create_content_snapshot_repository(db_session):
    from repositories.content_snapshot_repository import ContentSnapshotRepository
    return ContentSnapshotRepository(session=db_session)


def _create_correlation_repository(db_session):
    from repositories.correlation_repository import CorrelationRepository
    return CorrelationRepository(session=db_session)


def _create_webhook_rejection_repository(db_session):
    from repositories.webhook_rejection_repository import WebhookRejectionRepository
    return WebhookRejectionRepository(session=db_session)


def _create_failed_webhook_queue_repository(db_session):
    from repositories.failed_webhook_queue_repository import FailedWebhookQueueRepository
    return FailedWebhookQueueRepository(session=db_session)


def _create_client_service(client_repository, content_version_repository, config):
    from services.client_service import ClientService
    return ClientService(
        client_repository=client_repository,
        content_version_repository=content_version_repository,
        max_token_attempts=config['CLIENT_TOKEN_MAX_ATTEMPTS']
    )


def _create_outcome_tracker_service(client_repository, content_version_repository, cache, config):
    from services.outcome_tracker_service import OutcomeTrackerService
    return OutcomeTrackerService(
        client_repository=client_repository,
        content_version_repository=content_version_repository,
        cache=cache,
        min_hypothesis_length=config['HYPOTHESIS_MIN_LENGTH'],
        max_save_attempts=config['CONTENT_VERSION_MAX_ATTEMPTS']
    )


def _create_content_snapshot_service(content_snapshot_repository, content_version_repository):
    from services.content_snapshot_service import ContentSnapshotService
    return ContentSnapshotService(
        snapshot_repository=content_snapshot_repository,
        content_version_repository=content_version_repository
    )


def _create_correlation_engine_service(correlation_repository, content_snapshot_repository,
                                       payment_event_repository, outcome_tracker, cache, config):
    from services.correlation_engine_service import CorrelationEngineService
    return CorrelationEngineService(
        correlation_repository=correlation_repository,
        snapshot_repository=content_snapshot_repository,
        payment_event_repository=payment_event_repository,
        outcome_tracker=outcome_tracker,
        cache=cache,
        max_age_days=config['CORRELATION_MAX_AGE_DAYS']
    )


def _create_dashboard_service(client_repository, payment_event_repository, correlation_repository,
                              webhook_rejection_repository, failed_webhook_queue_repository, cache, config):
    from services.dashboard_service import DashboardService
    return DashboardService(
        client_repository=client_repository,
        payment_event_repository=payment_event_repository,
        correlation_repository=correlation_repository,
        webhook_rejection_repository=webhook_rejection_repository,
        failed_webhook_repository=failed_webhook_queue_repository,
        cache=cache,
        cache_ttl=config['DASHBOARD_CACHE_TTL'],
        display_timezone=config['DISPLAY_TIMEZONE']
    )


def _create_payment_gateway(config):
    from services.payment_session_service import StripeCheckoutGateway
    return StripeCheckoutGateway(
        secret_key=config.get('STRIPE_SECRET_KEY'),
        success_url=config['PAYMENT_SUCCESS_URL'],
        cancel_url=config['PAYMENT_CANCEL_URL']
    )


def _create_payment_session_service(client_repository, content_snapshot, payment_gateway, config):
    from services.payment_session_service import PaymentSessionService
    return PaymentSessionService(
        client_repository=client_repository,
        snapshot_service=content_snapshot,
        gateway=payment_gateway,
        default_amount_cents=config['PAYMENT_AMOUNT_CENTS']
    )


def _create_webhook_error_recovery_service(failed_webhook_queue_repository, correlation_engine):
    from services.webhook_error_recovery_service import WebhookErrorRecoveryService
    return WebhookErrorRecoveryService(
        failed_webhook_repository=failed_webhook_queue_repository,
        correlation_engine=correlation_engine
    )


def _create_correlation_dispatcher(webhook_error_recovery, correlation_engine, config):
    from services.correlation_dispatcher import CeleryCorrelationDispatcher, InlineCorrelationDispatcher
    if config['CORRELATION_DISPATCH'] == 'inline':
        return InlineCorrelationDispatcher(webhook_error_recovery, correlation_engine)
    return CeleryCorrelationDispatcher(webhook_error_recovery)


def _create_webhook_ingest_service(payment_event_repository, client_repository, webhook_rejection_repository,
                                   correlation_dispatcher, config):
    from services.webhook_ingest_service import WebhookIngestService
    return WebhookIngestService(
        payment_event_repository=payment_event_repository,
        client_repository=client_repository,
        webhook_rejection_repository=webhook_rejection_repository,
        dispatcher=correlation_dispatcher,
        webhook_secret=config.get('STRIPE_WEBHOOK_SECRET'),
        tolerance_seconds=config['STRIPE_WEBHOOK_TOLERANCE_SECONDS'],
        rejection_alert_threshold=config['WEBHOOK_REJECTION_ALERT_THRESHOLD']
    )


def _get_current_db_session():
    """
    The Flask-SQLAlchemy scoped session proxy.

    Repositories hold the proxy rather than a concrete session, so each
    request and each test works against its own active session.
    """
    return db.session
