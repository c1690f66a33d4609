"""
Celery tasks for the correlation retry queue

Tasks:
- process_correlation_retries: periodic processing of due retries
- replay_failed_webhook: replay of one queue entry on demand
- cleanup_old_failed_webhooks: maintenance of old entries
- correlation_failure_alerts: monitoring and alerting
"""

from celery_worker import celery
from app import create_app
from logging_config import get_logger

logger = get_logger(__name__)


@celery.task(bind=True, max_retries=3, default_retry_delay=60)
def process_correlation_retries(self, limit: int = 50):
    """
    Retry correlations whose backoff has elapsed.

    Returns:
        Dict with processed/succeeded/failed counts
    """
    app = create_app()

    with app.app_context():
        try:
            recovery_service = app.services.get('webhook_error_recovery')
            counts = recovery_service.process_pending_retries(limit=limit).data
            logger.info("Processed correlation retries", **counts)
            return {'status': 'success', **counts}

        except Exception as e:
            logger.error(f"Error in process_correlation_retries task: {e}")
            if self.request.retries < self.max_retries:
                raise self.retry(exc=e, countdown=2 ** self.request.retries * 60)
            return {'status': 'error', 'message': f"process_correlation_retries failed after {self.max_retries} retries: {e}"}


@celery.task(bind=True, max_retries=3, default_retry_delay=60)
def replay_failed_webhook(self, failed_webhook_id: int):
    """Replay one queue entry now, regardless of its schedule"""
    app = create_app()

    with app.app_context():
        recovery_service = app.services.get('webhook_error_recovery')
        result = recovery_service.manual_replay(failed_webhook_id)

        if result.is_success:
            logger.info("Replayed failed webhook", failed_webhook_id=failed_webhook_id)
            return {'status': 'success', **result.data}

        if result.error_code in ('NOT_FOUND', 'CONFLICT'):
            return {'status': 'error', 'message': result.error, 'permanent_failure': True}

        if self.request.retries < self.max_retries:
            raise self.retry(exc=RuntimeError(result.error), countdown=2 ** self.request.retries * 60)
        return {'status': 'error', 'message': result.error}


@celery.task
def cleanup_old_failed_webhooks(days_old: int = 30):
    """Delete resolved or exhausted queue entries older than days_old"""
    app = create_app()

    with app.app_context():
        result = app.services.get('webhook_error_recovery').cleanup_old_failed_webhooks(days_old)
        return {'status': 'success', **result.data}


@celery.task
def correlation_failure_alerts(hours_back: int = 24):
    """Log an alert when the retry queue looks unhealthy"""
    app = create_app()

    with app.app_context():
        recovery_service = app.services.get('webhook_error_recovery')
        stats = recovery_service.get_failure_statistics(hours_back=hours_back).data

        if not recovery_service.should_send_failure_alert(stats):
            return {'status': 'success', 'alert_sent': False, 'stats': stats}

        logger.error(recovery_service.generate_failure_alert_message(stats),
                     event_type="correlation_failure_alert", **stats)
        return {'status': 'success', 'alert_sent': True, 'stats': stats}
