"""
Celery task that correlates a stored payment event with the content snapshot
of its payment session.

Transient failures are retried by Celery; once those retries are used up the
event moves to the failed-webhook queue for the slower backoff schedule.
"""

from celery_worker import celery
from app import create_app
from logging_config import get_logger

logger = get_logger(__name__)


class CorrelationFailed(Exception):
    pass


@celery.task(bind=True, max_retries=3, default_retry_delay=60)
def correlate_payment_event(self, payment_event_id: int):
    """
    Args:
        payment_event_id: PaymentEvent primary key

    Returns:
        Dict with status and the correlation id when successful
    """
    app = create_app()

    with app.app_context():
        correlation_engine = app.services.get('correlation_engine')
        result = correlation_engine.correlate_by_id(payment_event_id)

        if result.is_success:
            correlation = result.data
            logger.info("Payment event correlated", payment_event_id=payment_event_id,
                        correlation_id=correlation.id, created=result.metadata.get('created'))
            return {'status': 'success', 'correlation_id': correlation.id,
                    'created': result.metadata.get('created')}

        if result.error_code == 'NOT_FOUND':
            logger.error("Payment event missing for correlation", payment_event_id=payment_event_id)
            return {'status': 'error', 'message': result.error, 'permanent_failure': True}

        if self.request.retries < self.max_retries:
            logger.warning("Correlation failed, retrying", payment_event_id=payment_event_id,
                           attempt=self.request.retries + 1, error=result.error)
            raise self.retry(exc=CorrelationFailed(result.error), countdown=2 ** self.request.retries * 60)

        payment_event = app.services.get('payment_event_repository').get_by_id(payment_event_id)
        app.services.get('webhook_error_recovery').queue_failed_correlation(
            payment_event, f"Correlation task failed after {self.max_retries} retries: {result.error}"
        )
        return {'status': 'error', 'message': result.error, 'queued_for_retry': True}
