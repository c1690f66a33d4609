"""
Correlation dispatchers - hand a stored payment event to the correlation
engine without letting correlation problems reach the webhook caller.

CeleryCorrelationDispatcher enqueues a task; InlineCorrelationDispatcher
correlates in-process (tests and single-process setups). Either way a
failure is logged and the event goes to the retry queue.
"""

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from revenue_database import PaymentEvent
    from services.correlation_engine_service import CorrelationEngineService
    from services.webhook_error_recovery_service import WebhookErrorRecoveryService

logger = logging.getLogger(__name__)


class CorrelationDispatcher:
    """Base dispatcher; dispatch() never raises"""

    def __init__(self, recovery_service: 'WebhookErrorRecoveryService'):
        self.recovery_service = recovery_service

    def dispatch(self, payment_event: 'PaymentEvent') -> bool:
        raise NotImplementedError

    def _queue_for_retry(self, payment_event: 'PaymentEvent', error_message: str) -> None:
        logger.error(f"Correlation dispatch failed for {payment_event.provider_event_id}: {error_message}")
        result = self.recovery_service.queue_failed_correlation(payment_event, error_message)
        if result.is_failure:
            logger.error(f"Payment event {payment_event.provider_event_id} could not be queued: {result.error}")


class CeleryCorrelationDispatcher(CorrelationDispatcher):
    """Enqueue correlation on the Celery worker"""

    def dispatch(self, payment_event: 'PaymentEvent') -> bool:
        from tasks.correlation_tasks import correlate_payment_event

        try:
            async_result = correlate_payment_event.delay(payment_event.id)
        except Exception as e:
            self._queue_for_retry(payment_event, f"Broker unavailable: {e}")
            return False

        logger.info(f"Dispatched correlation for {payment_event.provider_event_id} as task {async_result.id}")
        return True


class InlineCorrelationDispatcher(CorrelationDispatcher):
    """Correlate immediately in the calling process"""

    def __init__(self, recovery_service: 'WebhookErrorRecoveryService',
                 correlation_engine: 'CorrelationEngineService'):
        super().__init__(recovery_service)
        self.correlation_engine = correlation_engine

    def dispatch(self, payment_event: 'PaymentEvent') -> bool:
        try:
            result = self.correlation_engine.correlate(payment_event)
        except Exception as e:
            self._queue_for_retry(payment_event, f"Unexpected correlation error: {e}")
            return False

        if result.is_failure:
            self._queue_for_retry(payment_event, result.error)
            return False
        return True
