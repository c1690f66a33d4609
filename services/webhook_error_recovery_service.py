"""
WebhookErrorRecoveryService - Retry management for payment events whose
correlation could not be dispatched or computed.

Handles:
- Queuing failed correlations with exponential backoff
- Processing retry attempts until resolved or exhausted
- Manual replay from the admin API
- Failure statistics and alerting
"""

import logging
from typing import Dict, Any, Optional, TYPE_CHECKING
from datetime import timedelta
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from services.common.result import Result
from services.common.errors import NotFoundError, ConflictError
from repositories.failed_webhook_queue_repository import FailedWebhookQueueRepository
from utils.datetime_utils import utc_now

if TYPE_CHECKING:
    from revenue_database import FailedWebhookQueue, PaymentEvent
    from services.correlation_engine_service import CorrelationEngineService

logger = logging.getLogger(__name__)

DEFAULT_RETRY_CONFIG = {
    'max_retries': 5,
    'backoff_multiplier': Decimal('2.0'),
    'base_delay_seconds': 60,
}

# Alert thresholds
HIGH_UNRESOLVED_RATE_THRESHOLD = 0.20
HIGH_EXHAUSTED_COUNT_THRESHOLD = 10


class WebhookErrorRecoveryService:
    """Service for correlation retry management"""

    def __init__(self,
                 failed_webhook_repository: FailedWebhookQueueRepository,
                 correlation_engine: 'CorrelationEngineService'):
        self.failed_webhook_repository = failed_webhook_repository
        self.correlation_engine = correlation_engine

    def queue_failed_correlation(self, payment_event: 'PaymentEvent', error_message: str,
                                 retry_config: Optional[Dict[str, Any]] = None) -> Result['FailedWebhookQueue']:
        """
        Queue a payment event for a later correlation attempt.

        An event already waiting in the queue is not queued twice.
        """
        config = dict(DEFAULT_RETRY_CONFIG)
        if retry_config:
            config.update(retry_config)

        try:
            existing = self.failed_webhook_repository.find_unresolved_by_event_id(payment_event.provider_event_id)
            if existing:
                logger.warning(f"Payment event {payment_event.provider_event_id} already queued for retry")
                return Result.success(existing, metadata={'existing': True})

            entry = self.failed_webhook_repository.create(
                event_id=payment_event.provider_event_id,
                event_type=payment_event.event_type,
                payment_event_id=payment_event.id,
                original_payload=payment_event.payload or {},
                error_message=error_message,
                retry_count=0,
                max_retries=config['max_retries'],
                backoff_multiplier=config['backoff_multiplier'],
                base_delay_seconds=config['base_delay_seconds'],
                next_retry_at=utc_now() + timedelta(seconds=config['base_delay_seconds']),
                resolved=False
            )
            self.failed_webhook_repository.commit()
        except (ConflictError, SQLAlchemyError) as e:
            logger.error(f"Failed to queue payment event {payment_event.provider_event_id} for retry: {e}")
            return Result.failure(f"Failed to queue correlation retry: {e}", code='QUEUE_ERROR')

        logger.info(f"Queued payment event {entry.event_id} for correlation retry at {entry.next_retry_at}")
        return Result.success(entry)

    def process_retry(self, failed_webhook: 'FailedWebhookQueue') -> Result[Dict[str, Any]]:
        """Attempt the correlation again for one queue entry"""
        if failed_webhook.is_retry_exhausted():
            error_msg = (
                f"Payment event {failed_webhook.event_id} has exhausted all retry attempts "
                f"({failed_webhook.retry_count}/{failed_webhook.max_retries})"
            )
            logger.warning(error_msg)
            return Result.failure(error_msg, code='RETRY_EXHAUSTED')

        if not failed_webhook.can_retry_now():
            return Result.failure(f"Payment event {failed_webhook.event_id} is not ready for retry yet",
                                  code='NOT_READY')

        attempt = failed_webhook.retry_count + 1
        logger.info(f"Correlation retry {attempt}/{failed_webhook.max_retries} for {failed_webhook.event_id}")

        result = self._correlate(failed_webhook)
        if result.is_success:
            note = f"Correlated on retry attempt {attempt}"
            self.failed_webhook_repository.mark_as_resolved(failed_webhook.id, note)
            return Result.success({'processed': True, 'retry_count': attempt, 'resolution_note': note})

        self.failed_webhook_repository.increment_retry_count(failed_webhook.id, error_message=result.error)
        logger.warning(f"Correlation retry for {failed_webhook.event_id} failed: {result.error}")
        return Result.failure(f"Retry failed: {result.error}", code=result.error_code)

    def process_pending_retries(self, limit: int = 50) -> Result[Dict[str, int]]:
        """Run every due retry; used by the beat task and the CLI"""
        processed = succeeded = 0
        for entry in self.failed_webhook_repository.find_pending_retries(limit=limit):
            processed += 1
            if self.process_retry(entry).is_success:
                succeeded += 1

        if processed:
            logger.info(f"Processed {processed} correlation retries, {succeeded} succeeded")
        return Result.success({'processed': processed, 'succeeded': succeeded, 'failed': processed - succeeded})

    def manual_replay(self, failed_webhook_id: int) -> Result[Dict[str, Any]]:
        """Replay a queue entry now, ignoring its schedule and retry budget"""
        failed_webhook = self.failed_webhook_repository.get_by_id(failed_webhook_id)
        if failed_webhook is None:
            return Result.from_error(NotFoundError(f"Failed webhook {failed_webhook_id} not found"))
        if failed_webhook.resolved:
            return Result.failure(f"Payment event {failed_webhook.event_id} is already resolved", code='CONFLICT')

        logger.info(f"Manual replay requested for payment event {failed_webhook.event_id}")
        result = self._correlate(failed_webhook)
        if result.is_failure:
            logger.warning(f"Manual replay failed for {failed_webhook.event_id}: {result.error}")
            return Result.failure(f"Manual replay failed: {result.error}", code=result.error_code)

        self.failed_webhook_repository.mark_as_resolved(failed_webhook.id, 'Correlated via manual replay')
        return Result.success({
            'processed': True,
            'event_id': failed_webhook.event_id,
            'correlation_id': result.data.id,
        })

    def _correlate(self, failed_webhook: 'FailedWebhookQueue') -> Result:
        if failed_webhook.payment_event_id is None:
            return Result.failure(f"Queue entry {failed_webhook.id} has no payment event", code='NOT_FOUND')
        return self.correlation_engine.correlate_by_id(failed_webhook.payment_event_id)

    def get_failure_statistics(self, hours_back: int = 24) -> Result[Dict[str, Any]]:
        return Result.success(self.failed_webhook_repository.get_failure_statistics(hours_back=hours_back))

    def cleanup_old_failed_webhooks(self, days_old: int = 30) -> Result[Dict[str, int]]:
        deleted_count = self.failed_webhook_repository.cleanup_old_failed_webhooks(days_old)
        logger.info(f"Cleaned up {deleted_count} old queue entries (older than {days_old} days)")
        return Result.success({'deleted_count': deleted_count, 'days_old': days_old})

    def should_send_failure_alert(self, stats: Dict[str, Any]) -> bool:
        return (stats.get('unresolved_rate', 0) >= HIGH_UNRESOLVED_RATE_THRESHOLD
                or stats.get('exhausted_retries', 0) >= HIGH_EXHAUSTED_COUNT_THRESHOLD)

    def generate_failure_alert_message(self, stats: Dict[str, Any]) -> str:
        lines = [
            "Correlation retry queue alert",
            f"Unresolved rate: {stats.get('unresolved_rate', 0) * 100:.1f}%",
            f"Queued failures ({stats.get('hours_back', 24)}h): {stats.get('total_failed', 0)}",
            f"Pending retries: {stats.get('pending_retries', 0)}",
            f"Exhausted retries: {stats.get('exhausted_retries', 0)}",
        ]
        if stats.get('exhausted_retries', 0) > 0:
            lines.append("Exhausted entries need a manual replay from the admin API.")
        return "\n".join(lines)
