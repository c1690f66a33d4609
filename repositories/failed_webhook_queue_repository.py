"""
FailedWebhookQueueRepository - Data access for webhook processing retries

Handles database operations for the correlation retry queue:
- Finding entries ready for retry
- Managing retry counts and exponential backoff timing
- Cleanup and monitoring statistics
"""

from typing import List, Optional, Dict, Any
from datetime import timedelta
from sqlalchemy import desc, or_, func

from repositories.base_repository import BaseRepository
from revenue_database import FailedWebhookQueue
from utils.datetime_utils import utc_now, format_utc_iso


class FailedWebhookQueueRepository(BaseRepository[FailedWebhookQueue]):
    """Repository for FailedWebhookQueue data access and retry management"""

    def __init__(self, session):
        super().__init__(session, FailedWebhookQueue)

    def find_pending_retries(self, limit: int = 50) -> List[FailedWebhookQueue]:
        """
        Find queue entries that are ready for retry.

        Args:
            limit: Maximum number of results to return
        """
        now = utc_now()

        return self.session.query(self.model_class)\
            .filter(self.model_class.resolved.is_(False))\
            .filter(self.model_class.retry_count < self.model_class.max_retries)\
            .filter(or_(
                self.model_class.next_retry_at.is_(None),
                self.model_class.next_retry_at <= now
            ))\
            .order_by(self.model_class.created_at)\
            .limit(limit)\
            .all()

    def find_unresolved_by_event_id(self, event_id: str) -> Optional[FailedWebhookQueue]:
        return self.session.query(self.model_class)\
            .filter_by(event_id=event_id, resolved=False)\
            .first()

    def find_recent_unresolved(self, limit: int = 20) -> List[FailedWebhookQueue]:
        return self.session.query(self.model_class)\
            .filter(self.model_class.resolved.is_(False))\
            .order_by(desc(self.model_class.created_at), desc(self.model_class.id))\
            .limit(limit)\
            .all()

    def increment_retry_count(self, failed_webhook_id: int, error_message: str = None) -> Optional[FailedWebhookQueue]:
        """
        Increment retry count and schedule the next attempt with exponential backoff.

        Returns:
            Updated entry or None if not found
        """
        entry = self.session.get(self.model_class, failed_webhook_id)
        if not entry:
            return None

        entry.retry_count += 1
        entry.last_retry_at = utc_now()
        if error_message:
            entry.error_message = error_message

        if entry.retry_count < entry.max_retries:
            entry.next_retry_at = entry.calculate_next_retry_time()
        else:
            # Exhausted; left for manual replay
            entry.next_retry_at = None

        self.session.commit()
        return entry

    def mark_as_resolved(self, failed_webhook_id: int, resolution_note: str = None) -> Optional[FailedWebhookQueue]:
        entry = self.session.get(self.model_class, failed_webhook_id)
        if not entry:
            return None

        entry.resolved = True
        entry.resolved_at = utc_now()
        entry.resolution_note = resolution_note

        self.session.commit()
        return entry

    def cleanup_old_failed_webhooks(self, days_old: int = 30) -> int:
        """
        Delete resolved or exhausted entries older than the cutoff.

        Returns:
            Number of deleted records
        """
        cutoff_date = utc_now() - timedelta(days=days_old)

        deleted_count = self.session.query(self.model_class)\
            .filter(self.model_class.created_at < cutoff_date)\
            .filter(or_(
                self.model_class.resolved.is_(True),
                self.model_class.retry_count >= self.model_class.max_retries
            ))\
            .delete(synchronize_session=False)

        self.session.commit()
        return deleted_count

    def get_failure_statistics(self, hours_back: int = 24) -> Dict[str, Any]:
        """Failure counts for the trailing window, for monitoring and alerting"""
        cutoff_time = utc_now() - timedelta(hours=hours_back)
        in_window = self.session.query(func.count(self.model_class.id))\
            .filter(self.model_class.created_at >= cutoff_time)

        total_failed = in_window.scalar() or 0
        pending_retries = in_window\
            .filter(self.model_class.resolved.is_(False))\
            .filter(self.model_class.retry_count < self.model_class.max_retries)\
            .scalar() or 0
        exhausted_retries = in_window\
            .filter(self.model_class.resolved.is_(False))\
            .filter(self.model_class.retry_count >= self.model_class.max_retries)\
            .scalar() or 0
        resolved = in_window\
            .filter(self.model_class.resolved.is_(True))\
            .scalar() or 0

        unresolved_rate = (total_failed - resolved) / total_failed if total_failed else 0.0

        return {
            'hours_back': hours_back,
            'total_failed': total_failed,
            'pending_retries': pending_retries,
            'exhausted_retries': exhausted_retries,
            'resolved': resolved,
            'unresolved_rate': round(unresolved_rate, 3),
            'calculated_at': format_utc_iso(utc_now()),
        }
