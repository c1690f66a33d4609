"""
Repository Layer - Data Access Abstraction
Implements the Repository Pattern for database isolation
"""

from .base_repository import BaseRepository, SortOrder
from .client_repository import ClientRepository
from .content_version_repository import ContentVersionRepository
from .payment_event_repository import PaymentEventRepository
from .content_snapshot_repository import ContentSnapshotRepository
from .correlation_repository import CorrelationRepository
from .webhook_rejection_repository import WebhookRejectionRepository
from .failed_webhook_queue_repository import FailedWebhookQueueRepository

__all__ = [
    'BaseRepository',
    'SortOrder',
    'ClientRepository',
    'ContentVersionRepository',
    'PaymentEventRepository',
    'ContentSnapshotRepository',
    'CorrelationRepository',
    'WebhookRejectionRepository',
    'FailedWebhookQueueRepository'
]
