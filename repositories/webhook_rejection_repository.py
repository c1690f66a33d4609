"""
WebhookRejectionRepository - Data access for rejected webhook deliveries
"""

from typing import List
from datetime import datetime
from sqlalchemy import desc, func

from repositories.base_repository import BaseRepository
from revenue_database import WebhookRejection


class WebhookRejectionRepository(BaseRepository[WebhookRejection]):
    """Repository for WebhookRejection data access"""

    def __init__(self, session):
        super().__init__(session, WebhookRejection)

    def count_since(self, provider: str, since: datetime, reason: str = None) -> int:
        query = self.session.query(func.count(self.model_class.id))\
            .filter(self.model_class.provider == provider)\
            .filter(self.model_class.created_at >= since)
        if reason:
            query = query.filter(self.model_class.reason == reason)
        return query.scalar() or 0

    def find_recent(self, limit: int = 20) -> List[WebhookRejection]:
        return self.session.query(self.model_class)\
            .order_by(desc(self.model_class.created_at), desc(self.model_class.id))\
            .limit(limit)\
            .all()
