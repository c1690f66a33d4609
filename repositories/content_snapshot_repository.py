"""
ContentSnapshotRepository - Data access for immutable content snapshots
"""

from typing import List, Optional
from sqlalchemy import desc

from repositories.base_repository import BaseRepository
from revenue_database import ContentSnapshot


class ContentSnapshotRepository(BaseRepository[ContentSnapshot]):
    """Repository for ContentSnapshot data access. There is no update path."""

    def __init__(self, session):
        super().__init__(session, ContentSnapshot)

    def find_by_session_ref(self, payment_session_ref: str) -> Optional[ContentSnapshot]:
        if not payment_session_ref:
            return None
        return self.find_one_by(payment_session_ref=payment_session_ref)

    def find_by_client(self, client_id: int, limit: int = 20) -> List[ContentSnapshot]:
        return self.session.query(self.model_class)\
            .filter(self.model_class.client_id == client_id)\
            .order_by(desc(self.model_class.captured_at), desc(self.model_class.id))\
            .limit(limit)\
            .all()
