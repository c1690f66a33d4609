"""
ContentVersionRepository - Data access for append-only journey page versions
"""

from typing import List, Optional
from sqlalchemy import desc, func

from repositories.base_repository import BaseRepository
from revenue_database import ContentVersion, ContentVersionOutcome


class ContentVersionRepository(BaseRepository[ContentVersion]):
    """Repository for ContentVersion data access"""

    def __init__(self, session):
        super().__init__(session, ContentVersion)

    def find_current(self, client_id: int, page_type: str) -> Optional[ContentVersion]:
        """The current version of one page, if any"""
        return self.find_one_by(client_id=client_id, page_type=page_type, is_current=True)

    def find_current_for_client(self, client_id: int) -> List[ContentVersion]:
        """
        Current versions across all page types.

        Database errors propagate: the snapshot service relies on them to
        detect a degraded read.
        """
        return self.session.query(self.model_class)\
            .filter(self.model_class.client_id == client_id)\
            .filter(self.model_class.is_current.is_(True))\
            .order_by(self.model_class.page_type)\
            .all()

    def get_history(self, client_id: int, page_type: str) -> List[ContentVersion]:
        """All versions of a page, most recent version number first"""
        return self.session.query(self.model_class)\
            .filter(self.model_class.client_id == client_id)\
            .filter(self.model_class.page_type == page_type)\
            .order_by(desc(self.model_class.version_number))\
            .all()

    def get_next_version_number(self, client_id: int, page_type: str) -> int:
        current_max = self.session.query(func.max(self.model_class.version_number))\
            .filter(self.model_class.client_id == client_id)\
            .filter(self.model_class.page_type == page_type)\
            .scalar()
        return (current_max or 0) + 1

    def deactivate_current(self, client_id: int, page_type: str) -> int:
        """
        Clear the current flag for a page inside the caller's transaction.

        Returns:
            Number of rows deactivated (0 or 1)
        """
        count = self.session.query(self.model_class)\
            .filter(self.model_class.client_id == client_id)\
            .filter(self.model_class.page_type == page_type)\
            .filter(self.model_class.is_current.is_(True))\
            .update({'is_current': False}, synchronize_session='fetch')
        self.session.flush()
        return count


    def add_outcome_label(self, version: ContentVersion, outcome: str,
                          notes: Optional[str] = None, recorded_by: str = 'admin') -> ContentVersionOutcome:
        """Append an outcome label to a version"""
        label = ContentVersionOutcome(
            content_version=version,
            outcome=outcome,
            notes=notes,
            recorded_by=recorded_by
        )
        self.session.add(label)
        self.session.flush()
        return label
