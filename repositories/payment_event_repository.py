"""
PaymentEventRepository - Data access for normalized payment webhook events
"""

from typing import List, Optional, Dict, Any, Tuple
from datetime import datetime
from sqlalchemy import func

from repositories.base_repository import BaseRepository
from revenue_database import PaymentEvent


class PaymentEventRepository(BaseRepository[PaymentEvent]):
    """Repository for PaymentEvent data access"""

    def __init__(self, session):
        super().__init__(session, PaymentEvent)

    def insert_if_absent(self, values: Dict[str, Any]) -> Tuple[PaymentEvent, bool]:
        """
        Insert a payment event unless it is already stored.

        A row already exists when the provider event id was seen before, or
        when another event already reported the same payment intent outcome
        (a Checkout session and its PaymentIntent both announce a payment).

        Returns:
            (event, created) where event is the stored row when created is False
        """
        created = self.insert_ignore(values)
        event = self.session.query(self.model_class)\
            .filter(self.model_class.provider_event_id == values['provider_event_id'])\
            .one_or_none()
        if event is None and values.get('payment_intent_id'):
            event = self.find_by_payment_intent(values['payment_intent_id'], status=values['status'])
        return event, created

    def find_by_payment_intent(self, payment_intent_id: str, status: Optional[str] = None) -> Optional[PaymentEvent]:
        """Earliest stored event for a payment intent, optionally with a given status"""
        query = self.session.query(self.model_class)\
            .filter(self.model_class.payment_intent_id == payment_intent_id)
        if status is not None:
            query = query.filter(self.model_class.status == status)
        return query.order_by(self.model_class.id).first()

    def find_by_statuses(self, statuses: List[str], since: Optional[datetime] = None) -> List[PaymentEvent]:
        """Events with any of the given statuses, optionally since a point in time"""
        query = self.session.query(self.model_class)\
            .filter(self.model_class.status.in_(statuses))
        if since is not None:
            query = query.filter(self.model_class.provider_timestamp >= since)
        return query.order_by(self.model_class.provider_timestamp).all()

    def count_by_status(self) -> Dict[str, int]:
        rows = self.session.query(
            self.model_class.status,
            func.count(self.model_class.id)
        ).group_by(self.model_class.status).all()
        return {status: count for status, count in rows}
