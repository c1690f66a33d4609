"""
CorrelationRepository - Data access for payment outcome correlations and
their override audit trail
"""

from typing import List, Optional, Dict, Any, Tuple
from sqlalchemy import desc, func, case

from repositories.base_repository import BaseRepository
from revenue_database import PaymentOutcomeCorrelation, CorrelationOverrideAudit


class CorrelationRepository(BaseRepository[PaymentOutcomeCorrelation]):
    """Repository for PaymentOutcomeCorrelation data access"""

    def __init__(self, session):
        super().__init__(session, PaymentOutcomeCorrelation)

    def find_by_payment_event(self, payment_event_id: int) -> Optional[PaymentOutcomeCorrelation]:
        return self.find_one_by(payment_event_id=payment_event_id)

    def insert_if_absent(self, values: Dict[str, Any]) -> Tuple[PaymentOutcomeCorrelation, bool]:
        """
        Insert a correlation unless the payment event already has one.

        Returns:
            (correlation, created); an existing row is returned untouched
        """
        created = self.insert_ignore(values, conflict_columns=['payment_event_id'])
        correlation = self.session.query(self.model_class)\
            .filter(self.model_class.payment_event_id == values['payment_event_id'])\
            .one()
        return correlation, created

    def find_by_client(self, client_id: int, limit: int = 100) -> List[PaymentOutcomeCorrelation]:
        """Correlation history for a client, newest first"""
        return self.session.query(self.model_class)\
            .filter(self.model_class.client_id == client_id)\
            .order_by(desc(self.model_class.created_at), desc(self.model_class.id))\
            .limit(limit)\
            .all()

    def get_hash_statistics(self, content_hash: Optional[str]) -> Tuple[int, int]:
        """
        Sample size and paid count for correlations sharing a content hash.

        Returns:
            (total, paid); (0, 0) when there is no hash to compare on
        """
        if not content_hash:
            return 0, 0

        total, paid = self.session.query(
            func.count(self.model_class.id),
            func.coalesce(func.sum(case((self.model_class.outcome_type == 'paid', 1), else_=0)), 0)
        ).filter(self.model_class.content_hash == content_hash).one()
        return int(total or 0), int(paid or 0)

    def get_pattern_rows(self) -> List[Dict[str, Any]]:
        """Per content hash: sample size, paid count and mean paid time to payment"""
        paid = case((self.model_class.outcome_type == 'paid', 1), else_=0)
        paid_duration = case(
            (
                (self.model_class.outcome_type == 'paid') & (self.model_class.time_to_payment_seconds >= 0),
                self.model_class.time_to_payment_seconds
            ),
            else_=None
        )

        rows = self.session.query(
            self.model_class.content_hash,
            func.count(self.model_class.id),
            func.sum(paid),
            func.avg(paid_duration),
            func.max(self.model_class.created_at)
        ).filter(self.model_class.content_hash.isnot(None))\
            .group_by(self.model_class.content_hash)\
            .all()

        return [
            {
                'content_hash': content_hash,
                'sample_size': int(total or 0),
                'paid_count': int(paid_count or 0),
                'avg_time_to_payment_seconds': float(avg_seconds) if avg_seconds is not None else None,
                'last_seen_at': last_seen,
            }
            for content_hash, total, paid_count, avg_seconds, last_seen in rows
        ]

    def get_outcome_summary(self) -> Dict[str, Any]:
        """Outcome distribution and mean time to payment across all correlations"""
        rows = self.session.query(
            self.model_class.outcome_type,
            func.count(self.model_class.id)
        ).group_by(self.model_class.outcome_type).all()

        avg_seconds = self.session.query(func.avg(self.model_class.time_to_payment_seconds))\
            .filter(self.model_class.outcome_type == 'paid')\
            .filter(self.model_class.time_to_payment_seconds >= 0)\
            .scalar()

        return {
            'distribution': {outcome: count for outcome, count in rows},
            'avg_time_to_payment_seconds': float(avg_seconds) if avg_seconds is not None else None,
        }

    def append_override_audit(self, correlation: PaymentOutcomeCorrelation, admin_id: str, reason: str,
                              previous_outcome: str, new_outcome: str) -> CorrelationOverrideAudit:
        """Add an override audit row carrying the original computed values"""
        audit = CorrelationOverrideAudit(
            correlation_id=correlation.id,
            admin_id=admin_id,
            reason=reason,
            previous_outcome=previous_outcome,
            new_outcome=new_outcome,
            original_outcome=correlation.computed_outcome,
            original_confidence=correlation.computed_confidence
        )
        self.session.add(audit)
        self.session.flush()
        return audit
