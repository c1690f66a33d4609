"""
CorrelationEngineService - Links payment outcomes to the content that was
live when the payment attempt started.

Handles:
- Time-to-payment computation against the payment session's snapshot
- Outcome mapping and confidence scoring
- Idempotent correlation creation (one per payment event)
- Audited manual overrides that keep the computed values
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Any, List, Optional, Union, TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from services.common.result import Result
from services.common.errors import RevenueEngineError, ValidationError
from services.confidence_scoring import calculate_confidence, velocity_score
from services.enums import CorrelationOutcome, CorrelationFlag, enum_values
from services.dashboard_service import invalidate_dashboard_cache
from repositories.correlation_repository import CorrelationRepository
from repositories.content_snapshot_repository import ContentSnapshotRepository
from repositories.payment_event_repository import PaymentEventRepository
from utils.datetime_utils import utc_now, seconds_between

if TYPE_CHECKING:
    from revenue_database import PaymentEvent, PaymentOutcomeCorrelation
    from services.outcome_tracker_service import OutcomeTrackerService
    from services.cache_service import CacheService

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_DAYS = 30
OVERRIDE_CONFIDENCE = 1.0


@dataclass(frozen=True)
class OverrideAuditInfo:
    admin_id: str
    reason: str
    overridden_at: Optional[datetime]
    override_count: int


@dataclass(frozen=True)
class ComputedCorrelation:
    """Correlation whose outcome is the engine's own computation"""
    correlation_id: int
    outcome: str
    confidence: float

    @property
    def original_outcome(self) -> str:
        return self.outcome

    @property
    def original_confidence(self) -> float:
        return self.confidence


@dataclass(frozen=True)
class OverriddenCorrelation:
    """Correlation relabelled by an admin; the computed values stay available"""
    correlation_id: int
    outcome: str
    confidence: float
    original_outcome: str
    original_confidence: float
    audit: OverrideAuditInfo


CorrelationView = Union[ComputedCorrelation, OverriddenCorrelation]


def correlation_view(correlation: 'PaymentOutcomeCorrelation') -> CorrelationView:
    """Tagged view of a correlation row for reporting code"""
    if not correlation.is_overridden:
        return ComputedCorrelation(
            correlation_id=correlation.id,
            outcome=correlation.computed_outcome,
            confidence=correlation.computed_confidence
        )
    return OverriddenCorrelation(
        correlation_id=correlation.id,
        outcome=correlation.outcome_type,
        confidence=correlation.confidence_score,
        original_outcome=correlation.computed_outcome,
        original_confidence=correlation.computed_confidence,
        audit=OverrideAuditInfo(
            admin_id=correlation.override_admin_id,
            reason=correlation.override_reason,
            overridden_at=correlation.overridden_at,
            override_count=len(correlation.audit_entries)
        )
    )


class CorrelationEngineService:
    """Service computing and maintaining payment outcome correlations"""

    def __init__(self,
                 correlation_repository: CorrelationRepository,
                 snapshot_repository: ContentSnapshotRepository,
                 payment_event_repository: PaymentEventRepository,
                 outcome_tracker: 'OutcomeTrackerService' = None,
                 cache: 'CacheService' = None,
                 max_age_days: int = DEFAULT_MAX_AGE_DAYS):
        self.correlation_repository = correlation_repository
        self.snapshot_repository = snapshot_repository
        self.payment_event_repository = payment_event_repository
        self.outcome_tracker = outcome_tracker
        self.cache = cache
        self.max_age_seconds = max_age_days * 86400

    def correlate_by_id(self, payment_event_id: int) -> Result['PaymentOutcomeCorrelation']:
        """Load a payment event and correlate it (entry point for async workers)"""
        event = self.payment_event_repository.get_by_id(payment_event_id)
        if event is None:
            return Result.failure(f"Payment event {payment_event_id} not found", code='NOT_FOUND')
        return self.correlate(event)

    def correlate(self, payment_event: 'PaymentEvent') -> Result['PaymentOutcomeCorrelation']:
        """
        Create the correlation for a payment event, or return the existing one.

        A missing snapshot produces a null-content correlation; suspicious
        durations are flagged but still recorded.
        """
        try:
            existing = self.correlation_repository.find_by_payment_event(payment_event.id)
            if existing:
                logger.info(f"Correlation already exists for payment event {payment_event.provider_event_id}")
                return Result.success(existing, metadata={'created': False})

            values = self._compute(payment_event)
            correlation, created = self.correlation_repository.insert_if_absent(values)
            self.correlation_repository.commit()

        except RevenueEngineError as e:
            self.correlation_repository.rollback()
            logger.error(f"Correlation failed for payment event {payment_event.id}: {e}")
            return Result.from_error(e)
        except SQLAlchemyError as e:
            self.correlation_repository.rollback()
            logger.error(f"Database error correlating payment event {payment_event.id}: {e}")
            return Result.failure(f"Database error during correlation: {e}", code='DATABASE_ERROR')

        if not created:
            return Result.success(correlation, metadata={'created': False})

        if correlation.flags:
            logger.warning(
                f"Correlation {correlation.id} for {payment_event.provider_event_id} flagged: "
                f"{', '.join(correlation.flags)}"
            )
        logger.info(
            f"Correlated payment event {payment_event.provider_event_id}: outcome={correlation.outcome_type} "
            f"time_to_payment={correlation.time_to_payment_seconds} confidence={correlation.confidence_score}"
        )

        invalidate_dashboard_cache(self.cache)
        self._apply_client_outcome(payment_event, correlation)
        return Result.success(correlation, metadata={'created': True})

    def _compute(self, payment_event: 'PaymentEvent') -> Dict[str, Any]:
        outcome = CorrelationOutcome.from_payment_status(payment_event.status)
        snapshot = self.snapshot_repository.find_by_session_ref(payment_event.payment_session_ref)

        flags = []
        time_to_payment = None
        content_hash = None
        if snapshot is None:
            flags.append(CorrelationFlag.MISSING_SNAPSHOT.value)
        else:
            content_hash = snapshot.content_hash
            if snapshot.is_fallback:
                flags.append(CorrelationFlag.FALLBACK_SNAPSHOT.value)
            time_to_payment = seconds_between(snapshot.captured_at, payment_event.provider_timestamp)
            if time_to_payment < 0:
                flags.append(CorrelationFlag.NEGATIVE_DURATION.value)
            elif time_to_payment > self.max_age_seconds:
                flags.append(CorrelationFlag.EXCEEDS_MAX_WINDOW.value)

        prior_total, prior_paid = self.correlation_repository.get_hash_statistics(content_hash)
        is_paid = outcome is CorrelationOutcome.PAID
        velocity = velocity_score(time_to_payment) if is_paid else 0.0
        confidence = calculate_confidence(
            sample_size=prior_total + 1,
            success_count=prior_paid + (1 if is_paid else 0),
            velocity=velocity
        )

        return {
            'content_snapshot_id': snapshot.id if snapshot else None,
            'payment_event_id': payment_event.id,
            'client_id': payment_event.client_id if payment_event.client_id is not None else (
                snapshot.client_id if snapshot else None
            ),
            'content_hash': content_hash,
            'time_to_payment_seconds': round(time_to_payment, 3) if time_to_payment is not None else None,
            'computed_outcome': outcome.value,
            'computed_confidence': confidence,
            'outcome_type': outcome.value,
            'confidence_score': confidence,
            'flags': flags,
            'is_overridden': False,
            'created_at': utc_now(),
        }

    def _apply_client_outcome(self, payment_event: 'PaymentEvent',
                              correlation: 'PaymentOutcomeCorrelation') -> None:
        if self.outcome_tracker is None or correlation.client_id is None:
            return
        if correlation.computed_outcome != CorrelationOutcome.PAID.value:
            return

        result = self.outcome_tracker.apply_payment_outcome(
            correlation.client_id,
            reason=f"Payment {payment_event.provider_event_id} succeeded"
        )
        if result.is_failure:
            logger.warning(f"Could not mark client {correlation.client_id} as paid: {result.error}")

    def override_correlation(self, correlation_id: int, new_outcome: str,
                             admin_id: str, reason: str) -> Result['PaymentOutcomeCorrelation']:
        """
        Relabel a correlation. Last write wins; every call is audited and the
        computed outcome and confidence stay on the row.
        """
        try:
            if new_outcome not in enum_values(CorrelationOutcome):
                raise ValidationError(
                    f"Invalid outcome '{new_outcome}'. Must be one of: {', '.join(enum_values(CorrelationOutcome))}",
                    field='outcome'
                )
            if not admin_id or not str(admin_id).strip():
                raise ValidationError("Admin id is required for an override", field='admin_id')
            if not reason or not reason.strip():
                raise ValidationError("A reason is required for an override", field='reason')

            correlation = self.correlation_repository.get_by_id_or_raise(correlation_id)
            previous_outcome = correlation.outcome_type

            self.correlation_repository.update(
                correlation,
                outcome_type=new_outcome,
                confidence_score=OVERRIDE_CONFIDENCE,
                is_overridden=True,
                override_admin_id=str(admin_id),
                override_reason=reason.strip(),
                overridden_at=utc_now()
            )
            self.correlation_repository.append_override_audit(
                correlation,
                admin_id=str(admin_id),
                reason=reason.strip(),
                previous_outcome=previous_outcome,
                new_outcome=new_outcome
            )
            self.correlation_repository.commit()

        except RevenueEngineError as e:
            logger.warning(f"Override of correlation {correlation_id} rejected: {e}")
            return Result.from_error(e)
        except SQLAlchemyError as e:
            self.correlation_repository.rollback()
            logger.error(f"Database error overriding correlation {correlation_id}: {e}")
            return Result.failure(f"Database error during override: {e}", code='DATABASE_ERROR')

        logger.info(
            f"Correlation {correlation_id} overridden by {admin_id}: {previous_outcome} -> {new_outcome}"
        )
        invalidate_dashboard_cache(self.cache)
        return Result.success(correlation)

    def get_correlation_history(self, client_id: int, limit: int = 100) -> Result[List['PaymentOutcomeCorrelation']]:
        """Correlations for a client, newest first"""
        return Result.success(self.correlation_repository.find_by_client(client_id, limit=limit))

    def get_correlation_review(self, correlation_id: int) -> Result[Dict[str, Any]]:
        """
        Everything an admin needs before relabelling a correlation.

        Returns:
            Result with 'correlation', its tagged 'view', the override
            'audit' trail (oldest first) and data quality 'issues'
        """
        correlation = self.correlation_repository.get_by_id(correlation_id)
        if correlation is None:
            return Result.failure(f"Correlation {correlation_id} not found", code='NOT_FOUND')

        view = correlation.view()
        return Result.success({
            'correlation': correlation.to_dict(),
            'view': {
                'kind': 'overridden' if isinstance(view, OverriddenCorrelation) else 'computed',
                'outcome': view.outcome,
                'confidence': view.confidence,
                'original_outcome': view.original_outcome,
                'original_confidence': view.original_confidence,
            },
            'audit': [entry.to_dict() for entry in correlation.audit_entries],
            'issues': self.validate_correlation(correlation),
        })

    def validate_correlation(self, correlation: 'PaymentOutcomeCorrelation') -> List[Dict[str, str]]:
        """
        Data quality issues for a correlation.

        Returns:
            List of {'code', 'message'} entries; empty when nothing looks off
        """
        issues = []
        flags = set(correlation.flags or [])

        if correlation.content_snapshot_id is None or CorrelationFlag.MISSING_SNAPSHOT.value in flags:
            issues.append({'code': 'missing_snapshot', 'message': 'No content snapshot for this payment session'})
        if CorrelationFlag.FALLBACK_SNAPSHOT.value in flags:
            issues.append({'code': 'fallback_snapshot', 'message': 'Snapshot was captured without content'})
        if correlation.time_to_payment_seconds is not None:
            if correlation.time_to_payment_seconds < 0:
                issues.append({'code': 'negative_duration', 'message': 'Payment predates the snapshot'})
            elif correlation.time_to_payment_seconds > self.max_age_seconds:
                issues.append({'code': 'stale_snapshot', 'message': 'Snapshot is older than the correlation window'})
        for label, value in (('confidence_score', correlation.confidence_score),
                             ('computed_confidence', correlation.computed_confidence)):
            if value is None or not 0.0 <= value <= 1.0:
                issues.append({'code': 'confidence_out_of_range', 'message': f'{label} is {value}'})

        return issues
