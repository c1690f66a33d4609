"""
OutcomeTrackerService - Hypotheses on content edits and outcome labels on
clients and content versions.

Handles:
- Saving a new page version, which requires a hypothesis
- Atomic current-version switching with retry on conflicting saves
- Journey outcome transitions (pending -> paid/ghosted/responded)
- Audited overrides of terminal outcomes
- Bulk outcome marking with per-client results
"""

import logging
from typing import Dict, Any, List, Optional, TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from services.common.result import Result
from services.common.errors import RevenueEngineError, ValidationError, ConflictError
from services.enums import PageType, JourneyOutcome, VersionOutcome, ClientStatus, enum_values
from services.journey_defaults import default_page_content
from services.dashboard_service import invalidate_dashboard_cache
from repositories.client_repository import ClientRepository
from repositories.content_version_repository import ContentVersionRepository
from utils.datetime_utils import utc_now

if TYPE_CHECKING:
    from revenue_database import Client, ContentVersion
    from services.cache_service import CacheService

logger = logging.getLogger(__name__)

DEFAULT_MIN_HYPOTHESIS_LENGTH = 10
DEFAULT_MAX_SAVE_ATTEMPTS = 3
SYSTEM_ACTOR = 'system'


class OutcomeTrackerService:
    """Service for hypothesis and outcome tracking"""

    def __init__(self,
                 client_repository: ClientRepository,
                 content_version_repository: ContentVersionRepository,
                 cache: 'CacheService' = None,
                 min_hypothesis_length: int = DEFAULT_MIN_HYPOTHESIS_LENGTH,
                 max_save_attempts: int = DEFAULT_MAX_SAVE_ATTEMPTS):
        self.client_repository = client_repository
        self.content_version_repository = content_version_repository
        self.cache = cache
        self.min_hypothesis_length = min_hypothesis_length
        self.max_save_attempts = max_save_attempts

    # --- Hypotheses / content versions ---

    def validate_hypothesis(self, hypothesis: Optional[str]) -> str:
        """
        Raises:
            ValidationError: If the hypothesis is missing or too short
        """
        text = (hypothesis or '').strip()
        if not text:
            raise ValidationError("A hypothesis is required before saving content changes", field='hypothesis')
        if len(text) < self.min_hypothesis_length:
            raise ValidationError(
                f"Hypothesis must be at least {self.min_hypothesis_length} characters",
                field='hypothesis',
                min_length=self.min_hypothesis_length
            )
        return text

    def record_hypothesis(self, client_id: int, page_type: str, hypothesis: str,
                          content: Optional[Dict[str, Any]] = None,
                          iteration_notes: Optional[str] = None,
                          created_by: str = 'admin') -> Result['ContentVersion']:
        """
        Save a new current version of a journey page with its hypothesis.

        Content defaults to the current version's content. Conflicting
        concurrent saves are retried a bounded number of times.
        """
        try:
            self._validate_page_type(page_type)
            text = self.validate_hypothesis(hypothesis)
            if content is not None and not isinstance(content, dict):
                raise ValidationError("Content must be an object", field='content')
            self.client_repository.get_by_id_or_raise(client_id)
        except RevenueEngineError as e:
            return Result.from_error(e)

        last_conflict = None
        for attempt in range(1, self.max_save_attempts + 1):
            try:
                version = self._save_version(client_id, page_type, text, content, iteration_notes, created_by)
            except ConflictError as e:
                last_conflict = e
                logger.warning(
                    f"Conflicting save for client {client_id} page {page_type} "
                    f"(attempt {attempt}/{self.max_save_attempts})"
                )
                continue
            except SQLAlchemyError as e:
                self.content_version_repository.rollback()
                logger.error(f"Database error saving version for client {client_id} page {page_type}: {e}")
                return Result.failure(f"Database error saving content version: {e}", code='DATABASE_ERROR')

            logger.info(f"Saved version {version.version_number} of {page_type} for client {client_id}")
            return Result.success(version, metadata={'attempts': attempt})

        return Result.from_error(last_conflict)

    def _save_version(self, client_id: int, page_type: str, hypothesis: str,
                      content: Optional[Dict[str, Any]], iteration_notes: Optional[str],
                      created_by: str) -> 'ContentVersion':
        repo = self.content_version_repository
        current = repo.find_current(client_id, page_type)
        if content is None:
            content = dict(current.content) if current else default_page_content(page_type)

        version_number = repo.get_next_version_number(client_id, page_type)
        repo.deactivate_current(client_id, page_type)
        version = repo.create(
            client_id=client_id,
            page_type=page_type,
            content=content,
            hypothesis=hypothesis,
            iteration_notes=iteration_notes,
            outcome=VersionOutcome.PENDING.value,
            is_current=True,
            version_number=version_number,
            created_by=created_by
        )
        repo.commit()
        return version

    def get_history(self, client_id: int, page_type: str) -> Result[List['ContentVersion']]:
        """Versions of a page, most recent first"""
        try:
            self._validate_page_type(page_type)
        except ValidationError as e:
            return Result.from_error(e)
        return Result.success(self.content_version_repository.get_history(client_id, page_type))

    def mark_version_outcome(self, version_id: int, outcome: str, notes: Optional[str] = None,
                             recorded_by: str = 'admin') -> Result['ContentVersion']:
        """Record a success/failure/pending label against a content version"""
        try:
            if outcome not in enum_values(VersionOutcome):
                raise ValidationError(
                    f"Invalid version outcome '{outcome}'. Must be one of: {', '.join(enum_values(VersionOutcome))}",
                    field='outcome'
                )
            version = self.content_version_repository.get_by_id_or_raise(version_id)
            self.content_version_repository.add_outcome_label(version, outcome, notes, recorded_by)
            self.content_version_repository.commit()
        except RevenueEngineError as e:
            return Result.from_error(e)

        invalidate_dashboard_cache(self.cache)
        return Result.success(version)

    # --- Journey outcomes ---

    def mark_outcome(self, client_id: int, outcome: str, notes: Optional[str] = None,
                     changed_by: str = 'admin') -> Result['Client']:
        """
        Move a client's journey outcome out of pending.

        Re-marking the current outcome updates its notes. Relabelling a
        terminal outcome requires override_outcome().
        """
        try:
            new_outcome = self._parse_outcome(outcome)
            client = self.client_repository.get_by_id_or_raise(client_id)
            current = JourneyOutcome(client.journey_outcome)

            if current.is_terminal and new_outcome is not current:
                raise ValidationError(
                    f"Client {client.token} is already '{current.value}'; "
                    f"use an outcome override to relabel it",
                    field='outcome',
                    current_outcome=current.value
                )

            self._set_outcome(client, current, new_outcome, notes, changed_by=changed_by)
            self.client_repository.commit()
        except RevenueEngineError as e:
            self.client_repository.rollback()
            return Result.from_error(e)
        except SQLAlchemyError as e:
            self.client_repository.rollback()
            logger.error(f"Database error marking outcome for client {client_id}: {e}")
            return Result.failure(f"Database error marking outcome: {e}", code='DATABASE_ERROR')

        invalidate_dashboard_cache(self.cache)
        return Result.success(client)

    def override_outcome(self, client_id: int, outcome: str, admin_id: str, reason: str,
                         notes: Optional[str] = None) -> Result['Client']:
        """Audited relabel of a client outcome, including back to pending"""
        try:
            new_outcome = self._parse_outcome(outcome)
            if not admin_id or not str(admin_id).strip():
                raise ValidationError("Admin id is required for an override", field='admin_id')
            if not reason or not reason.strip():
                raise ValidationError("A reason is required for an override", field='reason')

            client = self.client_repository.get_by_id_or_raise(client_id)
            current = JourneyOutcome(client.journey_outcome)
            self._set_outcome(client, current, new_outcome, notes if notes is not None else client.outcome_notes,
                              changed_by=str(admin_id), reason=reason.strip(), is_override=True)
            self.client_repository.commit()
        except RevenueEngineError as e:
            self.client_repository.rollback()
            return Result.from_error(e)

        logger.info(f"Outcome override for client {client_id} by {admin_id}: {current.value} -> {new_outcome.value}")
        invalidate_dashboard_cache(self.cache)
        return Result.success(client)

    def apply_payment_outcome(self, client_id: int, reason: str) -> Result['Client']:
        """
        Mark a client paid after a successful payment.

        From pending this is a normal transition; from ghosted or responded it
        is recorded as a system override.
        """
        try:
            client = self.client_repository.get_by_id_or_raise(client_id)
            current = JourneyOutcome(client.journey_outcome)

            client.payment_status = 'paid'
            if client.status == ClientStatus.PENDING.value:
                client.status = ClientStatus.ACTIVATED.value
                client.activated_at = utc_now()

            if current is not JourneyOutcome.PAID:
                self._set_outcome(client, current, JourneyOutcome.PAID, client.outcome_notes,
                                  changed_by=SYSTEM_ACTOR, reason=reason,
                                  is_override=current.is_terminal)
            self.client_repository.commit()
        except RevenueEngineError as e:
            self.client_repository.rollback()
            return Result.from_error(e)
        except SQLAlchemyError as e:
            self.client_repository.rollback()
            return Result.failure(f"Database error applying payment outcome: {e}", code='DATABASE_ERROR')

        invalidate_dashboard_cache(self.cache)
        return Result.success(client)

    def mark_outcomes_bulk(self, client_ids: List[int], outcome: str,
                           notes: Optional[str] = None) -> Result[List[Dict[str, Any]]]:
        """
        Mark several clients independently.

        Each client is committed on its own, so one failure never rolls back
        another. The result lists one entry per requested client id.
        """
        try:
            self._parse_outcome(outcome)
        except ValidationError as e:
            return Result.from_error(e)

        results = []
        for client_id in client_ids:
            result = self.mark_outcome(client_id, outcome, notes)
            results.append({
                'client_id': client_id,
                'success': result.is_success,
                'error': result.error,
                'error_code': result.error_code,
            })

        succeeded = sum(1 for entry in results if entry['success'])
        logger.info(f"Bulk outcome '{outcome}': {succeeded}/{len(results)} clients updated")
        return Result.success(results, metadata={
            'total': len(results),
            'succeeded': succeeded,
            'failed': len(results) - succeeded,
        })

    def get_outcome_audit(self, client_id: int) -> Result[list]:
        return Result.success(self.client_repository.get_outcome_audit(client_id))

    # --- helpers ---

    def _set_outcome(self, client: 'Client', current: JourneyOutcome, new_outcome: JourneyOutcome,
                     notes: Optional[str], changed_by: str, reason: Optional[str] = None,
                     is_override: bool = False) -> None:
        client.journey_outcome = new_outcome.value
        client.outcome_notes = notes
        client.outcome_updated_at = utc_now()
        self.client_repository.append_outcome_audit(
            client,
            previous_outcome=current.value,
            new_outcome=new_outcome.value,
            notes=notes,
            changed_by=changed_by,
            reason=reason,
            is_override=is_override
        )

    @staticmethod
    def _parse_outcome(outcome: str) -> JourneyOutcome:
        if outcome not in enum_values(JourneyOutcome):
            raise ValidationError(
                f"Invalid outcome '{outcome}'. Must be one of: {', '.join(enum_values(JourneyOutcome))}",
                field='outcome'
            )
        return JourneyOutcome(outcome)

    @staticmethod
    def _validate_page_type(page_type: str) -> None:
        if page_type not in enum_values(PageType):
            raise ValidationError(
                f"Invalid page type '{page_type}'. Must be one of: {', '.join(enum_values(PageType))}",
                field='page_type'
            )
