"""
ContentSnapshotService - Freezes a client's current journey content when a
payment attempt starts, so later edits cannot change historical correlation.

snapshot() never raises: when the content read fails it stores a minimal
snapshot (client id and timestamp, empty content) instead, because a missing
snapshot degrades analytics, not revenue.
"""

import hashlib
import json
import logging
from typing import Dict, Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from services.common.result import Result
from services.common.errors import DegradedDependencyError, ConflictError, NotFoundError
from repositories.content_snapshot_repository import ContentSnapshotRepository
from repositories.content_version_repository import ContentVersionRepository
from revenue_database import ContentSnapshot

logger = logging.getLogger(__name__)

# Fields compared between snapshots and their impact weight
FIELD_IMPACT = {
    'title': 0.9,
    'body': 0.7,
    'metadata': 0.4,
}


def compute_content_hash(captured_content: Dict[str, Any]) -> Optional[str]:
    """
    SHA-256 of the canonical JSON of the page content (title, body, metadata
    per page type). Version ids are excluded so identical content shares a
    hash across clients. Empty content has no hash.
    """
    if not captured_content:
        return None

    canonical = {
        page_type: {field: page.get(field) for field in FIELD_IMPACT}
        for page_type, page in captured_content.items()
    }
    encoded = json.dumps(canonical, sort_keys=True, separators=(',', ':'), default=str)
    return hashlib.sha256(encoded.encode('utf-8')).hexdigest()


class ContentSnapshotService:
    """Service for capturing and comparing content snapshots"""

    def __init__(self,
                 snapshot_repository: ContentSnapshotRepository,
                 content_version_repository: ContentVersionRepository):
        self.snapshot_repository = snapshot_repository
        self.content_version_repository = content_version_repository

    def capture_content(self, client_id: int) -> Dict[str, Any]:
        """
        Denormalized copy of every current page version for a client.

        Raises:
            DegradedDependencyError: If the content read fails
        """
        try:
            versions = self.content_version_repository.find_current_for_client(client_id)
        except SQLAlchemyError as e:
            raise DegradedDependencyError(
                f"Could not read current content for client {client_id}: {e}",
                client_id=client_id
            ) from e

        captured = {}
        for version in versions:
            content = version.content or {}
            captured[version.page_type] = {
                'content_version_id': version.id,
                'version_number': version.version_number,
                'title': content.get('title'),
                'body': content.get('body'),
                'metadata': content.get('metadata') or {},
                'hypothesis': version.hypothesis,
            }
        return captured

    def snapshot(self, client_id: int, payment_session_ref: str) -> Result[ContentSnapshot]:
        """
        Create the snapshot for a payment attempt.

        Idempotent per payment session reference. Falls back to a minimal
        snapshot when content cannot be read; only fails (with
        DEGRADED_DEPENDENCY) if even the minimal row cannot be written.
        """
        try:
            existing = self.snapshot_repository.find_by_session_ref(payment_session_ref)
            if existing:
                logger.info(f"Snapshot already exists for payment session {payment_session_ref}")
                return Result.success(existing, metadata={'existing': True})

            try:
                captured = self.capture_content(client_id)
            except DegradedDependencyError as e:
                logger.warning(f"Falling back to minimal snapshot for client {client_id}: {e}")
                self.snapshot_repository.rollback()
                return self._store(client_id, payment_session_ref, {}, fallback_reason=str(e))

            return self._store(client_id, payment_session_ref, captured)

        except Exception as e:
            logger.error(f"Snapshot creation failed for client {client_id}, session {payment_session_ref}: {e}")
            try:
                self.snapshot_repository.rollback()
            except SQLAlchemyError as rollback_error:
                logger.error(f"Rollback after snapshot failure also failed: {rollback_error}")
            return Result.from_error(DegradedDependencyError(
                f"Snapshot unavailable: {e}",
                client_id=client_id,
                payment_session_ref=payment_session_ref
            ))

    def _store(self, client_id: int, payment_session_ref: str, captured: Dict[str, Any],
               fallback_reason: Optional[str] = None) -> Result[ContentSnapshot]:
        try:
            snapshot = self.snapshot_repository.create(
                client_id=client_id,
                payment_session_ref=payment_session_ref,
                captured_content=captured,
                content_hash=compute_content_hash(captured),
                is_fallback=fallback_reason is not None,
                fallback_reason=fallback_reason
            )
            self.snapshot_repository.commit()
        except ConflictError:
            # Another request stored the snapshot for this session first
            snapshot = self.snapshot_repository.find_by_session_ref(payment_session_ref)
            if snapshot is None:
                raise
            return Result.success(snapshot, metadata={'existing': True})

        logger.info(
            f"Captured snapshot {snapshot.id} for client {client_id} "
            f"({len(captured)} pages{', fallback' if snapshot.is_fallback else ''})"
        )
        return Result.success(snapshot, metadata={'degraded': snapshot.is_fallback})

    def get_client_snapshots(self, client_id: int, limit: int = 20) -> Result[List[ContentSnapshot]]:
        return Result.success(self.snapshot_repository.find_by_client(client_id, limit=limit))

    def compare_snapshots(self, first_snapshot_id: int, second_snapshot_id: int) -> Result[Dict[str, Any]]:
        """
        Field-level differences between two snapshots.

        Returns:
            Result with 'changes' (page, field, impact, before, after),
            'similarity' (1 - changed/total fields) and 'weighted_change'
            (impact-weighted share of changed fields)
        """
        try:
            first = self.snapshot_repository.get_by_id_or_raise(first_snapshot_id)
            second = self.snapshot_repository.get_by_id_or_raise(second_snapshot_id)
        except NotFoundError as e:
            return Result.from_error(e)

        first_content = first.captured_content or {}
        second_content = second.captured_content or {}

        changes = []
        total_fields = 0
        total_impact = 0.0
        changed_impact = 0.0
        for page_type in sorted(set(first_content) | set(second_content)):
            before_page = first_content.get(page_type) or {}
            after_page = second_content.get(page_type) or {}
            for field, impact in FIELD_IMPACT.items():
                total_fields += 1
                total_impact += impact
                before, after = before_page.get(field), after_page.get(field)
                if before != after:
                    changed_impact += impact
                    changes.append({
                        'page_type': page_type,
                        'field': field,
                        'impact': impact,
                        'before': before,
                        'after': after,
                    })

        similarity = 1.0 - (len(changes) / total_fields) if total_fields else 1.0
        return Result.success({
            'first_snapshot_id': first.id,
            'second_snapshot_id': second.id,
            'same_content': first.content_hash is not None and first.content_hash == second.content_hash,
            'changes': changes,
            'similarity': round(similarity, 4),
            'weighted_change': round(changed_impact / total_impact, 4) if total_impact else 0.0,
        })
