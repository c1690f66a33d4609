# revenue_database.py

from extensions import db
from datetime import timedelta
from decimal import Decimal
from utils.datetime_utils import utc_now, ensure_utc, format_utc_iso


# --- Clients ---
class Client(db.Model):
    """A business moving through the guided journey, addressed by its token"""
    __tablename__ = 'client'

    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(5), unique=True, nullable=False, index=True)  # e.g. 'G1234'
    company = db.Column(db.String(200), nullable=False)
    contact_name = db.Column(db.String(120), nullable=True)
    email = db.Column(db.String(120), nullable=True)
    hypothesis = db.Column(db.Text, nullable=False)  # Overall journey hypothesis
    status = db.Column(db.String(20), nullable=False, default='pending')  # 'pending', 'activated', 'archived'

    # Journey outcome: 'pending', 'paid', 'ghosted', 'responded'
    journey_outcome = db.Column(db.String(20), nullable=False, default='pending', index=True)
    outcome_notes = db.Column(db.Text, nullable=True)
    outcome_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Last payment attempt
    payment_status = db.Column(db.String(20), nullable=True)
    payment_session_ref = db.Column(db.String(64), nullable=True, index=True)

    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=utc_now)

    def __repr__(self):
        return f'<Client {self.token}: {self.company}>'

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'token': self.token,
            'company': self.company,
            'contact_name': self.contact_name,
            'email': self.email,
            'hypothesis': self.hypothesis,
            'status': self.status,
            'journey_outcome': self.journey_outcome,
            'outcome_notes': self.outcome_notes,
            'outcome_updated_at': format_utc_iso(self.outcome_updated_at),
            'payment_status': self.payment_status,
            'payment_session_ref': self.payment_session_ref,
            'created_at': format_utc_iso(self.created_at),
        }


class ClientOutcomeAudit(db.Model):
    """Audit trail for every journey outcome change, including overrides"""
    __tablename__ = 'client_outcome_audit'

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=False, index=True)
    previous_outcome = db.Column(db.String(20), nullable=False)
    new_outcome = db.Column(db.String(20), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    changed_by = db.Column(db.String(100), nullable=False, default='admin')  # Admin id or 'system'
    reason = db.Column(db.Text, nullable=True)
    is_override = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'client_id': self.client_id,
            'previous_outcome': self.previous_outcome,
            'new_outcome': self.new_outcome,
            'notes': self.notes,
            'changed_by': self.changed_by,
            'reason': self.reason,
            'is_override': self.is_override,
            'created_at': format_utc_iso(self.created_at),
        }


# --- Content Versioning ---
class ContentVersion(db.Model):
    """Append-only version of one journey page's content.

    Only ``is_current`` may change after insert, and only inside the
    deactivate-old/activate-new transaction. The partial unique index keeps a
    single current row per (client, page type) even under concurrent saves.
    """
    __tablename__ = 'content_version'

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=False)
    page_type = db.Column(db.String(20), nullable=False)  # 'activation', 'agreement', 'confirmation', 'processing'
    content = db.Column(db.JSON, nullable=False)  # {'title': ..., 'body': ..., 'metadata': {...}}
    hypothesis = db.Column(db.Text, nullable=False)
    iteration_notes = db.Column(db.Text, nullable=True)
    outcome = db.Column(db.String(20), nullable=False, default='pending')  # Label at creation time
    is_current = db.Column(db.Boolean, nullable=False, default=True)
    version_number = db.Column(db.Integer, nullable=False)
    created_by = db.Column(db.String(100), nullable=False, default='admin')
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    outcome_labels = db.relationship(
        'ContentVersionOutcome',
        order_by='ContentVersionOutcome.id',
        backref='content_version',
        lazy=True
    )

    __table_args__ = (
        db.UniqueConstraint('client_id', 'page_type', 'version_number', name='uq_content_version_number'),
        db.Index(
            'uq_content_version_current', 'client_id', 'page_type',
            unique=True,
            sqlite_where=db.text('is_current = 1'),
            postgresql_where=db.text('is_current IS TRUE')
        ),
        db.Index('idx_content_version_client_page', 'client_id', 'page_type', 'version_number'),
    )

    def __repr__(self):
        return f'<ContentVersion {self.client_id}/{self.page_type} v{self.version_number}{" *" if self.is_current else ""}>'

    @property
    def effective_outcome(self) -> str:
        """Latest recorded label, or the label the version was created with"""
        if self.outcome_labels:
            return self.outcome_labels[-1].outcome
        return self.outcome

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'client_id': self.client_id,
            'page_type': self.page_type,
            'content': self.content,
            'hypothesis': self.hypothesis,
            'iteration_notes': self.iteration_notes,
            'outcome': self.effective_outcome,
            'is_current': self.is_current,
            'version_number': self.version_number,
            'created_by': self.created_by,
            'created_at': format_utc_iso(self.created_at),
        }


class ContentVersionOutcome(db.Model):
    """Outcome label recorded against a content version after the fact"""
    __tablename__ = 'content_version_outcome'

    id = db.Column(db.Integer, primary_key=True)
    content_version_id = db.Column(db.Integer, db.ForeignKey('content_version.id'), nullable=False, index=True)
    outcome = db.Column(db.String(20), nullable=False)  # 'pending', 'success', 'failure'
    notes = db.Column(db.Text, nullable=True)
    recorded_by = db.Column(db.String(100), nullable=False, default='admin')
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)


# --- Payments ---
class PaymentEvent(db.Model):
    """Normalized provider webhook callback. Written once by webhook ingest."""
    __tablename__ = 'payment_event'

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(20), nullable=False, default='stripe')
    provider_event_id = db.Column(db.String(255), nullable=False)
    event_type = db.Column(db.String(100), nullable=False)  # 'payment_intent.succeeded', ...
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=True, index=True)
    payment_session_ref = db.Column(db.String(64), nullable=True, index=True)
    payment_intent_id = db.Column(db.String(255), nullable=True, index=True)  # 'pi_...'
    amount = db.Column(db.Integer, nullable=True)  # Minor units (cents)
    currency = db.Column(db.String(3), nullable=True)
    status = db.Column(db.String(20), nullable=False)  # 'succeeded', 'failed', 'pending', 'refunded'
    provider_timestamp = db.Column(db.DateTime(timezone=True), nullable=False)
    ingested_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    payload = db.Column(db.JSON, nullable=True)  # Full webhook body for replay

    __table_args__ = (
        db.UniqueConstraint('provider_event_id', name='uq_payment_event_provider_event_id'),
        # One payment outcome per intent and status; checkout and intent events both report it
        db.Index(
            'uq_payment_event_intent_status', 'provider', 'payment_intent_id', 'status',
            unique=True,
            sqlite_where=db.text("payment_intent_id IS NOT NULL AND status != 'refunded'"),
            postgresql_where=db.text("payment_intent_id IS NOT NULL AND status != 'refunded'")
        ),
        db.Index('idx_payment_event_status_time', 'status', 'provider_timestamp'),
    )

    def __repr__(self):
        return f'<PaymentEvent {self.provider_event_id}: {self.status}>'

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'provider': self.provider,
            'provider_event_id': self.provider_event_id,
            'event_type': self.event_type,
            'client_id': self.client_id,
            'payment_session_ref': self.payment_session_ref,
            'payment_intent_id': self.payment_intent_id,
            'amount': self.amount,
            'currency': self.currency,
            'status': self.status,
            'provider_timestamp': format_utc_iso(self.provider_timestamp),
            'ingested_at': format_utc_iso(self.ingested_at),
        }


class ContentSnapshot(db.Model):
    """Frozen copy of a client's current content when a payment attempt starts"""
    __tablename__ = 'content_snapshot'

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=False, index=True)
    payment_session_ref = db.Column(db.String(64), nullable=False, unique=True)
    captured_content = db.Column(db.JSON, nullable=False, default=dict)  # {page_type: {...}}
    content_hash = db.Column(db.String(64), nullable=True, index=True)
    is_fallback = db.Column(db.Boolean, nullable=False, default=False)
    fallback_reason = db.Column(db.Text, nullable=True)
    captured_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    def __repr__(self):
        return f'<ContentSnapshot {self.id}: {self.payment_session_ref}{" (fallback)" if self.is_fallback else ""}>'

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'client_id': self.client_id,
            'payment_session_ref': self.payment_session_ref,
            'captured_content': self.captured_content,
            'content_hash': self.content_hash,
            'is_fallback': self.is_fallback,
            'fallback_reason': self.fallback_reason,
            'captured_at': format_utc_iso(self.captured_at),
        }


class PaymentOutcomeCorrelation(db.Model):
    """Join of a payment outcome with the content snapshot live at payment time.

    ``computed_*`` columns are written once. Manual overrides change only the
    effective outcome and the override block; every override is also kept in
    CorrelationOverrideAudit.
    """
    __tablename__ = 'payment_outcome_correlation'

    id = db.Column(db.Integer, primary_key=True)
    content_snapshot_id = db.Column(db.Integer, db.ForeignKey('content_snapshot.id'), nullable=True)
    payment_event_id = db.Column(db.Integer, db.ForeignKey('payment_event.id'), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=True, index=True)
    content_hash = db.Column(db.String(64), nullable=True, index=True)

    time_to_payment_seconds = db.Column(db.Float, nullable=True)
    computed_outcome = db.Column(db.String(20), nullable=False)  # 'paid', 'failed', 'refunded', 'pending'
    computed_confidence = db.Column(db.Float, nullable=False, default=0.0)
    flags = db.Column(db.JSON, nullable=False, default=list)

    # Effective values (equal to computed unless overridden)
    outcome_type = db.Column(db.String(20), nullable=False)
    confidence_score = db.Column(db.Float, nullable=False, default=0.0)

    # Manual override block (latest override)
    is_overridden = db.Column(db.Boolean, nullable=False, default=False)
    override_admin_id = db.Column(db.String(100), nullable=True)
    override_reason = db.Column(db.Text, nullable=True)
    overridden_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    audit_entries = db.relationship(
        'CorrelationOverrideAudit',
        order_by='CorrelationOverrideAudit.id',
        backref='correlation',
        lazy=True
    )

    __table_args__ = (
        db.UniqueConstraint('content_snapshot_id', 'payment_event_id', name='uq_correlation_snapshot_event'),
        db.UniqueConstraint('payment_event_id', name='uq_correlation_payment_event'),
    )

    def __repr__(self):
        return f'<PaymentOutcomeCorrelation {self.id}: {self.outcome_type} ({self.confidence_score:.2f})>'

    def view(self):
        """Tagged computed/overridden view of this correlation"""
        from services.correlation_engine_service import correlation_view
        return correlation_view(self)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'content_snapshot_id': self.content_snapshot_id,
            'payment_event_id': self.payment_event_id,
            'client_id': self.client_id,
            'content_hash': self.content_hash,
            'time_to_payment_seconds': self.time_to_payment_seconds,
            'outcome_type': self.outcome_type,
            'confidence_score': self.confidence_score,
            'computed_outcome': self.computed_outcome,
            'computed_confidence': self.computed_confidence,
            'flags': list(self.flags or []),
            'is_overridden': self.is_overridden,
            'override': {
                'admin_id': self.override_admin_id,
                'reason': self.override_reason,
                'overridden_at': format_utc_iso(self.overridden_at),
            } if self.is_overridden else None,
            'created_at': format_utc_iso(self.created_at),
        }


class CorrelationOverrideAudit(db.Model):
    """One row per manual override call, keeping the original computed values"""
    __tablename__ = 'correlation_override_audit'

    id = db.Column(db.Integer, primary_key=True)
    correlation_id = db.Column(db.Integer, db.ForeignKey('payment_outcome_correlation.id'), nullable=False, index=True)
    admin_id = db.Column(db.String(100), nullable=False)
    reason = db.Column(db.Text, nullable=False)
    previous_outcome = db.Column(db.String(20), nullable=False)
    new_outcome = db.Column(db.String(20), nullable=False)
    original_outcome = db.Column(db.String(20), nullable=False)
    original_confidence = db.Column(db.Float, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'correlation_id': self.correlation_id,
            'admin_id': self.admin_id,
            'reason': self.reason,
            'previous_outcome': self.previous_outcome,
            'new_outcome': self.new_outcome,
            'original_outcome': self.original_outcome,
            'original_confidence': self.original_confidence,
            'created_at': format_utc_iso(self.created_at),
        }


# --- Webhook Operations ---
class WebhookRejection(db.Model):
    """Webhook delivery rejected before processing (bad signature or body)"""
    __tablename__ = 'webhook_rejection'

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(20), nullable=False)
    reason = db.Column(db.String(50), nullable=False)  # 'INVALID_SIGNATURE', 'MALFORMED_PAYLOAD'
    detail = db.Column(db.Text, nullable=True)
    remote_addr = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now, index=True)

    def to_dict(self) -> dict:
        return {
            'kind': 'rejection',
            'id': self.id,
            'provider': self.provider,
            'reason': self.reason,
            'detail': self.detail,
            'remote_addr': self.remote_addr,
            'created_at': format_utc_iso(self.created_at),
        }


class FailedWebhookQueue(db.Model):
    """Webhook whose downstream processing (correlation) failed, queued for retry"""
    __tablename__ = 'failed_webhook_queue'

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(255), nullable=False, index=True)  # Provider event id
    event_type = db.Column(db.String(100), nullable=False, index=True)
    payment_event_id = db.Column(db.Integer, db.ForeignKey('payment_event.id'), nullable=True)
    original_payload = db.Column(db.JSON, nullable=False)
    error_message = db.Column(db.Text, nullable=False)

    # Retry configuration
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    max_retries = db.Column(db.Integer, nullable=False, default=5)
    backoff_multiplier = db.Column(db.Numeric(precision=3, scale=1), nullable=False, default=Decimal('2.0'))
    base_delay_seconds = db.Column(db.Integer, nullable=False, default=60)

    # Retry timing
    next_retry_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    last_retry_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Resolution tracking
    resolved = db.Column(db.Boolean, nullable=False, default=False, index=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolution_note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=utc_now)

    def __repr__(self):
        return f'<FailedWebhookQueue {self.id}: {self.event_id} ({self.retry_count}/{self.max_retries})>'

    def calculate_next_retry_time(self):
        """Next retry time using exponential backoff from the current retry count"""
        delay_seconds = self.base_delay_seconds * (Decimal(str(self.backoff_multiplier)) ** self.retry_count)
        return utc_now() + timedelta(seconds=int(delay_seconds))

    def is_retry_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def can_retry_now(self) -> bool:
        if self.resolved or self.is_retry_exhausted():
            return False
        if self.next_retry_at is None:
            return True
        return utc_now() >= ensure_utc(self.next_retry_at)

    def to_dict(self) -> dict:
        return {
            'kind': 'processing_failure',
            'id': self.id,
            'event_id': self.event_id,
            'event_type': self.event_type,
            'payment_event_id': self.payment_event_id,
            'error_message': self.error_message,
            'retry_count': self.retry_count,
            'max_retries': self.max_retries,
            'next_retry_at': format_utc_iso(self.next_retry_at),
            'resolved': self.resolved,
            'created_at': format_utc_iso(self.created_at),
        }
