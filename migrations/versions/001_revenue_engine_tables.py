"""Create revenue intelligence tables

Revision ID: 001_revenue_engine_tables
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_revenue_engine_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('client',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('token', sa.String(length=5), nullable=False),
        sa.Column('company', sa.String(length=200), nullable=False),
        sa.Column('contact_name', sa.String(length=120), nullable=True),
        sa.Column('email', sa.String(length=120), nullable=True),
        sa.Column('hypothesis', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('journey_outcome', sa.String(length=20), nullable=False),
        sa.Column('outcome_notes', sa.Text(), nullable=True),
        sa.Column('outcome_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_status', sa.String(length=20), nullable=True),
        sa.Column('payment_session_ref', sa.String(length=64), nullable=True),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_client_token', 'client', ['token'], unique=True)
    op.create_index('ix_client_journey_outcome', 'client', ['journey_outcome'], unique=False)
    op.create_index('ix_client_payment_session_ref', 'client', ['payment_session_ref'], unique=False)

    op.create_table('client_outcome_audit',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('previous_outcome', sa.String(length=20), nullable=False),
        sa.Column('new_outcome', sa.String(length=20), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('changed_by', sa.String(length=100), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('is_override', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['client_id'], ['client.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_client_outcome_audit_client_id', 'client_outcome_audit', ['client_id'], unique=False)

    op.create_table('content_version',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('page_type', sa.String(length=20), nullable=False),
        sa.Column('content', sa.JSON(), nullable=False),
        sa.Column('hypothesis', sa.Text(), nullable=False),
        sa.Column('iteration_notes', sa.Text(), nullable=True),
        sa.Column('outcome', sa.String(length=20), nullable=False),
        sa.Column('is_current', sa.Boolean(), nullable=False),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('created_by', sa.String(length=100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['client_id'], ['client.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'page_type', 'version_number', name='uq_content_version_number')
    )
    # At most one current version per client page
    op.create_index(
        'uq_content_version_current', 'content_version', ['client_id', 'page_type'],
        unique=True,
        sqlite_where=sa.text('is_current = 1'),
        postgresql_where=sa.text('is_current IS TRUE')
    )
    op.create_index('idx_content_version_client_page', 'content_version',
                    ['client_id', 'page_type', 'version_number'], unique=False)

    op.create_table('content_version_outcome',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('content_version_id', sa.Integer(), nullable=False),
        sa.Column('outcome', sa.String(length=20), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('recorded_by', sa.String(length=100), nullable=False),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['content_version_id'], ['content_version.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_content_version_outcome_content_version_id', 'content_version_outcome',
                    ['content_version_id'], unique=False)

    op.create_table('payment_event',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=20), nullable=False),
        sa.Column('provider_event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=True),
        sa.Column('payment_session_ref', sa.String(length=64), nullable=True),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('provider_timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ingested_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['client_id'], ['client.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_event_id', name='uq_payment_event_provider_event_id')
    )
    op.create_index('ix_payment_event_client_id', 'payment_event', ['client_id'], unique=False)
    op.create_index('ix_payment_event_payment_session_ref', 'payment_event', ['payment_session_ref'], unique=False)
    op.create_index('ix_payment_event_payment_intent_id', 'payment_event', ['payment_intent_id'], unique=False)
    op.create_index(
        'uq_payment_event_intent_status', 'payment_event', ['provider', 'payment_intent_id', 'status'],
        unique=True,
        sqlite_where=sa.text("payment_intent_id IS NOT NULL AND status != 'refunded'"),
        postgresql_where=sa.text("payment_intent_id IS NOT NULL AND status != 'refunded'")
    )
    op.create_index('idx_payment_event_status_time', 'payment_event', ['status', 'provider_timestamp'], unique=False)

    op.create_table('content_snapshot',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('payment_session_ref', sa.String(length=64), nullable=False),
        sa.Column('captured_content', sa.JSON(), nullable=False),
        sa.Column('content_hash', sa.String(length=64), nullable=True),
        sa.Column('is_fallback', sa.Boolean(), nullable=False),
        sa.Column('fallback_reason', sa.Text(), nullable=True),
        sa.Column('captured_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['client_id'], ['client.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_session_ref')
    )
    op.create_index('ix_content_snapshot_client_id', 'content_snapshot', ['client_id'], unique=False)
    op.create_index('ix_content_snapshot_content_hash', 'content_snapshot', ['content_hash'], unique=False)

    op.create_table('payment_outcome_correlation',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('content_snapshot_id', sa.Integer(), nullable=True),
        sa.Column('payment_event_id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=True),
        sa.Column('content_hash', sa.String(length=64), nullable=True),
        sa.Column('time_to_payment_seconds', sa.Float(), nullable=True),
        sa.Column('computed_outcome', sa.String(length=20), nullable=False),
        sa.Column('computed_confidence', sa.Float(), nullable=False),
        sa.Column('flags', sa.JSON(), nullable=False),
        sa.Column('outcome_type', sa.String(length=20), nullable=False),
        sa.Column('confidence_score', sa.Float(), nullable=False),
        sa.Column('is_overridden', sa.Boolean(), nullable=False),
        sa.Column('override_admin_id', sa.String(length=100), nullable=True),
        sa.Column('override_reason', sa.Text(), nullable=True),
        sa.Column('overridden_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['client_id'], ['client.id'], ),
        sa.ForeignKeyConstraint(['content_snapshot_id'], ['content_snapshot.id'], ),
        sa.ForeignKeyConstraint(['payment_event_id'], ['payment_event.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('content_snapshot_id', 'payment_event_id', name='uq_correlation_snapshot_event'),
        sa.UniqueConstraint('payment_event_id', name='uq_correlation_payment_event')
    )
    op.create_index('ix_payment_outcome_correlation_client_id', 'payment_outcome_correlation',
                    ['client_id'], unique=False)
    op.create_index('ix_payment_outcome_correlation_content_hash', 'payment_outcome_correlation',
                    ['content_hash'], unique=False)

    op.create_table('correlation_override_audit',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('correlation_id', sa.Integer(), nullable=False),
        sa.Column('admin_id', sa.String(length=100), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('previous_outcome', sa.String(length=20), nullable=False),
        sa.Column('new_outcome', sa.String(length=20), nullable=False),
        sa.Column('original_outcome', sa.String(length=20), nullable=False),
        sa.Column('original_confidence', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['correlation_id'], ['payment_outcome_correlation.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_correlation_override_audit_correlation_id', 'correlation_override_audit',
                    ['correlation_id'], unique=False)

    op.create_table('webhook_rejection',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=20), nullable=False),
        sa.Column('reason', sa.String(length=50), nullable=False),
        sa.Column('detail', sa.Text(), nullable=True),
        sa.Column('remote_addr', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_webhook_rejection_created_at', 'webhook_rejection', ['created_at'], unique=False)

    op.create_table('failed_webhook_queue',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('payment_event_id', sa.Integer(), nullable=True),
        sa.Column('original_payload', sa.JSON(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=False),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('max_retries', sa.Integer(), nullable=False),
        sa.Column('backoff_multiplier', sa.Numeric(precision=3, scale=1), nullable=False),
        sa.Column('base_delay_seconds', sa.Integer(), nullable=False),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved', sa.Boolean(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution_note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['payment_event_id'], ['payment_event.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_failed_webhook_queue_event_id', 'failed_webhook_queue', ['event_id'], unique=False)
    op.create_index('ix_failed_webhook_queue_event_type', 'failed_webhook_queue', ['event_type'], unique=False)
    op.create_index('ix_failed_webhook_queue_next_retry_at', 'failed_webhook_queue', ['next_retry_at'], unique=False)
    op.create_index('ix_failed_webhook_queue_resolved', 'failed_webhook_queue', ['resolved'], unique=False)
    op.create_index('ix_failed_webhook_queue_created_at', 'failed_webhook_queue', ['created_at'], unique=False)


def downgrade():
    op.drop_table('failed_webhook_queue')
    op.drop_table('webhook_rejection')
    op.drop_table('correlation_override_audit')
    op.drop_table('payment_outcome_correlation')
    op.drop_table('content_snapshot')
    op.drop_table('payment_event')
    op.drop_table('content_version_outcome')
    op.drop_index('uq_content_version_current', table_name='content_version')
    op.drop_table('content_version')
    op.drop_table('client_outcome_audit')
    op.drop_table('client')
