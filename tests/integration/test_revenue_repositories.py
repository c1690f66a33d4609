"""
Repository tests against the in-memory database: uniqueness guarantees and
the aggregate queries the dashboard relies on.
"""

import pytest
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from revenue_database import ContentVersion
from services.common.errors import ConflictError
from utils.datetime_utils import utc_now


def _payment_values(event_id, status='succeeded', client_id=None, session_ref='ps_repo'):
    return {
        'provider': 'stripe',
        'provider_event_id': event_id,
        'event_type': 'payment_intent.succeeded',
        'payment_session_ref': session_ref,
        'amount': 50000,
        'currency': 'usd',
        'status': status,
        'provider_timestamp': datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc),
        'payload': {'id': event_id},
        'client_id': client_id,
    }


class TestPaymentEventRepository:

    def test_insert_if_absent_is_idempotent(self, services, clean_db):
        repo = services.get('payment_event_repository')

        first, created_first = repo.insert_if_absent(_payment_values('evt_repo_1'))
        second, created_second = repo.insert_if_absent(_payment_values('evt_repo_1', status='failed'))
        repo.commit()

        assert created_first is True
        assert created_second is False
        assert first.id == second.id
        assert second.status == 'succeeded'
        assert repo.count(provider_event_id='evt_repo_1') == 1

    def test_one_outcome_per_payment_intent(self, services, clean_db):
        repo = services.get('payment_event_repository')

        first, created_first = repo.insert_if_absent(dict(_payment_values('evt_pi_a'), payment_intent_id='pi_same'))
        second, created_second = repo.insert_if_absent(dict(
            _payment_values('evt_cs_a'), payment_intent_id='pi_same', event_type='checkout.session.completed'
        ))
        refund, created_refund = repo.insert_if_absent(dict(
            _payment_values('evt_ch_a', status='refunded'), payment_intent_id='pi_same'
        ))
        repo.commit()

        assert (created_first, created_second, created_refund) == (True, False, True)
        assert second.id == first.id
        assert refund.id != first.id
        assert repo.find_by_payment_intent('pi_same').provider_event_id == 'evt_pi_a'

    def test_count_by_status(self, services, clean_db):
        repo = services.get('payment_event_repository')
        repo.insert_if_absent(_payment_values('evt_a'))
        repo.insert_if_absent(_payment_values('evt_b'))
        repo.insert_if_absent(_payment_values('evt_c', status='refunded'))
        repo.commit()

        assert repo.count_by_status() == {'succeeded': 2, 'refunded': 1}


class TestContentVersionRepository:

    def test_only_one_current_version_per_page(self, services, create_client):
        record = create_client(token='G8101')
        repo = services.get('content_version_repository')

        with pytest.raises(ConflictError):
            repo.create(
                client_id=record.id,
                page_type='activation',
                version_number=2,
                hypothesis='A second current version',
                content={'title': 'Dup', 'body': '', 'metadata': {}},
                is_current=True
            )

        assert repo.count(client_id=record.id, page_type='activation', is_current=True) == 1

    def test_database_rejects_a_second_current_row(self, services, create_client):
        record = create_client(token='G8103')
        session = services.get('content_version_repository').session

        session.add(ContentVersion(
            client_id=record.id,
            page_type='processing',
            version_number=2,
            hypothesis='Inserted around the repository',
            content={'title': 'Raw', 'body': '', 'metadata': {}},
            is_current=True
        ))
        with pytest.raises(IntegrityError):
            session.flush()
        session.rollback()

        assert services.get('content_version_repository').count(
            client_id=record.id, page_type='processing', is_current=True
        ) == 1

    def test_deactivate_then_create(self, services, create_client):
        record = create_client(token='G8102')
        repo = services.get('content_version_repository')

        assert repo.deactivate_current(record.id, 'agreement') == 1
        repo.create(
            client_id=record.id,
            page_type='agreement',
            version_number=repo.get_next_version_number(record.id, 'agreement'),
            hypothesis='Plain-language terms',
            content={'title': 'Terms', 'body': 'Short.', 'metadata': {}},
            is_current=True
        )
        repo.commit()

        history = repo.get_history(record.id, 'agreement')
        assert [(v.version_number, v.is_current) for v in history] == [(2, True), (1, False)]


class TestCorrelationRepository:

    def test_hash_statistics_and_patterns(self, services, create_client):
        record = create_client(token='G8201')
        payments = services.get('payment_event_repository')
        correlations = services.get('correlation_repository')

        for index, outcome in enumerate(['paid', 'paid', 'failed']):
            event, _ = payments.insert_if_absent(_payment_values(f'evt_stats_{index}', client_id=record.id))
            correlations.insert_if_absent({
                'payment_event_id': event.id,
                'client_id': record.id,
                'content_hash': 'hash-a',
                'time_to_payment_seconds': 600.0 * (index + 1),
                'computed_outcome': outcome,
                'computed_confidence': 0.5,
                'outcome_type': outcome,
                'confidence_score': 0.5,
                'flags': [],
                'is_overridden': False,
                'created_at': utc_now(),
            })
        correlations.commit()

        assert correlations.get_hash_statistics('hash-a') == (3, 2)
        assert correlations.get_hash_statistics(None) == (0, 0)

        rows = correlations.get_pattern_rows()
        assert len(rows) == 1
        assert rows[0]['sample_size'] == 3
        assert rows[0]['paid_count'] == 2
        assert rows[0]['avg_time_to_payment_seconds'] == pytest.approx(900.0)

        summary = correlations.get_outcome_summary()
        assert summary['distribution'] == {'paid': 2, 'failed': 1}

    def test_one_correlation_per_payment_event(self, services, clean_db):
        payments = services.get('payment_event_repository')
        correlations = services.get('correlation_repository')
        event, _ = payments.insert_if_absent(_payment_values('evt_unique'))
        values = {
            'payment_event_id': event.id,
            'computed_outcome': 'paid',
            'computed_confidence': 0.2,
            'outcome_type': 'paid',
            'confidence_score': 0.2,
            'flags': ['missing_snapshot'],
            'is_overridden': False,
            'created_at': utc_now(),
        }

        first, created_first = correlations.insert_if_absent(values)
        second, created_second = correlations.insert_if_absent(dict(values, outcome_type='failed'))

        assert (created_first, created_second) == (True, False)
        assert second.id == first.id
        assert second.outcome_type == 'paid'
