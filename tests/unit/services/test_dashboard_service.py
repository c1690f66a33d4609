"""
Tests for DashboardService aggregates and caching
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import Mock

from services.dashboard_service import DashboardService, invalidate_dashboard_cache
from services.cache_service import CacheService
from repositories.client_repository import ClientRepository
from repositories.payment_event_repository import PaymentEventRepository
from repositories.correlation_repository import CorrelationRepository
from repositories.webhook_rejection_repository import WebhookRejectionRepository
from repositories.failed_webhook_queue_repository import FailedWebhookQueueRepository


def _payment(status, amount, when, currency='usd'):
    return Mock(status=status, amount=amount, currency=currency, provider_timestamp=when)


@pytest.fixture
def repositories():
    client_repo = Mock(spec=ClientRepository)
    client_repo.count_by_outcome.return_value = {'pending': 2, 'paid': 1, 'ghosted': 1}

    payment_repo = Mock(spec=PaymentEventRepository)
    payment_repo.find_by_statuses.return_value = [
        _payment('succeeded', 50000, datetime(2025, 1, 10, tzinfo=timezone.utc)),
        _payment('succeeded', 20000, datetime(2025, 1, 20, tzinfo=timezone.utc)),
        _payment('refunded', 5000, datetime(2025, 1, 25, tzinfo=timezone.utc)),
        _payment('succeeded', 30000, datetime(2025, 2, 3, tzinfo=timezone.utc)),
        _payment('succeeded', 9900, datetime(2025, 2, 4, tzinfo=timezone.utc), currency='eur'),
    ]

    correlation_repo = Mock(spec=CorrelationRepository)
    correlation_repo.get_outcome_summary.return_value = {
        'distribution': {'paid': 3, 'failed': 1},
        'avg_time_to_payment_seconds': 5400.0,
    }
    correlation_repo.get_pattern_rows.return_value = [
        {'content_hash': 'small', 'sample_size': 1, 'paid_count': 1,
         'avg_time_to_payment_seconds': 600.0, 'last_seen_at': None},
        {'content_hash': 'large', 'sample_size': 12, 'paid_count': 10,
         'avg_time_to_payment_seconds': 1800.0,
         'last_seen_at': datetime(2025, 2, 1, 9, 30)},
        {'content_hash': 'weak', 'sample_size': 6, 'paid_count': 0,
         'avg_time_to_payment_seconds': None, 'last_seen_at': None},
    ]

    return {
        'client_repository': client_repo,
        'payment_event_repository': payment_repo,
        'correlation_repository': correlation_repo,
        'webhook_rejection_repository': Mock(spec=WebhookRejectionRepository),
        'failed_webhook_repository': Mock(spec=FailedWebhookQueueRepository),
    }


@pytest.fixture
def cache():
    return CacheService()


@pytest.fixture
def service(repositories, cache):
    return DashboardService(cache=cache, **repositories)


class TestDashboardMetrics:

    def test_conversion_rate_counts_all_clients(self, service):
        metrics = service.get_dashboard_metrics('month').data

        assert metrics['total_clients'] == 4
        assert metrics['paid_clients'] == 1
        assert metrics['conversion_rate'] == 0.25
        assert metrics['correlation_outcomes'] == {'paid': 3, 'failed': 1}
        assert metrics['avg_time_to_payment_seconds'] == 5400.0

    def test_revenue_is_net_per_month_and_currency(self, service):
        revenue = service.get_dashboard_metrics('month').data['revenue_by_period']

        assert [(row['period'], row['currency']) for row in revenue] == [
            ('2025-01', 'usd'), ('2025-02', 'eur'), ('2025-02', 'usd'),
        ]
        january = revenue[0]
        assert january['gross_cents'] == 70000
        assert january['refunded_cents'] == 5000
        assert january['net_cents'] == 65000
        assert january['payment_count'] == 2

    def test_weekly_buckets(self, service):
        revenue = service.get_dashboard_metrics('week').data['revenue_by_period']
        assert revenue[0]['period'] == '2025-W02'

    def test_invalid_period(self, service):
        result = service.get_dashboard_metrics('year')
        assert result.error_code == 'VALIDATION_ERROR'

    def test_metrics_are_cached_until_invalidated(self, service, repositories, cache):
        service.get_dashboard_metrics('month')
        service.get_dashboard_metrics('month')
        assert repositories['client_repository'].count_by_outcome.call_count == 1

        assert invalidate_dashboard_cache(cache) == 1
        service.get_dashboard_metrics('month')
        assert repositories['client_repository'].count_by_outcome.call_count == 2

    def test_works_without_cache(self, repositories):
        service = DashboardService(**repositories)
        assert service.get_dashboard_metrics('day').is_success


class TestPatterns:

    def test_sorted_by_confidence(self, service):
        patterns = service.get_pattern_confidence_list().data

        assert [p['content_hash'] for p in patterns] == ['large', 'small', 'weak']
        large = patterns[0]
        assert large['conversion_rate'] == pytest.approx(0.8333, abs=1e-4)
        lower, upper = large['confidence_interval']
        assert lower < large['conversion_rate'] < upper
        assert large['last_seen_at'] == '2025-02-01T09:30:00+00:00'

    def test_min_sample_filters_small_patterns(self, service):
        patterns = service.get_pattern_confidence_list(min_sample=5).data
        assert [p['content_hash'] for p in patterns] == ['large', 'weak']

    def test_min_sample_must_be_positive(self, service):
        assert service.get_pattern_confidence_list(min_sample=0).error_code == 'VALIDATION_ERROR'


class TestWebhookFailures:

    def test_merges_rejections_and_failures_newest_first(self, service, repositories):
        repositories['webhook_rejection_repository'].find_recent.return_value = [
            Mock(created_at=datetime(2025, 1, 1, 10, 0),
                 to_dict=Mock(return_value={'kind': 'rejection', 'id': 1})),
        ]
        repositories['failed_webhook_repository'].find_recent_unresolved.return_value = [
            Mock(created_at=datetime(2025, 1, 1, 11, 0),
                 to_dict=Mock(return_value={'kind': 'processing_failure', 'id': 2})),
        ]

        failures = service.get_recent_webhook_failures(limit=10).data

        assert [entry['kind'] for entry in failures] == ['processing_failure', 'rejection']
        assert failures[0]['created_at'] == '2025-01-01T11:00:00+00:00'
