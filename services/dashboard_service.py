"""
DashboardService - Read-only aggregates over correlations, payments and
client outcomes.

Nothing here is persisted. Results are cached under DASHBOARD_CACHE_PREFIX
and dropped by invalidate_dashboard_cache() whenever a correlation, override
or outcome is written.
"""

import logging
from typing import Dict, Any, List

from services.confidence_scoring import (
    calculate_confidence, velocity_score, wilson_interval, binomial_p_value
)
from services.enums import PaymentStatus, JourneyOutcome
from utils.datetime_utils import ensure_utc, period_key, format_utc_iso, SUPPORTED_PERIODS
from services.common.errors import ValidationError
from services.common.result import Result

logger = logging.getLogger(__name__)

DASHBOARD_CACHE_PREFIX = 'dashboard:'
DEFAULT_CACHE_TTL = 300


def invalidate_dashboard_cache(cache) -> int:
    """Drop every cached dashboard aggregate; safe to call without a cache"""
    if cache is None:
        return 0
    return cache.delete_prefix(DASHBOARD_CACHE_PREFIX)


class DashboardService:
    """Service for dashboard metrics"""

    def __init__(self,
                 client_repository,
                 payment_event_repository,
                 correlation_repository,
                 webhook_rejection_repository,
                 failed_webhook_repository,
                 cache=None,
                 cache_ttl: int = DEFAULT_CACHE_TTL,
                 display_timezone: str = 'UTC'):
        self.client_repository = client_repository
        self.payment_event_repository = payment_event_repository
        self.correlation_repository = correlation_repository
        self.webhook_rejection_repository = webhook_rejection_repository
        self.failed_webhook_repository = failed_webhook_repository
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.display_timezone = display_timezone

    def get_dashboard_metrics(self, period: str = 'month') -> Result[Dict[str, Any]]:
        """
        Conversion rate, revenue by period, outcome distribution, mean time to
        payment and the pattern confidence list.
        """
        if period not in SUPPORTED_PERIODS:
            return Result.from_error(ValidationError(
                f"Invalid period '{period}'. Must be one of: {', '.join(SUPPORTED_PERIODS)}",
                field='period'
            ))

        return Result.success(self._cached(f'metrics:{period}', lambda: self._build_metrics(period)))

    def get_pattern_confidence_list(self, min_sample: int = 1) -> Result[List[Dict[str, Any]]]:
        """Per content hash pattern scores, most confident first"""
        if min_sample < 1:
            return Result.from_error(ValidationError("min_sample must be at least 1", field='min_sample'))

        return Result.success(self._cached(f'patterns:{min_sample}', lambda: self._build_patterns(min_sample)))

    def get_recent_webhook_failures(self, limit: int = 20) -> Result[List[Dict[str, Any]]]:
        """
        Signature/payload rejections and unresolved processing failures,
        newest first. Not cached: this is an operational view.
        """
        entries = []
        for rejection in self.webhook_rejection_repository.find_recent(limit):
            entries.append({
                **rejection.to_dict(),
                'created_at': ensure_utc(rejection.created_at),
            })
        for failure in self.failed_webhook_repository.find_recent_unresolved(limit):
            entries.append({
                **failure.to_dict(),
                'created_at': ensure_utc(failure.created_at),
            })

        entries.sort(key=lambda entry: entry['created_at'], reverse=True)
        for entry in entries:
            entry['created_at'] = format_utc_iso(entry['created_at'])
        return Result.success(entries[:limit])

    # --- builders ---

    def _cached(self, key: str, factory):
        if self.cache is None:
            return factory()
        return self.cache.get_or_set(f'{DASHBOARD_CACHE_PREFIX}{key}', factory, ttl=self.cache_ttl)

    def _build_metrics(self, period: str) -> Dict[str, Any]:
        outcome_counts = self.client_repository.count_by_outcome()
        total_clients = sum(outcome_counts.values())
        paid_clients = outcome_counts.get(JourneyOutcome.PAID.value, 0)

        summary = self.correlation_repository.get_outcome_summary()

        metrics = {
            'period': period,
            'total_clients': total_clients,
            'paid_clients': paid_clients,
            'conversion_rate': round(paid_clients / total_clients, 4) if total_clients else 0.0,
            'client_outcomes': outcome_counts,
            'correlation_outcomes': summary['distribution'],
            'avg_time_to_payment_seconds': summary['avg_time_to_payment_seconds'],
            'revenue_by_period': self._revenue_by_period(period),
            'patterns': self._build_patterns(min_sample=1),
        }
        logger.debug(f"Built dashboard metrics for period {period}")
        return metrics

    def _revenue_by_period(self, period: str) -> List[Dict[str, Any]]:
        """Succeeded minus refunded amounts per period bucket and currency"""
        events = self.payment_event_repository.find_by_statuses(
            [PaymentStatus.SUCCEEDED.value, PaymentStatus.REFUNDED.value]
        )

        buckets: Dict[tuple, Dict[str, Any]] = {}
        for event in events:
            key = (period_key(event.provider_timestamp, period, self.display_timezone), event.currency)
            bucket = buckets.setdefault(key, {
                'period': key[0],
                'currency': key[1],
                'gross_cents': 0,
                'refunded_cents': 0,
                'payment_count': 0,
            })
            if event.status == PaymentStatus.SUCCEEDED.value:
                bucket['gross_cents'] += event.amount or 0
                bucket['payment_count'] += 1
            else:
                bucket['refunded_cents'] += event.amount or 0

        rows = []
        for key in sorted(buckets):
            bucket = buckets[key]
            bucket['net_cents'] = bucket['gross_cents'] - bucket['refunded_cents']
            rows.append(bucket)
        return rows

    def _build_patterns(self, min_sample: int) -> List[Dict[str, Any]]:
        rows = self.correlation_repository.get_pattern_rows()

        overall_total = sum(row['sample_size'] for row in rows)
        overall_paid = sum(row['paid_count'] for row in rows)
        baseline = overall_paid / overall_total if overall_total else 0.0

        patterns = []
        for row in rows:
            sample_size = row['sample_size']
            if sample_size < min_sample:
                continue

            paid = row['paid_count']
            avg_seconds = row['avg_time_to_payment_seconds']
            lower, upper = wilson_interval(paid, sample_size)
            patterns.append({
                'content_hash': row['content_hash'],
                'sample_size': sample_size,
                'paid_count': paid,
                'conversion_rate': round(paid / sample_size, 4),
                'avg_time_to_payment_seconds': round(avg_seconds, 3) if avg_seconds is not None else None,
                'confidence': calculate_confidence(sample_size, paid, velocity_score(avg_seconds)),
                'confidence_interval': [lower, upper],
                'p_value': binomial_p_value(paid, sample_size, baseline),
                'last_seen_at': format_utc_iso(ensure_utc(row['last_seen_at'])) if row['last_seen_at'] else None,
            })

        patterns.sort(key=lambda p: (p['confidence'], p['sample_size']), reverse=True)
        return patterns
