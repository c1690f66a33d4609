"""
Tests for CacheService
"""

from unittest.mock import patch

from services.cache_service import CacheService


class TestCacheService:

    def test_set_and_get(self):
        cache = CacheService()
        cache.set('key', {'value': 1})
        assert cache.get('key') == {'value': 1}
        assert cache.get('missing') is None

    def test_entries_expire(self):
        cache = CacheService()
        with patch('services.cache_service.time.monotonic', return_value=100.0):
            cache.set('key', 'value', ttl=10)
        with patch('services.cache_service.time.monotonic', return_value=105.0):
            assert cache.get('key') == 'value'
        with patch('services.cache_service.time.monotonic', return_value=111.0):
            assert cache.get('key') is None

    def test_delete_prefix_only_drops_matching_keys(self):
        cache = CacheService()
        cache.set('dashboard:metrics:month', 1)
        cache.set('dashboard:patterns:1', 2)
        cache.set('other', 3)

        assert cache.delete_prefix('dashboard:') == 2
        assert cache.get('other') == 3

    def test_get_or_set_calls_factory_once(self):
        cache = CacheService()
        calls = []

        def factory():
            calls.append(1)
            return 'computed'

        assert cache.get_or_set('key', factory) == 'computed'
        assert cache.get_or_set('key', factory) == 'computed'
        assert len(calls) == 1
