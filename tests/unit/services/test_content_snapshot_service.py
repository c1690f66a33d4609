"""
Tests for ContentSnapshotService - snapshot capture, fallback and comparison
"""

import pytest
from unittest.mock import Mock

from sqlalchemy.exc import SQLAlchemyError

from services.content_snapshot_service import ContentSnapshotService, compute_content_hash
from services.common.errors import ConflictError
from repositories.content_snapshot_repository import ContentSnapshotRepository
from repositories.content_version_repository import ContentVersionRepository


def _version(page_type, title, version_id=1):
    return Mock(id=version_id, page_type=page_type, version_number=1, hypothesis='Hypothesis text',
                content={'title': title, 'body': f'{title} body', 'metadata': {'page_order': 1}})


@pytest.fixture
def mock_snapshot_repository():
    repo = Mock(spec=ContentSnapshotRepository)
    repo.find_by_session_ref.return_value = None
    repo.create.side_effect = lambda **kwargs: Mock(id=11, **kwargs)
    return repo


@pytest.fixture
def mock_content_version_repository():
    return Mock(spec=ContentVersionRepository)


@pytest.fixture
def service(mock_snapshot_repository, mock_content_version_repository):
    return ContentSnapshotService(mock_snapshot_repository, mock_content_version_repository)


class TestContentHash:

    def test_hash_ignores_version_ids(self):
        first = {'activation': {'content_version_id': 1, 'title': 'T', 'body': 'B', 'metadata': {}}}
        second = {'activation': {'content_version_id': 99, 'title': 'T', 'body': 'B', 'metadata': {}}}
        assert compute_content_hash(first) == compute_content_hash(second)

    def test_hash_changes_with_content(self):
        first = {'activation': {'title': 'T', 'body': 'B', 'metadata': {}}}
        second = {'activation': {'title': 'Other', 'body': 'B', 'metadata': {}}}
        assert compute_content_hash(first) != compute_content_hash(second)

    def test_empty_content_has_no_hash(self):
        assert compute_content_hash({}) is None


class TestSnapshot:

    def test_captures_all_current_pages(self, service, mock_content_version_repository, mock_snapshot_repository):
        mock_content_version_repository.find_current_for_client.return_value = [
            _version('activation', 'Welcome', 1),
            _version('agreement', 'Terms', 2),
        ]

        result = service.snapshot(5, 'ps_abc')

        assert result.is_success
        snapshot = result.data
        assert set(snapshot.captured_content) == {'activation', 'agreement'}
        assert snapshot.captured_content['agreement']['content_version_id'] == 2
        assert snapshot.is_fallback is False
        assert snapshot.content_hash == compute_content_hash(snapshot.captured_content)
        mock_snapshot_repository.commit.assert_called_once()

    def test_existing_snapshot_is_returned(self, service, mock_snapshot_repository):
        existing = Mock(id=3)
        mock_snapshot_repository.find_by_session_ref.return_value = existing

        result = service.snapshot(5, 'ps_abc')

        assert result.data is existing
        assert result.metadata == {'existing': True}
        mock_snapshot_repository.create.assert_not_called()

    def test_content_read_failure_stores_minimal_snapshot(self, service, mock_content_version_repository,
                                                          mock_snapshot_repository):
        mock_content_version_repository.find_current_for_client.side_effect = SQLAlchemyError("timeout")

        result = service.snapshot(5, 'ps_abc')

        assert result.is_success
        assert result.metadata == {'degraded': True}
        kwargs = mock_snapshot_repository.create.call_args.kwargs
        assert kwargs['client_id'] == 5
        assert kwargs['captured_content'] == {}
        assert kwargs['content_hash'] is None
        assert kwargs['is_fallback'] is True
        assert 'timeout' in kwargs['fallback_reason']

    def test_never_raises_when_even_fallback_cannot_be_stored(self, service, mock_content_version_repository,
                                                              mock_snapshot_repository):
        mock_content_version_repository.find_current_for_client.return_value = []
        mock_snapshot_repository.create.side_effect = SQLAlchemyError("database down")

        result = service.snapshot(5, 'ps_abc')

        assert result.is_failure
        assert result.error_code == 'DEGRADED_DEPENDENCY'

    def test_concurrent_insert_returns_winner(self, service, mock_content_version_repository,
                                              mock_snapshot_repository):
        winner = Mock(id=8)
        mock_content_version_repository.find_current_for_client.return_value = []
        mock_snapshot_repository.find_by_session_ref.side_effect = [None, winner]
        mock_snapshot_repository.create.side_effect = ConflictError("duplicate session ref")

        result = service.snapshot(5, 'ps_abc')

        assert result.data is winner


class TestCompareSnapshots:

    def test_reports_changed_fields(self, service, mock_snapshot_repository):
        first = Mock(id=1, content_hash='a', captured_content={
            'activation': {'title': 'Old', 'body': 'Same', 'metadata': {}},
        })
        second = Mock(id=2, content_hash='b', captured_content={
            'activation': {'title': 'New', 'body': 'Same', 'metadata': {}},
        })
        mock_snapshot_repository.get_by_id_or_raise.side_effect = [first, second]

        result = service.compare_snapshots(1, 2)

        assert result.is_success
        assert [change['field'] for change in result.data['changes']] == ['title']
        assert result.data['same_content'] is False
        assert result.data['similarity'] == pytest.approx(0.6667, abs=1e-4)
