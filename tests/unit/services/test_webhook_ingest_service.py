"""
Tests for WebhookIngestService - signature verification, normalization and idempotency
"""

import json
import time

import pytest
from unittest.mock import Mock, patch

from sqlalchemy.exc import SQLAlchemyError

from services.webhook_ingest_service import WebhookIngestService, normalize_stripe_event
from services.correlation_dispatcher import CorrelationDispatcher
from services.common.errors import MalformedPayload
from repositories.client_repository import ClientRepository
from repositories.payment_event_repository import PaymentEventRepository
from repositories.webhook_rejection_repository import WebhookRejectionRepository
from tests.conftest import TEST_WEBHOOK_SECRET, build_stripe_event, sign_stripe_payload


@pytest.fixture
def mock_payment_event_repository():
    repo = Mock(spec=PaymentEventRepository)
    repo.insert_if_absent.side_effect = lambda values: (Mock(id=1, **values), True)
    repo.find_by_payment_intent.return_value = None
    return repo


@pytest.fixture
def mock_client_repository():
    repo = Mock(spec=ClientRepository)
    repo.get_by_id.return_value = None
    repo.find_by_token.return_value = None
    return repo


@pytest.fixture
def mock_rejection_repository():
    repo = Mock(spec=WebhookRejectionRepository)
    repo.count_since.return_value = 1
    return repo


@pytest.fixture
def mock_dispatcher():
    dispatcher = Mock(spec=CorrelationDispatcher)
    dispatcher.dispatch.return_value = True
    return dispatcher


@pytest.fixture
def service(mock_payment_event_repository, mock_client_repository, mock_rejection_repository, mock_dispatcher):
    return WebhookIngestService(
        payment_event_repository=mock_payment_event_repository,
        client_repository=mock_client_repository,
        webhook_rejection_repository=mock_rejection_repository,
        dispatcher=mock_dispatcher,
        webhook_secret=TEST_WEBHOOK_SECRET,
        rejection_alert_threshold=3
    )


def _signed(event, secret=TEST_WEBHOOK_SECRET):
    payload = json.dumps(event)
    return payload.encode('utf-8'), sign_stripe_payload(payload, secret)


class TestNormalizeStripeEvent:

    def test_payment_intent_succeeded(self):
        event = build_stripe_event(metadata={'payment_session_ref': 'ps_1', 'client_id': '7'},
                                   amount=12500, currency='USD', created=1735689600)

        values = normalize_stripe_event(event)

        assert values['status'] == 'succeeded'
        assert values['payment_session_ref'] == 'ps_1'
        assert values['amount'] == 12500
        assert values['currency'] == 'usd'
        assert values['provider_timestamp'].isoformat() == '2025-01-01T00:00:00+00:00'
        assert values['_client_id'] == '7'

    @pytest.mark.parametrize('payment_status,expected', [('paid', 'succeeded'), ('unpaid', 'pending')])
    def test_checkout_completed_depends_on_payment_status(self, payment_status, expected):
        event = build_stripe_event('checkout.session.completed', payment_status=payment_status,
                                   amount_total=9900, client_reference_id='ps_checkout')

        values = normalize_stripe_event(event)

        assert values['status'] == expected
        assert values['amount'] == 9900
        assert values['payment_session_ref'] == 'ps_checkout'

    def test_refund_uses_refunded_amount(self):
        event = build_stripe_event('charge.refunded', amount=50000, amount_refunded=20000)
        values = normalize_stripe_event(event)
        assert values['status'] == 'refunded'
        assert values['amount'] == 20000

    def test_failed_payment(self):
        assert normalize_stripe_event(build_stripe_event('payment_intent.payment_failed'))['status'] == 'failed'

    def test_payment_intent_id_is_taken_from_each_event_shape(self):
        intent = build_stripe_event(id='pi_shared')
        checkout = build_stripe_event('checkout.session.completed', id='cs_1', payment_intent='pi_shared',
                                      payment_status='paid')
        refund = build_stripe_event('charge.refunded', id='ch_1', payment_intent={'id': 'pi_shared'})

        assert [normalize_stripe_event(event)['payment_intent_id'] for event in (intent, checkout, refund)] == [
            'pi_shared', 'pi_shared', 'pi_shared'
        ]

    def test_unhandled_type_is_ignored(self):
        assert normalize_stripe_event(build_stripe_event('customer.created')) is None

    def test_handled_type_without_object_is_malformed(self):
        event = build_stripe_event()
        event['data'] = {}
        with pytest.raises(MalformedPayload):
            normalize_stripe_event(event)


class TestIngest:

    def test_valid_event_is_stored_and_dispatched(self, service, mock_payment_event_repository,
                                                  mock_dispatcher, mock_client_repository):
        mock_client_repository.get_by_id.return_value = Mock(id=7)
        body, header = _signed(build_stripe_event(metadata={'payment_session_ref': 'ps_1', 'client_id': 7}))

        result = service.ingest(body, header)

        assert result.is_success
        assert result.metadata == {'replayed': False, 'dispatched': True}
        values = mock_payment_event_repository.insert_if_absent.call_args.args[0]
        assert values['client_id'] == 7
        assert '_client_id' not in values
        mock_payment_event_repository.commit.assert_called_once()
        mock_dispatcher.dispatch.assert_called_once_with(result.data)

    def test_client_resolved_by_token(self, service, mock_payment_event_repository, mock_client_repository):
        mock_client_repository.find_by_token.return_value = Mock(id=9)
        body, header = _signed(build_stripe_event(metadata={'client_token': 'G1234'}))

        service.ingest(body, header)

        assert mock_payment_event_repository.insert_if_absent.call_args.args[0]['client_id'] == 9

    def test_duplicate_delivery_is_not_dispatched_again(self, service, mock_payment_event_repository,
                                                        mock_dispatcher):
        event = build_stripe_event()
        existing = Mock(id=1, provider_event_id=event['id'])
        mock_payment_event_repository.insert_if_absent.side_effect = None
        mock_payment_event_repository.insert_if_absent.return_value = (existing, False)
        body, header = _signed(event)

        result = service.ingest(body, header)

        assert result.data is existing
        assert result.metadata == {'replayed': True}
        mock_dispatcher.dispatch.assert_not_called()

    def test_second_report_of_a_payment_is_not_dispatched(self, service, mock_payment_event_repository,
                                                          mock_dispatcher):
        stored = Mock(id=1, provider_event_id='evt_intent')
        mock_payment_event_repository.insert_if_absent.side_effect = None
        mock_payment_event_repository.insert_if_absent.return_value = (stored, False)
        body, header = _signed(build_stripe_event(
            'checkout.session.completed', event_id='evt_checkout', id='cs_1', payment_intent='pi_1',
            payment_status='paid', amount_total=50000, metadata={'payment_session_ref': 'ps_1'}
        ))

        result = service.ingest(body, header)

        assert result.is_success
        assert result.metadata == {'replayed': True, 'duplicate_of': 'evt_intent'}
        mock_dispatcher.dispatch.assert_not_called()

    def test_refund_borrows_attribution_from_its_payment_intent(self, service, mock_payment_event_repository):
        mock_payment_event_repository.find_by_payment_intent.return_value = Mock(
            payment_session_ref='ps_paid', client_id=4
        )
        body, header = _signed(build_stripe_event(
            'charge.refunded', id='ch_1', payment_intent='pi_paid', amount_refunded=50000
        ))

        service.ingest(body, header)

        mock_payment_event_repository.find_by_payment_intent.assert_called_once_with('pi_paid')
        values = mock_payment_event_repository.insert_if_absent.call_args.args[0]
        assert values['payment_session_ref'] == 'ps_paid'
        assert values['client_id'] == 4

    def test_tampered_body_is_rejected_before_parsing(self, service, mock_payment_event_repository,
                                                      mock_rejection_repository):
        body, header = _signed(build_stripe_event(amount=100))
        tampered = body.replace(b'100', b'999')

        with patch('services.webhook_ingest_service.json.loads') as loads:
            result = service.ingest(tampered, header, remote_addr='203.0.113.9')
            loads.assert_not_called()

        assert result.error_code == 'INVALID_SIGNATURE'
        mock_payment_event_repository.insert_if_absent.assert_not_called()
        kwargs = mock_rejection_repository.create.call_args.kwargs
        assert kwargs['reason'] == 'INVALID_SIGNATURE'
        assert kwargs['remote_addr'] == '203.0.113.9'

    def test_wrong_secret_is_rejected(self, service):
        body, header = _signed(build_stripe_event(), secret='whsec_someone_else')
        assert service.ingest(body, header).error_code == 'INVALID_SIGNATURE'

    def test_stale_timestamp_is_rejected(self, service):
        payload = json.dumps(build_stripe_event())
        header = sign_stripe_payload(payload, timestamp=int(time.time()) - 3600)
        assert service.ingest(payload.encode('utf-8'), header).error_code == 'INVALID_SIGNATURE'

    def test_missing_header_is_rejected(self, service):
        assert service.ingest(b'{}', None).error_code == 'INVALID_SIGNATURE'

    def test_malformed_json_is_rejected(self, service, mock_rejection_repository):
        payload = '{"id": "evt_1", "type": '
        result = service.ingest(payload.encode('utf-8'), sign_stripe_payload(payload))

        assert result.error_code == 'MALFORMED_PAYLOAD'
        assert mock_rejection_repository.create.call_args.kwargs['reason'] == 'MALFORMED_PAYLOAD'

    def test_envelope_without_type_is_malformed(self, service):
        payload = json.dumps({'id': 'evt_1'})
        assert service.ingest(payload.encode('utf-8'), sign_stripe_payload(payload)).error_code == 'MALFORMED_PAYLOAD'

    def test_ignored_type_is_acknowledged(self, service, mock_payment_event_repository):
        body, header = _signed(build_stripe_event('customer.created'))

        result = service.ingest(body, header)

        assert result.is_success
        assert result.data is None
        assert result.metadata['ignored'] is True
        mock_payment_event_repository.insert_if_absent.assert_not_called()

    def test_database_error_is_reported(self, service, mock_payment_event_repository, mock_dispatcher):
        mock_payment_event_repository.insert_if_absent.side_effect = SQLAlchemyError("disk full")
        body, header = _signed(build_stripe_event())

        result = service.ingest(body, header)

        assert result.error_code == 'DATABASE_ERROR'
        mock_payment_event_repository.rollback.assert_called_once()
        mock_dispatcher.dispatch.assert_not_called()

    def test_repeated_rejections_raise_an_alert(self, service, mock_rejection_repository):
        mock_rejection_repository.count_since.return_value = 3

        with patch('services.webhook_ingest_service.security_logger') as security_logger:
            service.ingest(b'{}', 't=1,v1=bad')

        security_logger.log_repeated_rejections.assert_called_once()

    def test_rejection_storage_failure_does_not_change_the_result(self, service, mock_rejection_repository):
        mock_rejection_repository.create.side_effect = SQLAlchemyError("locked")

        result = service.ingest(b'{}', 't=1,v1=bad')

        assert result.error_code == 'INVALID_SIGNATURE'
        mock_rejection_repository.rollback.assert_called_once()

    def test_is_configured(self, service):
        assert service.is_configured
        service.webhook_secret = None
        assert not service.is_configured
