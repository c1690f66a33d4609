"""
WebhookIngestService - Turns Stripe webhook deliveries into trustworthy,
de-duplicated PaymentEvents.

Order of operations for every delivery:
1. Verify the Stripe-Signature header against the raw body (before parsing)
2. Parse the JSON envelope
3. Normalize the event; unhandled types are acknowledged and dropped
4. Insert-if-absent on the provider event id (and on the payment intent
   outcome, which Checkout and PaymentIntent events both report) and commit
5. Dispatch correlation for newly stored events
"""

import json
import logging
import time
from typing import Dict, Any, Optional, TYPE_CHECKING

import stripe
from sqlalchemy.exc import SQLAlchemyError

from services.common.result import Result
from services.common.errors import RevenueEngineError, InvalidSignature, MalformedPayload
from services.enums import PaymentStatus
from repositories.client_repository import ClientRepository
from repositories.payment_event_repository import PaymentEventRepository
from repositories.webhook_rejection_repository import WebhookRejectionRepository
from logging_config import security_logger, performance_logger
from utils.datetime_utils import utc_now, utc_from_timestamp, utc_hours_ago

if TYPE_CHECKING:
    from revenue_database import PaymentEvent
    from services.correlation_dispatcher import CorrelationDispatcher

logger = logging.getLogger(__name__)

PROVIDER = 'stripe'
DEFAULT_TOLERANCE_SECONDS = 300
DEFAULT_REJECTION_ALERT_THRESHOLD = 5
REJECTION_WINDOW_MINUTES = 60

# Event type -> payment status; checkout.session.completed depends on payment_status
EVENT_STATUS_MAP = {
    'payment_intent.succeeded': PaymentStatus.SUCCEEDED.value,
    'payment_intent.payment_failed': PaymentStatus.FAILED.value,
    'payment_intent.processing': PaymentStatus.PENDING.value,
    'charge.refunded': PaymentStatus.REFUNDED.value,
    'checkout.session.completed': None,
    'checkout.session.async_payment_succeeded': PaymentStatus.SUCCEEDED.value,
    'checkout.session.async_payment_failed': PaymentStatus.FAILED.value,
}
HANDLED_EVENT_TYPES = frozenset(EVENT_STATUS_MAP)


def _payment_intent_id(event_type: str, obj: Dict[str, Any]) -> Optional[str]:
    if event_type.startswith('payment_intent.'):
        return obj.get('id')
    intent = obj.get('payment_intent')
    if isinstance(intent, dict):
        return intent.get('id')
    return intent


def _event_amount(event_type: str, obj: Dict[str, Any]) -> Optional[int]:
    if event_type == 'charge.refunded':
        return obj.get('amount_refunded', obj.get('amount'))
    if event_type.startswith('checkout.session.'):
        return obj.get('amount_total')
    if event_type == 'payment_intent.succeeded':
        return obj.get('amount_received') or obj.get('amount')
    return obj.get('amount')


def normalize_stripe_event(event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Map a Stripe event envelope onto PaymentEvent columns.

    Returns:
        Column values, or None for event types the engine does not handle

    Raises:
        MalformedPayload: If a handled event lacks its data object
    """
    event_type = event['type']
    if event_type not in HANDLED_EVENT_TYPES:
        return None

    obj = (event.get('data') or {}).get('object')
    if not isinstance(obj, dict):
        raise MalformedPayload(f"Event {event['id']} has no data object", event_type=event_type)

    status = EVENT_STATUS_MAP[event_type]
    if status is None:
        status = PaymentStatus.SUCCEEDED.value if obj.get('payment_status') == 'paid' else PaymentStatus.PENDING.value

    metadata = obj.get('metadata') or {}
    session_ref = metadata.get('payment_session_ref')
    if not session_ref and event_type.startswith('checkout.session.'):
        session_ref = obj.get('client_reference_id')

    created = event.get('created')
    amount = _event_amount(event_type, obj)
    currency = obj.get('currency')

    return {
        'provider': PROVIDER,
        'provider_event_id': event['id'],
        'event_type': event_type,
        'payment_session_ref': session_ref,
        'payment_intent_id': _payment_intent_id(event_type, obj),
        'amount': int(amount) if amount is not None else None,
        'currency': currency.lower() if currency else None,
        'status': status,
        'provider_timestamp': utc_from_timestamp(created) if isinstance(created, (int, float)) else utc_now(),
        'payload': event,
        '_client_id': metadata.get('client_id'),
        '_client_token': metadata.get('client_token'),
    }


class WebhookIngestService:
    """Service for verifying, storing and dispatching payment webhooks"""

    def __init__(self,
                 payment_event_repository: PaymentEventRepository,
                 client_repository: ClientRepository,
                 webhook_rejection_repository: WebhookRejectionRepository,
                 dispatcher: 'CorrelationDispatcher',
                 webhook_secret: Optional[str],
                 tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
                 rejection_alert_threshold: int = DEFAULT_REJECTION_ALERT_THRESHOLD):
        self.payment_event_repository = payment_event_repository
        self.client_repository = client_repository
        self.webhook_rejection_repository = webhook_rejection_repository
        self.dispatcher = dispatcher
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds
        self.rejection_alert_threshold = rejection_alert_threshold

    @property
    def is_configured(self) -> bool:
        return bool(self.webhook_secret)

    def ingest(self, raw_body: bytes, signature_header: Optional[str],
               remote_addr: Optional[str] = None) -> Result[Optional['PaymentEvent']]:
        """
        Verify, store and dispatch one webhook delivery.

        Returns:
            Success with the stored PaymentEvent (metadata.replayed is True
            for a duplicate delivery), success with None for an ignored event
            type, or an INVALID_SIGNATURE / MALFORMED_PAYLOAD failure
        """
        started = time.monotonic()
        try:
            payload = self.verify_signature(raw_body, signature_header)
            event = self.parse_event(payload)
            values = normalize_stripe_event(event)
        except (InvalidSignature, MalformedPayload) as e:
            self._record_rejection(e, remote_addr)
            return Result.from_error(e)

        if values is None:
            logger.info(f"Ignoring unhandled Stripe event type {event['type']} ({event['id']})")
            return Result.success(None, metadata={'ignored': True, 'event_type': event['type']})

        values['client_id'] = self._resolve_client_id(values.pop('_client_id'), values.pop('_client_token'))
        self._attribute_from_payment_intent(values)
        if values['client_id'] is None:
            logger.warning(f"Stripe event {event['id']} could not be attributed to a client")

        try:
            payment_event, created = self.payment_event_repository.insert_if_absent(values)
            self.payment_event_repository.commit()
        except RevenueEngineError as e:
            return Result.from_error(e)
        except SQLAlchemyError as e:
            self.payment_event_repository.rollback()
            logger.error(f"Database error storing Stripe event {event['id']}: {e}")
            return Result.failure(f"Database error storing payment event: {e}", code='DATABASE_ERROR')

        if not created:
            if payment_event.provider_event_id != event['id']:
                logger.info(
                    f"Stripe event {event['id']} reports payment {values['payment_intent_id']} "
                    f"already stored as {payment_event.provider_event_id}"
                )
                self._log_timing(event['type'], started, 'duplicate_payment')
                return Result.success(payment_event, metadata={
                    'replayed': True, 'duplicate_of': payment_event.provider_event_id
                })
            logger.info(f"Duplicate delivery of Stripe event {event['id']}; already stored")
            self._log_timing(event['type'], started, 'replayed')
            return Result.success(payment_event, metadata={'replayed': True})

        logger.info(f"Stored payment event {payment_event.provider_event_id} ({payment_event.status})")
        dispatched = self.dispatcher.dispatch(payment_event)
        self._log_timing(event['type'], started, 'stored')
        return Result.success(payment_event, metadata={'replayed': False, 'dispatched': dispatched})

    def verify_signature(self, raw_body: bytes, signature_header: Optional[str]) -> str:
        """
        Raises:
            InvalidSignature: If the header is missing or does not match
        """
        if not signature_header:
            raise InvalidSignature("Missing Stripe-Signature header")

        try:
            payload = raw_body.decode('utf-8') if isinstance(raw_body, bytes) else raw_body
        except UnicodeDecodeError as e:
            raise InvalidSignature("Webhook body is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                payload, signature_header, self.webhook_secret, self.tolerance_seconds
            )
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(f"Stripe signature verification failed: {e}") from e
        return payload

    @staticmethod
    def parse_event(payload: str) -> Dict[str, Any]:
        """
        Raises:
            MalformedPayload: If the body is not a JSON event envelope
        """
        try:
            event = json.loads(payload)
        except ValueError as e:
            raise MalformedPayload(f"Webhook body is not valid JSON: {e}") from e

        if not isinstance(event, dict) or not event.get('id') or not event.get('type'):
            raise MalformedPayload("Webhook body is missing the event id or type")
        return event

    def _resolve_client_id(self, client_id: Any, client_token: Optional[str]) -> Optional[int]:
        if client_id is not None:
            try:
                client = self.client_repository.get_by_id(int(client_id))
            except (TypeError, ValueError):
                client = None
            if client is not None:
                return client.id
        if client_token:
            client = self.client_repository.find_by_token(client_token)
            if client is not None:
                return client.id
        return None

    def _attribute_from_payment_intent(self, values: Dict[str, Any]) -> None:
        """Charges carry no checkout metadata; borrow it from an earlier event of the same intent"""
        if not values['payment_intent_id'] or (values['payment_session_ref'] and values['client_id'] is not None):
            return
        earlier = self.payment_event_repository.find_by_payment_intent(values['payment_intent_id'])
        if earlier is None:
            return
        values['payment_session_ref'] = values['payment_session_ref'] or earlier.payment_session_ref
        if values['client_id'] is None:
            values['client_id'] = earlier.client_id

    def _record_rejection(self, error: RevenueEngineError, remote_addr: Optional[str]) -> None:
        security_logger.log_webhook_rejection(PROVIDER, error.code, ip_address=remote_addr, detail=error.message)
        try:
            self.webhook_rejection_repository.create(
                provider=PROVIDER,
                reason=error.code,
                detail=error.message[:1000],
                remote_addr=remote_addr
            )
            self.webhook_rejection_repository.commit()

            if isinstance(error, InvalidSignature):
                recent = self.webhook_rejection_repository.count_since(
                    PROVIDER, utc_hours_ago(1), reason=error.code
                )
                if recent >= self.rejection_alert_threshold:
                    security_logger.log_repeated_rejections(
                        PROVIDER, recent, REJECTION_WINDOW_MINUTES, self.rejection_alert_threshold
                    )
        except (RevenueEngineError, SQLAlchemyError) as e:
            self.webhook_rejection_repository.rollback()
            logger.error(f"Could not record webhook rejection: {e}")

    @staticmethod
    def _log_timing(event_type: str, started: float, outcome: str) -> None:
        performance_logger.log_webhook_processing(
            PROVIDER, event_type, round((time.monotonic() - started) * 1000, 2), outcome
        )
