"""
PaymentSessionService - Starts a payment attempt for a client.

Generates a payment session reference, creates a Stripe Checkout session
carrying it, and freezes the client's journey content against the
reference. A failed snapshot is logged and reported but never blocks the
payment.
"""

import logging
import time
import uuid
from datetime import timedelta
from typing import Dict, Any, Optional

import stripe
from sqlalchemy.exc import SQLAlchemyError

from services.common.result import Result
from services.common.errors import (
    RevenueEngineError, ConflictError, ValidationError, PaymentProviderError, PaymentNotConfiguredError
)
from services.content_snapshot_service import ContentSnapshotService
from repositories.client_repository import ClientRepository
from revenue_database import Client
from utils.datetime_utils import utc_now, format_utc_iso
from logging_config import performance_logger

logger = logging.getLogger(__name__)

DEFAULT_AMOUNT_CENTS = 50000
DEFAULT_CURRENCY = 'usd'
# Stripe rejects checkout expiries under 30 minutes
SESSION_EXPIRY_MINUTES = 60


def new_payment_session_ref() -> str:
    return f"ps_{uuid.uuid4().hex}"


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)


class StripeCheckoutGateway:
    """Thin wrapper over stripe.checkout.Session for journey payments"""

    def __init__(self, secret_key: Optional[str], success_url: str, cancel_url: str,
                 expiry_minutes: int = SESSION_EXPIRY_MINUTES):
        self.secret_key = secret_key
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.expiry_minutes = expiry_minutes

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def create_checkout_session(self, client: Client, payment_session_ref: str,
                                amount_cents: int, currency: str) -> Dict[str, Any]:
        """
        Returns:
            {'id', 'url', 'expires_at'} for the new Stripe session

        Raises:
            PaymentNotConfiguredError: If no secret key is configured
            PaymentProviderError: If Stripe rejects the request
        """
        if not self.is_configured:
            raise PaymentNotConfiguredError("Stripe secret key is not configured")

        metadata = {
            'client_id': str(client.id),
            'client_token': client.token,
            'payment_session_ref': payment_session_ref,
        }
        expires_at = utc_now() + timedelta(minutes=self.expiry_minutes)
        started = time.monotonic()
        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                mode='payment',
                payment_method_types=['card'],
                line_items=[{
                    'price_data': {
                        'currency': currency,
                        'product_data': {'name': f'Journey activation - {client.company}'},
                        'unit_amount': amount_cents,
                    },
                    'quantity': 1,
                }],
                success_url=f"{self.success_url}?token={client.token}&session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self.cancel_url}?token={client.token}",
                customer_email=client.email or None,
                client_reference_id=payment_session_ref,
                expires_at=int(expires_at.timestamp()),
                metadata=metadata,
                payment_intent_data={'metadata': metadata},
                idempotency_key=f"checkout_{payment_session_ref}",
            )
        except stripe.StripeError as e:
            performance_logger.log_api_call(
                'stripe', 'checkout.sessions.create', _elapsed_ms(started), e.http_status or 0
            )
            logger.error(f"Stripe checkout creation failed for client {client.token}: {e}")
            raise PaymentProviderError(f"Stripe checkout creation failed: {e}", client_id=client.id) from e

        performance_logger.log_api_call('stripe', 'checkout.sessions.create', _elapsed_ms(started), 200)
        return {'id': session.id, 'url': session.url, 'expires_at': expires_at}


class PaymentSessionService:
    """Service for starting payment attempts"""

    def __init__(self,
                 client_repository: ClientRepository,
                 snapshot_service: ContentSnapshotService,
                 gateway: StripeCheckoutGateway,
                 default_amount_cents: int = DEFAULT_AMOUNT_CENTS):
        self.client_repository = client_repository
        self.snapshot_service = snapshot_service
        self.gateway = gateway
        self.default_amount_cents = default_amount_cents

    def create_payment_session(self, client_id: int, amount: Optional[int] = None,
                               currency: str = DEFAULT_CURRENCY) -> Result[Dict[str, Any]]:
        """
        Create a checkout session and the content snapshot for it.

        Args:
            client_id: Paying client
            amount: Amount in minor units; defaults to the activation fee
            currency: ISO currency code

        Returns:
            Result with payment_session_ref, provider_session_id,
            checkout_url, expires_at, snapshot_id and snapshot_degraded
        """
        amount_cents = self.default_amount_cents if amount is None else amount
        try:
            if not isinstance(amount_cents, int) or amount_cents <= 0:
                raise ValidationError("Amount must be a positive integer in minor units", field='amount')
            if not currency or len(currency) != 3:
                raise ValidationError(f"Invalid currency '{currency}'", field='currency')

            client = self.client_repository.get_by_id_or_raise(client_id)
            if client.payment_status == 'paid':
                raise ConflictError(f"Client {client.token} has already paid", client_id=client_id)

            payment_session_ref = new_payment_session_ref()
            session = self.gateway.create_checkout_session(
                client, payment_session_ref, amount_cents, currency.lower()
            )
        except RevenueEngineError as e:
            return Result.from_error(e)

        snapshot_result = self.snapshot_service.snapshot(client.id, payment_session_ref)
        if snapshot_result.is_failure:
            logger.warning(
                f"Payment session {payment_session_ref} for client {client.token} has no snapshot: "
                f"{snapshot_result.error}"
            )

        # The checkout exists at Stripe; its metadata still carries the reference
        try:
            self.client_repository.update(client, payment_session_ref=payment_session_ref, payment_status='pending')
            self.client_repository.commit()
        except (RevenueEngineError, SQLAlchemyError) as e:
            self.client_repository.rollback()
            logger.error(
                f"Payment session {payment_session_ref} created but client {client.token} was not updated: {e}"
            )

        snapshot = snapshot_result.data if snapshot_result.is_success else None
        logger.info(f"Created payment session {payment_session_ref} ({session['id']}) for client {client.token}")
        return Result.success({
            'payment_session_ref': payment_session_ref,
            'provider_session_id': session['id'],
            'checkout_url': session['url'],
            'amount': amount_cents,
            'currency': currency.lower(),
            'expires_at': format_utc_iso(session['expires_at']),
            'snapshot_id': snapshot.id if snapshot else None,
            'snapshot_degraded': snapshot is None or snapshot.is_fallback,
        })
