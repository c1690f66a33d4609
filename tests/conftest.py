# tests/conftest.py
"""
Shared fixtures for the pytest test suite.

The app runs with TestingConfig: in-memory SQLite, inline correlation
dispatch and fixed Stripe test secrets. Integration tests use clean_db,
which empties every table and the dashboard cache before each test.
"""
import hashlib
import hmac
import json
import os
import time
import uuid

import pytest

from app import create_app
from extensions import db

TEST_WEBHOOK_SECRET = 'whsec_test_revenue_engine'


def sign_stripe_payload(payload: str, secret: str = TEST_WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header for payload the way Stripe does"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode('utf-8')
    signature = hmac.new(secret.encode('utf-8'), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def build_stripe_event(event_type='payment_intent.succeeded', event_id=None, metadata=None,
                       amount=50000, currency='usd', created=None, **object_fields):
    """Minimal Stripe event envelope"""
    obj = {
        'id': f"pi_{uuid.uuid4().hex[:16]}",
        'object': 'payment_intent',
        'amount': amount,
        'amount_received': amount,
        'currency': currency,
        'metadata': metadata or {},
    }
    obj.update(object_fields)
    return {
        'id': event_id or f"evt_{uuid.uuid4().hex[:16]}",
        'object': 'event',
        'type': event_type,
        'created': int(time.time()) if created is None else created,
        'data': {'object': obj},
    }


def post_stripe_webhook(client, event, secret: str = TEST_WEBHOOK_SECRET, signature: str = None):
    """POST an event to the Stripe webhook endpoint with a valid signature"""
    payload = json.dumps(event)
    headers = {'Stripe-Signature': signature or sign_stripe_payload(payload, secret)}
    return client.post('/api/webhooks/stripe', data=payload, headers=headers,
                       content_type='application/json')


@pytest.fixture(scope='module')
def app():
    """
    A new Flask application per test module, with every table created in a
    fresh in-memory database.
    """
    os.environ['FLASK_ENV'] = 'testing'

    app = create_app(config_name='testing', test_config={
        'SERVER_NAME': 'localhost.localdomain'  # Required for url_for in tests
    })

    with app.app_context():
        db.create_all()

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='module')
def client(app):
    """A test client for the app's endpoints"""
    return app.test_client()


@pytest.fixture(scope='function')
def clean_db(app):
    """
    A completely clean database (and dashboard cache) for each test function.

    Tables are cleared in reverse dependency order so foreign keys hold.
    """
    with app.app_context():
        db.session.rollback()
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        app.services.get('cache').clear()

        yield db.session

        db.session.rollback()


@pytest.fixture
def services(app):
    """The app's service registry"""
    return app.services


@pytest.fixture
def create_client(services, clean_db):
    """Create a client through ClientService and return it"""
    def _create(company='Acme Roofing', hypothesis='Urgency framing converts storm leads', **kwargs):
        result = services.get('client').create_client(company=company, hypothesis=hypothesis, **kwargs)
        assert result.is_success, result.error
        return result.data
    return _create


@pytest.fixture
def stripe_checkout(services, monkeypatch):
    """
    Replace the Stripe Checkout call with a fake session so payment sessions
    can be created without network access.
    """
    calls = []

    def fake_create(client, payment_session_ref, amount_cents, currency):
        calls.append({
            'client_id': client.id,
            'payment_session_ref': payment_session_ref,
            'amount_cents': amount_cents,
            'currency': currency,
        })
        return {
            'id': f"cs_test_{uuid.uuid4().hex[:12]}",
            'url': f"https://checkout.stripe.com/c/pay/{payment_session_ref}",
            'expires_at': None,
        }

    gateway = services.get('payment_gateway')
    monkeypatch.setattr(gateway, 'create_checkout_session', fake_create)
    return calls
