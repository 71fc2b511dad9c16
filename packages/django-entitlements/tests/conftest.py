"""Shared fixtures for django-entitlements tests."""

import json

import pytest
from django.core.cache import cache

from django_entitlements.identity import SignedTokenIdentityProvider
from django_entitlements.signatures import build_signature_header

WEBHOOK_SECRET = 'whsec_test'


@pytest.fixture(autouse=True)
def clear_cache():
    """Rate limits and cooldowns live in the cache."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def identity_provider():
    return SignedTokenIdentityProvider()


@pytest.fixture
def auth_headers(identity_provider):
    """Build client kwargs carrying a bearer token for uid/email."""
    def _headers(uid, email):
        token = identity_provider.issue_token(uid, email)
        return {'HTTP_AUTHORIZATION': f'Bearer {token}'}
    return _headers


@pytest.fixture
def checkout_event():
    """Build a checkout.session.completed event payload."""
    def _event(event_id='evt_1', operator_id='fit-1', resource_id='prod-a',
               email='new@x.com', amount_total=9900, **session):
        metadata = {}
        if operator_id is not None:
            metadata['operatorId'] = operator_id
        if resource_id is not None:
            metadata['resourceId'] = resource_id
        metadata.update(session.pop('metadata', {}))
        obj = {
            'id': f'cs_{event_id}',
            'object': 'checkout.session',
            'mode': 'payment',
            'amount_total': amount_total,
            'currency': 'usd',
            'payment_intent': f'pi_{event_id}',
            'customer_details': {'email': email} if email else {},
            'metadata': metadata,
        }
        obj.update(session)
        return {
            'id': event_id,
            'type': 'checkout.session.completed',
            'data': {'object': obj},
        }
    return _event


@pytest.fixture
def post_webhook(client):
    """POST a payload to the webhook with a valid signature."""
    def _post(payload, secret=WEBHOOK_SECRET, header=None):
        body = json.dumps(payload).encode('utf-8')
        if header is None:
            header = build_signature_header(secret, body)
        return client.post(
            '/api/webhooks/payments/',
            data=body,
            content_type='application/json',
            HTTP_STRIPE_SIGNATURE=header,
        )
    return _post
