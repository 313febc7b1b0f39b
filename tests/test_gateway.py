"""Tests for the Paystack client and webhook signatures."""

import json
from decimal import Decimal

import pytest
import requests

from errors import ConfigError, GatewayError
from gateway import (
    GatewayConnectionError,
    PaystackClient,
    client_from_settings,
    compute_signature,
    from_minor_units,
    parse_metadata,
    to_minor_units,
    verify_signature
)

SECRET = "sk_test_abc123"

class FakeResponse:
    def __init__(self, body, status_code=200):
        self._body = body
        self.status_code = status_code

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error")

class FakeSession:
    """Stands in for requests.Session, replaying one response or error."""

    def __init__(self, response=None, error=None):
        self.headers = {}
        self.response = response
        self.error = error
        self.calls = []

    def request(self, method, url, json=None, timeout=None):
        self.calls.append({'method': method, 'url': url, 'json': json, 'timeout': timeout})
        if self.error:
            raise self.error
        return self.response

def make_client(response=None, error=None):
    session = FakeSession(response, error)
    return PaystackClient(SECRET, base_url='https://api.test/', timeout=5, session=session), session

# Signatures

def test_signature_round_trip():
    body = b'{"event":"charge.success"}'
    signature = compute_signature(SECRET, body)
    assert len(signature) == 128
    assert verify_signature(SECRET, body, signature)

def test_signature_accepts_uppercase_hex():
    body = b'{}'
    assert verify_signature(SECRET, body, compute_signature(SECRET, body).upper())

def test_signature_rejects_tampered_body():
    signature = compute_signature(SECRET, b'{"amount":100000}')
    assert not verify_signature(SECRET, b'{"amount":100001}', signature)

def test_signature_rejects_other_secret():
    body = b'{}'
    assert not verify_signature(SECRET, body, compute_signature('sk_other', body))

@pytest.mark.parametrize("secret,signature", [('', 'abc'), (SECRET, None), (SECRET, '')])
def test_signature_missing_parts(secret, signature):
    assert not verify_signature(secret, b'{}', signature)

# Amount conversion and metadata

def test_minor_units():
    assert to_minor_units(Decimal('1000')) == 100000
    assert to_minor_units(Decimal('10.005')) == 1001
    assert from_minor_units(95050) == Decimal('950.50')

def test_parse_metadata():
    assert parse_metadata('{"transactionId": "ORD-1"}') == {'transactionId': 'ORD-1'}
    assert parse_metadata({'a': 1}) == {'a': 1}
    assert parse_metadata('not json') == {}
    assert parse_metadata('[1, 2]') == {}
    assert parse_metadata(None) == {}

# Client

def test_client_sets_auth_headers():
    client, session = make_client()
    assert session.headers['Authorization'] == f'Bearer {SECRET}'
    assert client.base_url == 'https://api.test'

def test_initialize_sends_minor_units():
    client, session = make_client(FakeResponse({
        'status': True,
        'message': 'Authorization URL created',
        'data': {
            'authorization_url': 'https://checkout.paystack.com/abc',
            'access_code': 'abc',
            'reference': 'TXN-1'
        }
    }))

    result = client.initialize(
        'jane@example.com',
        Decimal('1000'),
        'TXN-1',
        callback_url='https://shop.example.com/payment/callback',
        metadata={'transactionId': 'ORD-1'}
    )

    call = session.calls[0]
    assert call['method'] == 'POST'
    assert call['url'] == 'https://api.test/transaction/initialize'
    assert call['json']['amount'] == 100000
    assert call['json']['currency'] == 'KES'
    assert call['json']['metadata'] == {'transactionId': 'ORD-1'}
    assert call['timeout'] == 5
    assert result == {
        'authorization_url': 'https://checkout.paystack.com/abc',
        'access_code': 'abc',
        'reference': 'TXN-1'
    }

def test_initialize_without_url_fails():
    client, _ = make_client(FakeResponse({'status': True, 'data': {}}))
    with pytest.raises(GatewayError):
        client.initialize('jane@example.com', Decimal('10'), 'TXN-2')

def test_provider_rejection_carries_message():
    client, _ = make_client(FakeResponse({'status': False, 'message': 'Invalid key'}, status_code=401))
    with pytest.raises(GatewayError) as exc:
        client.initialize('jane@example.com', Decimal('10'), 'TXN-3')
    assert exc.value.message == 'Invalid key'
    assert exc.value.code == 'PAYSTACK_ERROR'
    assert not isinstance(exc.value, GatewayConnectionError)

def test_verify_success():
    client, session = make_client(FakeResponse({
        'status': True,
        'data': {
            'status': 'success',
            'amount': 100000,
            'currency': 'KES',
            'reference': 'TXN-4/a',
            'channel': 'mobile_money',
            'paid_at': '2026-01-01T10:00:00.000Z',
            'metadata': json.dumps({'transactionId': 'ORD-4'})
        }
    }))

    result = client.verify('TXN-4/a')

    assert session.calls[0]['url'] == 'https://api.test/transaction/verify/TXN-4%2Fa'
    assert result['paid'] is True
    assert result['amount'] == Decimal('1000.00')
    assert result['metadata'] == {'transactionId': 'ORD-4'}
    assert result['channel'] == 'mobile_money'

def test_verify_failed_charge_is_not_paid():
    client, _ = make_client(FakeResponse({
        'status': True,
        'data': {'status': 'abandoned', 'amount': 100000, 'reference': 'TXN-5'}
    }))
    result = client.verify('TXN-5')
    assert result['paid'] is False
    assert result['status'] == 'abandoned'

@pytest.mark.parametrize("error", [
    requests.exceptions.Timeout("slow"),
    requests.exceptions.ConnectionError("down"),
])
def test_transport_errors(error):
    client, _ = make_client(error=error)
    with pytest.raises(GatewayConnectionError):
        client.verify('TXN-6')

def test_unparseable_response():
    client, _ = make_client(FakeResponse(ValueError("Expecting value")))
    with pytest.raises(GatewayConnectionError):
        client.verify('TXN-7')

def test_client_from_settings_requires_secret():
    with pytest.raises(ConfigError):
        client_from_settings({'paystack_secret_key': ''})

def test_client_from_settings():
    client = client_from_settings({
        'paystack_secret_key': SECRET,
        'paystack_base_url': 'https://api.test',
        'gateway_timeout': 12
    })
    assert client.timeout == 12
    assert client.base_url == 'https://api.test'
