"""Tests for checkout, top-up and webhook payment flows."""

import json
from decimal import Decimal

import pytest

from errors import (
    AmountMismatchError,
    ConfigError,
    DuplicateError,
    InvalidSignatureError,
    InvalidStatusError,
    NotFoundError,
    UserMismatchError,
    ValidationError,
    VerifyFailedError
)
from gateway import compute_signature
from payments import PaymentService, TOPUP_TYPE
from conftest import BUYER_ID, SELLER_ID, TXN_ID, WEBHOOK_SECRET

USER = {'id': BUYER_ID, 'email': 'jane@example.com'}

def signed(event):
    body = json.dumps(event).encode('utf-8')
    return body, compute_signature(WEBHOOK_SECRET, body)

def charge_event(reference, amount_minor, metadata):
    return {
        'event': 'charge.success',
        'data': {
            'reference': reference,
            'amount': amount_minor,
            'channel': 'card',
            'metadata': metadata
        }
    }

# Checkout

@pytest.mark.asyncio
async def test_initialize_checkout(payment_service, gateway, ledger, pending_txn):
    result = await payment_service.initialize_checkout(
        TXN_ID,
        'jane@example.com',
        {'transactionId': 'spoofed', 'note': 'gift'}
    )

    reference = result['reference']
    assert reference.startswith(f'TXN-{TXN_ID[:8]}-')
    assert result['authorization_url'] == result['authorizationUrl']
    assert ledger.rows[TXN_ID]['payment_reference'] == reference
    assert ledger.rows[TXN_ID]['status'] == 'pending'

    call = gateway.initialized[0]
    assert call['amount'] == Decimal('1000.00')
    assert call['metadata']['transactionId'] == TXN_ID
    assert call['metadata']['sellerId'] == SELLER_ID
    assert call['metadata']['note'] == 'gift'
    assert call['callback_url'].startswith('https://shop.example.com/payment/callback?reference=')

@pytest.mark.asyncio
async def test_initialize_checkout_validation(payment_service, gateway):
    with pytest.raises(ValidationError):
        await payment_service.initialize_checkout(TXN_ID, '')
    with pytest.raises(NotFoundError):
        await payment_service.initialize_checkout('ORD-MISSING', 'jane@example.com')
    assert gateway.initialized == []

@pytest.mark.asyncio
async def test_initialize_checkout_requires_pending(payment_service, ledger):
    ledger.add(status='paid')
    with pytest.raises(InvalidStatusError):
        await payment_service.initialize_checkout(TXN_ID, 'jane@example.com')

@pytest.mark.asyncio
async def test_missing_secret_is_config_error(engine):
    service = PaymentService(engine, settings={'paystack_secret_key': ''})
    with pytest.raises(ConfigError) as exc:
        await service.initialize_checkout(TXN_ID, 'jane@example.com')
    assert exc.value.status_code == 500

@pytest.mark.asyncio
async def test_verify_checkout_captures_once(payment_service, gateway, ledger, deposits, wallets, pending_txn):
    gateway.add_payment('TXN-ref-1', Decimal('1000.00'), {'transactionId': TXN_ID})

    first = await payment_service.verify_checkout('TXN-ref-1')
    second = await payment_service.verify_checkout('TXN-ref-1')

    assert first['transactionId'] == TXN_ID
    assert first['alreadyProcessed'] is False
    assert second['alreadyProcessed'] is True
    assert ledger.rows[TXN_ID]['status'] == 'processing'
    assert len(deposits.rows) == 1
    assert wallets.wallets[SELLER_ID]['pending_balance'] == Decimal('950.00')

@pytest.mark.asyncio
async def test_verify_checkout_short_payment(payment_service, gateway, ledger, pending_txn):
    gateway.add_payment('TXN-ref-1', Decimal('500.00'), {'transactionId': TXN_ID})
    with pytest.raises(AmountMismatchError):
        await payment_service.verify_checkout('TXN-ref-1')
    assert ledger.rows[TXN_ID]['status'] == 'pending'

@pytest.mark.asyncio
async def test_verify_checkout_unpaid(payment_service, gateway, ledger, pending_txn):
    gateway.add_payment('TXN-ref-1', Decimal('1000.00'), {'transactionId': TXN_ID}, paid=False)
    with pytest.raises(VerifyFailedError):
        await payment_service.verify_checkout('TXN-ref-1')
    assert ledger.rows[TXN_ID]['status'] == 'pending'

@pytest.mark.asyncio
async def test_verify_checkout_without_transaction(payment_service, gateway):
    gateway.add_payment('TXN-ref-1', Decimal('1000.00'), {})
    with pytest.raises(NotFoundError):
        await payment_service.verify_checkout('TXN-ref-1')

@pytest.mark.asyncio
async def test_verify_checkout_explicit_transaction(payment_service, gateway, ledger, pending_txn):
    gateway.add_payment('TXN-ref-1', Decimal('1000.00'), {})
    result = await payment_service.verify_checkout('TXN-ref-1', TXN_ID)
    assert result['transactionId'] == TXN_ID
    assert ledger.rows[TXN_ID]['status'] == 'processing'

# Top-ups

@pytest.mark.asyncio
async def test_initialize_topup(payment_service, gateway):
    result = await payment_service.initialize_topup(USER, Decimal('500'))

    assert result['reference'].startswith('TOPUP-')
    call = gateway.initialized[0]
    assert call['email'] == 'jane@example.com'
    assert call['metadata'] == {'user_id': BUYER_ID, 'transaction_type': TOPUP_TYPE, 'amount': '500'}
    assert 'type=topup' in call['callback_url']

@pytest.mark.asyncio
async def test_topup_below_minimum(payment_service, gateway):
    with pytest.raises(ValidationError):
        await payment_service.initialize_topup(USER, Decimal('99.99'))
    assert gateway.initialized == []

@pytest.mark.asyncio
async def test_topup_needs_email(payment_service):
    with pytest.raises(ValidationError):
        await payment_service.initialize_topup({'id': BUYER_ID}, Decimal('500'))

@pytest.mark.asyncio
async def test_topup_verified_twice_credits_once(payment_service, gateway, wallets):
    gateway.add_payment('TOPUP-1', Decimal('500.00'), {'user_id': BUYER_ID, 'transaction_type': TOPUP_TYPE})

    result = await payment_service.verify_topup(USER, 'TOPUP-1')
    assert result['balance'] == Decimal('500.00')

    with pytest.raises(DuplicateError):
        await payment_service.verify_topup(USER, 'TOPUP-1')

    assert wallets.wallets[BUYER_ID]['available_balance'] == Decimal('500.00')
    # The duplicate is caught before asking the provider again
    assert gateway.verified == ['TOPUP-1']

@pytest.mark.asyncio
async def test_topup_for_another_user(payment_service, gateway, wallets):
    gateway.add_payment('TOPUP-1', Decimal('500.00'), {'user_id': 'someone-else', 'transaction_type': TOPUP_TYPE})
    with pytest.raises(UserMismatchError):
        await payment_service.verify_topup(USER, 'TOPUP-1')
    assert wallets.wallets == {}

@pytest.mark.asyncio
async def test_topup_without_owner_rejected(payment_service, gateway, wallets):
    gateway.add_payment('TOPUP-1', Decimal('500.00'), {'transaction_type': TOPUP_TYPE})
    with pytest.raises(UserMismatchError):
        await payment_service.verify_topup(USER, 'TOPUP-1')
    assert wallets.wallets == {}

# One charge, one credit

@pytest.mark.asyncio
async def test_checkout_metadata_cannot_mark_topup(payment_service, gateway, pending_txn):
    await payment_service.initialize_checkout(
        TXN_ID,
        'jane@example.com',
        {'user_id': BUYER_ID, 'transaction_type': TOPUP_TYPE, 'note': 'gift'}
    )

    metadata = gateway.initialized[0]['metadata']
    assert 'user_id' not in metadata
    assert 'transaction_type' not in metadata
    assert metadata['note'] == 'gift'

@pytest.mark.asyncio
async def test_checkout_charge_not_credited_as_topup(payment_service, gateway, ledger, wallets, pending_txn):
    started = await payment_service.initialize_checkout(
        TXN_ID,
        'jane@example.com',
        {'user_id': BUYER_ID, 'transaction_type': TOPUP_TYPE}
    )
    reference = started['reference']
    gateway.add_payment(reference, Decimal('1000.00'), gateway.initialized[0]['metadata'])

    await payment_service.verify_checkout(reference)
    with pytest.raises(DuplicateError):
        await payment_service.verify_topup(USER, reference)

    assert ledger.rows[TXN_ID]['status'] == 'processing'
    assert wallets.wallets[SELLER_ID]['pending_balance'] == Decimal('950.00')
    assert BUYER_ID not in wallets.wallets
    assert wallets.entries == {}

@pytest.mark.asyncio
async def test_charge_marked_both_ways_is_rejected(payment_service, gateway, ledger, wallets, pending_txn):
    """Metadata naming a transaction and a top-up is neither."""
    metadata = {'transactionId': TXN_ID, 'user_id': BUYER_ID, 'transaction_type': TOPUP_TYPE}
    gateway.add_payment('TXN-ref-1', Decimal('1000.00'), metadata)

    with pytest.raises(ValidationError):
        await payment_service.verify_topup(USER, 'TXN-ref-1')
    with pytest.raises(ValidationError):
        await payment_service.verify_checkout('TXN-ref-1')

    body, signature = signed(charge_event('TXN-ref-1', 100000, metadata))
    result = await payment_service.handle_webhook(body, signature)

    assert result['received'] is True
    assert ledger.rows[TXN_ID]['status'] == 'pending'
    assert wallets.wallets == {}

@pytest.mark.asyncio
async def test_topup_charge_not_captured(payment_service, gateway, ledger, wallets, pending_txn):
    gateway.add_payment('TOPUP-1', Decimal('1000.00'), {'user_id': BUYER_ID, 'transaction_type': TOPUP_TYPE})

    with pytest.raises(ValidationError):
        await payment_service.verify_checkout('TOPUP-1', TXN_ID)

    assert ledger.rows[TXN_ID]['status'] == 'pending'
    assert wallets.wallets == {}

@pytest.mark.asyncio
async def test_verify_checkout_for_other_transaction(payment_service, gateway, ledger, deposits, pending_txn):
    ledger.add(id='ORD-OTHER')
    gateway.add_payment('TXN-ref-A', Decimal('1000.00'), {'transactionId': TXN_ID})

    with pytest.raises(ValidationError):
        await payment_service.verify_checkout('TXN-ref-A', 'ORD-OTHER')

    assert ledger.rows['ORD-OTHER']['status'] == 'pending'
    assert ledger.rows[TXN_ID]['status'] == 'pending'
    assert deposits.rows == {}

@pytest.mark.asyncio
async def test_verify_checkout_matching_transaction(payment_service, gateway, ledger, pending_txn):
    gateway.add_payment('TXN-ref-A', Decimal('1000.00'), {'transactionId': TXN_ID})
    result = await payment_service.verify_checkout('TXN-ref-A', TXN_ID)
    assert result['transactionId'] == TXN_ID
    assert ledger.rows[TXN_ID]['status'] == 'processing'

# Webhook

@pytest.mark.asyncio
async def test_webhook_invalid_signature(payment_service, gateway, ledger, wallets, pending_txn):
    body, _ = signed(charge_event('TXN-ref-1', 100000, {'transactionId': TXN_ID}))

    with pytest.raises(InvalidSignatureError) as exc:
        await payment_service.handle_webhook(body, 'deadbeef')

    assert exc.value.status_code == 401
    assert ledger.rows[TXN_ID]['status'] == 'pending'
    assert wallets.wallets == {}
    assert gateway.verified == []

@pytest.mark.asyncio
async def test_webhook_missing_signature(payment_service):
    with pytest.raises(InvalidSignatureError):
        await payment_service.handle_webhook(b'{}', None)

@pytest.mark.asyncio
async def test_webhook_without_secret(engine):
    service = PaymentService(engine, settings={'paystack_secret_key': ''})
    with pytest.raises(ConfigError):
        await service.handle_webhook(b'{}', 'abc')

@pytest.mark.asyncio
async def test_webhook_bad_json(payment_service):
    body = b'not json'
    with pytest.raises(ValidationError):
        await payment_service.handle_webhook(body, compute_signature(WEBHOOK_SECRET, body))

@pytest.mark.asyncio
async def test_webhook_charge_captures(payment_service, ledger, wallets, pending_txn):
    body, signature = signed(charge_event('TXN-ref-1', 100000, {'transactionId': TXN_ID}))

    result = await payment_service.handle_webhook(body, signature)

    assert result == {'received': True, 'event': 'charge.success'}
    assert ledger.rows[TXN_ID]['status'] == 'processing'
    assert wallets.wallets[SELLER_ID]['pending_balance'] == Decimal('950.00')

@pytest.mark.asyncio
async def test_webhook_metadata_as_string(payment_service, ledger, pending_txn):
    body, signature = signed(charge_event('TXN-ref-1', 100000, json.dumps({'transactionId': TXN_ID})))
    await payment_service.handle_webhook(body, signature)
    assert ledger.rows[TXN_ID]['status'] == 'processing'

@pytest.mark.asyncio
async def test_duplicate_topup_webhook_credits_once(payment_service, wallets):
    body, signature = signed(charge_event(
        'TOPUP-1',
        50000,
        {'user_id': BUYER_ID, 'transaction_type': TOPUP_TYPE}
    ))

    await payment_service.handle_webhook(body, signature)
    await payment_service.handle_webhook(body, signature)

    assert wallets.wallets[BUYER_ID]['available_balance'] == Decimal('500.00')
    assert len(wallets.entries) == 1

@pytest.mark.asyncio
async def test_webhook_then_verify_topup(payment_service, gateway, wallets):
    """A top-up credited by the webhook is not credited again by verify."""
    metadata = {'user_id': BUYER_ID, 'transaction_type': TOPUP_TYPE}
    gateway.add_payment('TOPUP-1', Decimal('500.00'), metadata)
    body, signature = signed(charge_event('TOPUP-1', 50000, metadata))

    await payment_service.handle_webhook(body, signature)
    with pytest.raises(DuplicateError):
        await payment_service.verify_topup(USER, 'TOPUP-1')

    assert wallets.wallets[BUYER_ID]['available_balance'] == Decimal('500.00')

@pytest.mark.asyncio
async def test_webhook_short_charge_acknowledged(payment_service, ledger, pending_txn):
    body, signature = signed(charge_event('TXN-ref-1', 1000, {'transactionId': TXN_ID}))

    result = await payment_service.handle_webhook(body, signature)

    assert result['received'] is True
    assert ledger.rows[TXN_ID]['status'] == 'pending'

@pytest.mark.asyncio
async def test_webhook_other_events_ignored(payment_service, ledger, pending_txn):
    body, signature = signed({'event': 'transfer.success', 'data': {'reference': 'x'}})
    result = await payment_service.handle_webhook(body, signature)
    assert result == {'received': True, 'event': 'transfer.success'}
    assert ledger.rows[TXN_ID]['status'] == 'pending'

def test_config_exposes_public_key_only(payment_service):
    assert payment_service.config() == {'publicKey': 'pk_test_public', 'currency': 'KES'}
    assert WEBHOOK_SECRET not in json.dumps(payment_service.config())
