"""Payment flows.

Ties the Paystack gateway to the escrow engine and the wallet store:
checkout initialization and verification, wallet top-ups and the webhook.
Gateway calls are blocking ``requests`` calls and run in a worker thread.
"""
import asyncio
import json
import logging
import secrets
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union
from urllib.parse import urlencode

from asyncpg.exceptions import PostgresError

from database.exceptions import DatabaseError
from errors import (
    ConfigError,
    DuplicateError,
    InvalidSignatureError,
    InvalidStatusError,
    MarketplaceError,
    NotFoundError,
    UserMismatchError,
    ValidationError,
    VerifyFailedError
)
from gateway import (
    PaystackClient,
    client_from_settings,
    verify_signature,
    from_minor_units,
    parse_metadata
)
from ledger import TransactionLedger, TransactionStatus, normalize_status
from wallets import WalletStore
from escrow import EscrowEngine

logger = logging.getLogger(__name__)

PAYMENT_METHOD = 'PAYSTACK'
TOPUP_TYPE = 'wallet_topup'

# Metadata keys that decide where a charge is credited; set by us only
ROUTING_KEYS = frozenset({'transactionId', 'itemName', 'sellerId', 'user_id', 'transaction_type'})

def _payment_reference(prefix: str, owner_id: str) -> str:
    return f"{prefix}-{owner_id[:8]}-{int(time.time() * 1000)}-{secrets.randbelow(10000)}"

def charge_kind(meta: Dict[str, Any]) -> Optional[str]:
    """'topup' or 'checkout', or None unless the metadata names exactly one."""
    is_topup = meta.get('transaction_type') == TOPUP_TYPE
    has_transaction = bool(meta.get('transactionId'))
    if is_topup and not has_transaction:
        return 'topup'
    if has_transaction and not is_topup:
        return 'checkout'
    return None

class PaymentService:
    """Checkout, top-up and webhook handling."""

    def __init__(
        self,
        engine: EscrowEngine,
        ledger: Optional[TransactionLedger] = None,
        wallets: Optional[WalletStore] = None,
        gateway: Optional[PaystackClient] = None,
        settings: Optional[Dict[str, Any]] = None
    ) -> None:
        """Initialize payment service.

        Args:
            engine: Escrow engine used to capture verified payments
            ledger: Transaction ledger, defaults to the engine's
            wallets: Wallet store, defaults to the engine's
            gateway: Paystack client. Built from settings on first use if omitted.
            settings: Settings dict, defaults to the loaded settings.conf
        """
        if settings is None:
            from config import settings_conf as settings
        self.settings = settings
        self.engine = engine
        self.ledger = ledger or engine.ledger
        self.wallets = wallets or engine.wallets
        self._gateway = gateway

    def gateway(self) -> PaystackClient:
        """The gateway client.

        Raises:
            ConfigError: If no secret key is configured
        """
        if self._gateway is None:
            self._gateway = client_from_settings(self.settings)
        return self._gateway

    def config(self) -> Dict[str, Any]:
        """Public checkout configuration for the frontend."""
        return {
            'publicKey': self.settings.get('paystack_public_key') or None,
            'currency': self.settings.get('currency', 'KES')
        }

    async def initialize_checkout(
        self,
        transaction_id: str,
        email: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Start a hosted payment for a pending transaction.

        The reference is stored on the transaction, which stays pending until
        the payment is verified.

        Raises:
            ConfigError: No gateway secret
            ValidationError: Missing transaction id or email
            NotFoundError: Unknown transaction
            InvalidStatusError: Transaction is not pending
            GatewayError: Provider refused the payment
        """
        gateway = self.gateway()
        if not transaction_id or not email:
            raise ValidationError("transactionId and email are required")

        txn = await self.ledger.get(transaction_id)
        if not txn:
            raise NotFoundError("Transaction not found")
        status = normalize_status(txn['status'])
        if status != TransactionStatus.PENDING:
            raise InvalidStatusError(f"Transaction is {status}, not pending")

        reference = _payment_reference('TXN', transaction_id)
        query = urlencode({'reference': reference, 'txnId': transaction_id})
        callback_url = f"{self.settings.get('frontend_url', '')}/payment/callback?{query}"

        payment_metadata = {
            key: value for key, value in (metadata or {}).items()
            if key not in ROUTING_KEYS
        }
        payment_metadata.update({
            'transactionId': transaction_id,
            'itemName': txn['item_name'],
            'sellerId': txn['seller_id']
        })

        result = await asyncio.to_thread(
            gateway.initialize,
            email,
            txn['amount'],
            reference,
            callback_url,
            payment_metadata,
            txn['currency']
        )
        await self.ledger.set_payment_reference(transaction_id, reference)

        return {
            'authorization_url': result['authorization_url'],
            'authorizationUrl': result['authorization_url'],
            'access_code': result['access_code'],
            'reference': result['reference']
        }

    async def verify_checkout(self, reference: str, transaction_id: Optional[str] = None) -> Dict[str, Any]:
        """Verify a payment with the provider and capture it into escrow.

        ``transaction_id`` is only a fallback for charges whose metadata does
        not name one; it can never redirect a charge to another transaction.

        Raises:
            ValidationError: Missing reference, a wallet top-up charge, or a
                transaction id that differs from the one the charge was made for
            VerifyFailedError: Provider reports the payment as not successful
            NotFoundError: No transaction for the payment
            AmountMismatchError: Paid less than the amount due
            DuplicateError: The reference already paid something else
        """
        gateway = self.gateway()
        if not reference:
            raise ValidationError("Payment reference required")

        result = await asyncio.to_thread(gateway.verify, reference)
        if not result['paid']:
            raise VerifyFailedError(f"Payment not successful: {result['status']}")

        meta = result['metadata']
        if meta.get('transaction_type') == TOPUP_TYPE:
            raise ValidationError("Payment is a wallet top-up, not a checkout")

        charged_id = meta.get('transactionId')
        if transaction_id and charged_id and transaction_id != charged_id:
            logger.warning(f"Payment {reference} for {charged_id} submitted against {transaction_id}")
            raise ValidationError("Payment was made for a different transaction")

        txn_id = charged_id or transaction_id
        if not txn_id:
            raise NotFoundError("Transaction not found in payment")

        captured = await self.engine.capture_payment(
            txn_id,
            reference,
            result['amount'],
            PAYMENT_METHOD,
            payer_name=meta.get('payerName') or meta.get('buyerName'),
            payer_phone=meta.get('payerPhone') or meta.get('buyerPhone')
        )

        return {
            'status': 'success',
            'transactionId': txn_id,
            'amount': result['amount'],
            'reference': result['reference'],
            'paidAt': result['paid_at'],
            'channel': result['channel'],
            'alreadyProcessed': captured['status'] == 'already_processed'
        }

    async def initialize_topup(
        self,
        user: Dict[str, Any],
        amount: Union[Decimal, str, int],
        email: Optional[str] = None
    ) -> Dict[str, Any]:
        """Start a hosted payment that credits the user's wallet.

        Raises:
            ValidationError: Amount below the minimum or no email
        """
        gateway = self.gateway()
        try:
            amount = Decimal(str(amount))
        except InvalidOperation:
            raise ValidationError("Amount must be a number")

        minimum = Decimal(str(self.settings.get('min_topup_amount', 100)))
        currency = self.settings.get('currency', 'KES')
        if amount < minimum:
            raise ValidationError(f"Minimum top-up is {minimum} {currency}")

        email = email or user.get('email')
        if not email:
            raise ValidationError("Email is required")

        reference = _payment_reference('TOPUP', user['id'])
        query = urlencode({'type': 'topup', 'reference': reference})
        callback_url = f"{self.settings.get('frontend_url', '')}/payment/callback?{query}"

        result = await asyncio.to_thread(
            gateway.initialize,
            email,
            amount,
            reference,
            callback_url,
            {
                'user_id': user['id'],
                'transaction_type': TOPUP_TYPE,
                'amount': str(amount)
            },
            currency
        )

        return {
            'authorization_url': result['authorization_url'],
            'authorizationUrl': result['authorization_url'],
            'access_code': result['access_code'],
            'reference': result['reference']
        }

    async def verify_topup(self, user: Dict[str, Any], reference: str) -> Dict[str, Any]:
        """Verify a top-up and credit the wallet once.

        Only charges started by :meth:`initialize_topup` qualify: the metadata
        must mark a wallet top-up for this user and name no transaction.

        Raises:
            ValidationError: Missing reference or not a top-up charge
            DuplicateError: Reference already credited, or it belongs to a checkout
            VerifyFailedError: Payment not successful
            UserMismatchError: Payment was made for another user
        """
        gateway = self.gateway()
        if not reference:
            raise ValidationError("Payment reference required")

        if await self.wallets.find_entry(reference):
            raise DuplicateError("Payment already processed")
        if await self.ledger.find_by_reference(reference):
            logger.warning(f"Top-up verify for checkout reference {reference} by {user['id']}")
            raise DuplicateError("Payment reference belongs to a checkout")

        result = await asyncio.to_thread(gateway.verify, reference)
        if not result['paid']:
            raise VerifyFailedError(f"Payment not successful: {result['status']}")

        if charge_kind(result['metadata']) != 'topup':
            raise ValidationError("Payment is not a wallet top-up")
        if result['metadata'].get('user_id') != user['id']:
            logger.warning(f"Top-up {reference} verified by {user['id']} belongs to another user")
            raise UserMismatchError("Payment does not belong to this user")

        wallet, created = await self.wallets.apply_topup(
            user['id'],
            result['amount'],
            reference,
            {'paystack_reference': result['reference'], 'channel': result['channel']}
        )
        if not created:
            raise DuplicateError("Payment already processed")

        return {
            'status': 'success',
            'amount': result['amount'],
            'reference': reference,
            'balance': wallet['available_balance']
        }

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Apply a provider event.

        The signature is checked before the body is parsed. Events that fail
        business checks are logged and acknowledged so the provider stops
        redelivering them.

        Raises:
            ConfigError: No gateway secret to check signatures with
            InvalidSignatureError: Missing or wrong signature
            ValidationError: Body is not a JSON object
        """
        secret = self.settings.get('paystack_secret_key')
        if not secret:
            raise ConfigError("Paystack secret key is not configured")

        if not verify_signature(secret, raw_body, signature):
            logger.warning("Rejected webhook with invalid signature")
            raise InvalidSignatureError("Invalid signature")

        try:
            event = json.loads(raw_body)
        except ValueError:
            raise ValidationError("Webhook body is not valid JSON")
        if not isinstance(event, dict):
            raise ValidationError("Webhook body is not a JSON object")

        event_type = event.get('event')
        if event_type != 'charge.success':
            logger.info(f"Ignoring webhook event {event_type}")
            return {'received': True, 'event': event_type}

        data = event.get('data') or {}
        reference = data.get('reference')
        meta = parse_metadata(data.get('metadata'))
        amount = from_minor_units(data.get('amount') or 0)

        kind = charge_kind(meta)
        try:
            if kind == 'topup' and meta.get('user_id'):
                _, created = await self.wallets.apply_topup(
                    meta['user_id'],
                    amount,
                    reference,
                    {'paystack_reference': reference, 'channel': data.get('channel'), 'source': 'webhook'}
                )
                if not created:
                    logger.warning(f"Duplicate top-up webhook for {reference}")
            elif kind == 'checkout':
                captured = await self.engine.capture_payment(
                    meta['transactionId'],
                    reference,
                    amount,
                    PAYMENT_METHOD,
                    payer_name=meta.get('payerName') or meta.get('buyerName'),
                    payer_phone=meta.get('payerPhone') or meta.get('buyerPhone')
                )
                if captured['status'] == 'already_processed':
                    logger.warning(f"Duplicate charge webhook for {reference}")
            else:
                logger.warning(f"Webhook {reference} has no usable routing metadata: {sorted(meta)}")
        except (MarketplaceError, DatabaseError, PostgresError) as e:
            logger.error(f"Webhook {reference} not applied: {e}")

        return {'received': True, 'event': event_type}

__all__ = ['PaymentService', 'PAYMENT_METHOD', 'TOPUP_TYPE']
