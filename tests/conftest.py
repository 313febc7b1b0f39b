"""Shared fixtures and in-memory stand-ins for the storage layer.

The fakes follow the contracts of TransactionLedger, EscrowDeposits and
WalletStore closely enough to drive EscrowEngine and PaymentService without
a database. Database-backed tests live in test_db_flows.py.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from errors import (
    DuplicateError,
    InsufficientFundsError,
    InvalidStatusError,
    NotFoundError,
    VerifyFailedError
)
from escrow import EscrowEngine
from escrow.deposits import DepositStatus, SETTLE_SOURCES
from ledger import can_transition, normalize_status
from payments import PaymentService
from wallets import Bucket, empty_wallet

SELLER_ID = "seller-0001"
BUYER_ID = "buyer-0001"
TXN_ID = "ORD-TEST-00000001"
WEBHOOK_SECRET = "sk_test_webhook_secret"

TEST_SETTINGS = {
    'paystack_secret_key': WEBHOOK_SECRET,
    'paystack_public_key': 'pk_test_public',
    'frontend_url': 'https://shop.example.com',
    'currency': 'KES',
    'min_topup_amount': Decimal('100'),
    'platform_fee_percent': Decimal('5'),
    'platform_fee_minimum': Decimal('0'),
}

class FakeConn:
    """Connection whose transactions do nothing."""

    @asynccontextmanager
    async def transaction(self, **kwargs):
        yield self

class FakePool:
    """Pool handing out FakeConn instances."""

    def __init__(self):
        self.conn = FakeConn()

    @asynccontextmanager
    async def acquire(self):
        yield self.conn

class FakeLedger:
    """Transactions keyed by id, enforcing the transition table."""

    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}

    def add(self, **overrides) -> Dict[str, Any]:
        row = {
            'id': TXN_ID,
            'seller_id': SELLER_ID,
            'buyer_id': BUYER_ID,
            'buyer_name': 'Jane Buyer',
            'buyer_phone': '+254700000000',
            'buyer_email': 'jane@example.com',
            'item_name': 'Handmade basket',
            'amount': Decimal('1000.00'),
            'currency': 'KES',
            'status': 'pending',
            'payment_reference': None,
            'platform_fee': None,
            'seller_payout': None,
            'product_id': None,
        }
        row.update(overrides)
        self.rows[row['id']] = row
        return dict(row)

    async def get(self, transaction_id, conn=None, for_update=False):
        row = self.rows.get(transaction_id)
        return dict(row) if row else None

    async def transition(self, transaction_id, target, conn=None, **fields):
        row = self.rows.get(transaction_id)
        if not row:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        target = normalize_status(target)
        if not can_transition(row['status'], target):
            raise InvalidStatusError(f"Cannot move {transaction_id} from {row['status']} to {target}")
        row.update(fields)
        row['status'] = target.value
        return dict(row)

    async def set_payment_reference(self, transaction_id, reference, conn=None):
        row = self.rows.get(transaction_id)
        if not row:
            raise NotFoundError("Transaction not found")
        if row['status'] != 'pending':
            raise InvalidStatusError("Transaction is not pending")
        row['payment_reference'] = reference
        return dict(row)

    async def find_by_reference(self, reference, conn=None):
        for row in self.rows.values():
            if row['payment_reference'] == reference:
                return dict(row)
        return None

class FakeDeposits:
    """Escrow deposits keyed by transaction id."""

    def __init__(self, ledger: FakeLedger):
        self.ledger = ledger
        self.rows: Dict[str, Dict[str, Any]] = {}

    async def create(
        self,
        transaction_id,
        seller_id,
        amount,
        platform_fee,
        seller_payout,
        currency,
        payment_method,
        payment_reference,
        payer_name=None,
        payer_phone=None,
        conn=None
    ):
        if transaction_id in self.rows:
            raise DuplicateError(f"Transaction {transaction_id} already has an escrow deposit")
        row = {
            'transaction_id': transaction_id,
            'seller_id': seller_id,
            'amount': amount,
            'platform_fee': platform_fee,
            'seller_payout': seller_payout,
            'currency': currency,
            'payment_method': payment_method,
            'payment_reference': payment_reference,
            'payer_name': payer_name,
            'payer_phone': payer_phone,
            'status': 'pending',
            'auto_release_at': None,
        }
        self.rows[transaction_id] = row
        return dict(row)

    async def get_by_transaction(self, transaction_id, conn=None, for_update=False):
        row = self.rows.get(transaction_id)
        return dict(row) if row else None

    async def confirm(self, transaction_id, confirmed_by, auto_release_at, notes=None, conn=None):
        row = self.rows.get(transaction_id)
        if not row:
            raise NotFoundError("No escrow deposit")
        if row['status'] != 'pending':
            raise InvalidStatusError(f"Deposit is {row['status']}")
        row.update(status='confirmed', confirmed_by=confirmed_by, auto_release_at=auto_release_at)
        return dict(row)

    async def settle(self, transaction_id, target, settled_by, notes=None, conn=None):
        target = DepositStatus(target)
        row = self.rows.get(transaction_id)
        if not row:
            raise NotFoundError("No escrow deposit")
        if DepositStatus(row['status']) not in SETTLE_SOURCES[target]:
            raise InvalidStatusError(f"Deposit is {row['status']}")
        row.update(status=target.value, released_by=settled_by)
        return dict(row)

    async def list_due(self, now, limit=100):
        return [
            dict(row) for row in self.rows.values()
            if row['status'] == 'confirmed'
            and row['auto_release_at'] <= now
            and self.ledger.rows[row['transaction_id']]['status'] in ('shipped', 'delivered')
        ][:limit]

class FakeWalletStore:
    """Wallet balances and the top-up ledger."""

    def __init__(self):
        self.wallets: Dict[str, Dict[str, Any]] = {}
        self.entries: Dict[str, Dict[str, Any]] = {}

    def _wallet(self, user_id):
        return self.wallets.setdefault(user_id, empty_wallet(user_id))

    async def get_balance(self, user_id, conn=None):
        return dict(self.wallets.get(user_id) or empty_wallet(user_id))

    async def credit(self, user_id, amount, bucket, conn=None):
        wallet = self._wallet(user_id)
        wallet[Bucket(bucket).value] += Decimal(str(amount))
        return dict(wallet)

    async def debit(self, user_id, amount, bucket, conn=None, count_as_spent=False):
        column = Bucket(bucket).value
        wallet = self._wallet(user_id)
        if wallet[column] < amount:
            raise InsufficientFundsError(f"Insufficient {column} for {user_id}")
        wallet[column] -= amount
        if count_as_spent:
            wallet['total_spent'] += amount
        return dict(wallet)

    async def release_pending(self, user_id, amount, conn=None):
        wallet = self._wallet(user_id)
        if wallet['pending_balance'] < amount:
            raise InsufficientFundsError(f"Pending balance of {user_id} does not cover {amount}")
        wallet['pending_balance'] -= amount
        wallet['available_balance'] += amount
        wallet['total_earned'] += amount
        return dict(wallet)

    async def apply_topup(self, user_id, amount, reference, metadata=None):
        if reference in self.entries:
            return await self.get_balance(user_id), False
        self.entries[reference] = {
            'user_id': user_id,
            'type': 'topup',
            'amount': Decimal(str(amount)),
            'reference': reference,
            'status': 'completed',
            'metadata': metadata or {},
        }
        wallet = await self.credit(user_id, amount, Bucket.AVAILABLE)
        return wallet, True

    async def find_entry(self, reference, conn=None):
        entry = self.entries.get(reference)
        return dict(entry) if entry else None

class FakeGateway:
    """Records calls and answers verify() with a configurable payment."""

    def __init__(self):
        self.initialized: List[Dict[str, Any]] = []
        self.verified: List[str] = []
        self.payments: Dict[str, Dict[str, Any]] = {}

    def add_payment(
        self,
        reference: str,
        amount: Decimal,
        metadata: Optional[Dict[str, Any]] = None,
        paid: bool = True
    ) -> None:
        self.payments[reference] = {
            'paid': paid,
            'status': 'success' if paid else 'failed',
            'amount': Decimal(str(amount)),
            'currency': 'KES',
            'reference': reference,
            'channel': 'card',
            'paid_at': '2026-01-01T10:00:00.000Z',
            'metadata': metadata or {},
            'customer': {'email': 'jane@example.com'},
        }

    def initialize(self, email, amount, reference, callback_url=None, metadata=None, currency='KES'):
        self.initialized.append({
            'email': email,
            'amount': amount,
            'reference': reference,
            'callback_url': callback_url,
            'metadata': metadata,
            'currency': currency,
        })
        return {
            'authorization_url': f'https://checkout.paystack.com/{reference}',
            'access_code': 'ac_test',
            'reference': reference,
        }

    def verify(self, reference):
        self.verified.append(reference)
        if reference not in self.payments:
            raise VerifyFailedError("Transaction reference not found")
        return dict(self.payments[reference])

@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()

@pytest.fixture
def deposits(ledger) -> FakeDeposits:
    return FakeDeposits(ledger)

@pytest.fixture
def wallets() -> FakeWalletStore:
    return FakeWalletStore()

@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()

@pytest.fixture
def engine(ledger, deposits, wallets) -> EscrowEngine:
    return EscrowEngine(
        FakePool(),
        ledger=ledger,
        deposits=deposits,
        wallets=wallets,
        fee_percent=Decimal('5'),
        fee_minimum=Decimal('0'),
        auto_release_days=7
    )

@pytest.fixture
def payment_service(engine, gateway) -> PaymentService:
    return PaymentService(engine, gateway=gateway, settings=dict(TEST_SETTINGS))

@pytest_asyncio.fixture
async def pending_txn(ledger) -> Dict[str, Any]:
    """A pending 1000 KES transaction."""
    return ledger.add()

@pytest_asyncio.fixture
async def captured_txn(engine, pending_txn) -> Dict[str, Any]:
    """The pending transaction after a full payment."""
    await engine.capture_payment(TXN_ID, 'TXN-ref-captured', Decimal('1000'))
    return pending_txn

def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
