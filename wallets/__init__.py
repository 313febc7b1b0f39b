"""Wallet store.

Each user has one wallet row with an ``available`` and a ``pending`` bucket.
Every balance change is a single atomic SQL statement; callers never read a
balance, modify it in Python and write it back.
"""
import logging
import secrets
import time
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from asyncpg.exceptions import PostgresError

from database import get_pool, acquire
from database.exceptions import DatabaseError
from errors import (
    DuplicateError,
    InsufficientFundsError,
    InvalidStatusError,
    NotFoundError,
    ValidationError
)

logger = logging.getLogger(__name__)

ZERO = Decimal('0')

# Flat payout fee per provider, in KES
WITHDRAWAL_FEES: Dict[str, Decimal] = {
    'MPESA-B2C': Decimal('20'),
    'AIRTEL': Decimal('20'),
    'INTASEND-XB': Decimal('1000'),
    'PESALINK': Decimal('50'),
}

class Bucket(str, Enum):
    """Wallet balance buckets and their columns."""
    AVAILABLE = 'available_balance'
    PENDING = 'pending_balance'

def generate_reference(prefix: str) -> str:
    """Reference in the form <PREFIX>-<epoch ms>-<6 hex>."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3).upper()}"

def withdrawal_fee(provider: str) -> Decimal:
    """Payout fee for a provider, zero when it has none."""
    return WITHDRAWAL_FEES.get((provider or '').upper(), ZERO)

def empty_wallet(user_id: str) -> Dict[str, Any]:
    return {
        'user_id': user_id,
        'available_balance': ZERO,
        'pending_balance': ZERO,
        'total_earned': ZERO,
        'total_spent': ZERO,
    }

def _positive(amount) -> Decimal:
    amount = Decimal(str(amount))
    if amount <= 0:
        raise ValidationError("Amount must be positive")
    return amount

class WalletStore:
    """Per-user balances and the wallet ledger."""

    def __init__(self, pool=None) -> None:
        """Initialize wallet store.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def get_balance(self, user_id: str, conn=None) -> Dict[str, Any]:
        """Current balances. A user without a wallet row has all zeros."""
        await self.ensure_pool()
        async with acquire(self.pool, conn) as c:
            row = await c.fetchrow('SELECT * FROM wallets WHERE user_id = $1', user_id)
        return dict(row) if row else empty_wallet(user_id)

    async def credit(self, user_id: str, amount: Decimal, bucket: Bucket, conn=None) -> Dict[str, Any]:
        """Atomically add to a bucket, creating the wallet if needed.

        Args:
            user_id: Wallet owner
            amount: Positive amount
            bucket: Bucket to credit
            conn: Optional connection of an enclosing database transaction

        Returns:
            The updated wallet
        """
        amount = _positive(amount)
        column = Bucket(bucket).value
        await self.ensure_pool()

        async with acquire(self.pool, conn) as c:
            row = await c.fetchrow(
                f'''
                INSERT INTO wallets (user_id, {column})
                VALUES ($1, $2)
                ON CONFLICT (user_id) DO UPDATE
                SET {column} = wallets.{column} + EXCLUDED.{column},
                    updated_at = now()
                RETURNING *
                ''',
                user_id,
                amount
            )

        logger.info(f"Credited {amount} to {column} of {user_id}")
        return dict(row)

    async def debit(
        self,
        user_id: str,
        amount: Decimal,
        bucket: Bucket,
        conn=None,
        count_as_spent: bool = False
    ) -> Dict[str, Any]:
        """Atomically subtract from a bucket.

        Args:
            user_id: Wallet owner
            amount: Positive amount
            bucket: Bucket to debit
            conn: Optional connection of an enclosing database transaction
            count_as_spent: Also add the amount to total_spent

        Raises:
            InsufficientFundsError: If the bucket holds less than amount
        """
        amount = _positive(amount)
        column = Bucket(bucket).value
        spent = ', total_spent = total_spent + $2' if count_as_spent else ''
        await self.ensure_pool()

        async with acquire(self.pool, conn) as c:
            row = await c.fetchrow(
                f'''
                UPDATE wallets
                SET {column} = {column} - $2, updated_at = now(){spent}
                WHERE user_id = $1 AND {column} >= $2
                RETURNING *
                ''',
                user_id,
                amount
            )

        if not row:
            raise InsufficientFundsError(f"Insufficient {column.replace('_', ' ')} for {user_id}")

        logger.info(f"Debited {amount} from {column} of {user_id}")
        return dict(row)

    async def release_pending(self, user_id: str, amount: Decimal, conn=None) -> Dict[str, Any]:
        """Move ``amount`` from pending to available and count it as earned.

        Raises:
            InsufficientFundsError: If pending holds less than amount
        """
        amount = _positive(amount)
        await self.ensure_pool()

        async with acquire(self.pool, conn) as c:
            row = await c.fetchrow(
                '''
                UPDATE wallets
                SET pending_balance = pending_balance - $2,
                    available_balance = available_balance + $2,
                    total_earned = total_earned + $2,
                    updated_at = now()
                WHERE user_id = $1 AND pending_balance >= $2
                RETURNING *
                ''',
                user_id,
                amount
            )

        if not row:
            raise InsufficientFundsError(f"Pending balance of {user_id} does not cover {amount}")

        logger.info(f"Released {amount} from pending to available for {user_id}")
        return dict(row)

    async def apply_topup(
        self,
        user_id: str,
        amount: Decimal,
        reference: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Tuple[Dict[str, Any], bool]:
        """Record a top-up and credit it, at most once per reference.

        The unique index on wallet_transactions.reference decides which of
        two concurrent deliveries wins; the loser changes nothing.

        Returns:
            Tuple of (wallet, created). ``created`` is False for a repeat.

        Raises:
            DuplicateError: The reference is a checkout payment reference
        """
        amount = _positive(amount)
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    checkout = await conn.fetchval(
                        'SELECT id FROM transactions WHERE payment_reference = $1',
                        reference
                    )
                    if checkout:
                        logger.warning(f"Top-up {reference} refused: reference belongs to {checkout}")
                        raise DuplicateError(f"Reference {reference} belongs to transaction {checkout}")

                    entry_id = await conn.fetchval(
                        '''
                        INSERT INTO wallet_transactions (
                            user_id, type, amount, fee, net_amount, reference,
                            status, payment_method, metadata, completed_at
                        ) VALUES ($1, 'topup', $2, 0, $2, $3, 'completed', 'PAYSTACK', $4, now())
                        ON CONFLICT (reference) DO NOTHING
                        RETURNING id
                        ''',
                        user_id,
                        amount,
                        reference,
                        metadata or {}
                    )

                    if entry_id is None:
                        logger.warning(f"Top-up {reference} already applied")
                        return await self.get_balance(user_id, conn), False

                    wallet = await self.credit(user_id, amount, Bucket.AVAILABLE, conn)
        except PostgresError as e:
            logger.error(f"Error applying top-up {reference}: {e}")
            raise DatabaseError(f"Failed to apply top-up: {e}")

        logger.info(f"Applied top-up {reference} of {amount} for {user_id}")
        return wallet, True

    async def find_entry(self, reference: str, conn=None) -> Optional[Dict[str, Any]]:
        """Wallet ledger entry by reference."""
        await self.ensure_pool()
        async with acquire(self.pool, conn) as c:
            row = await c.fetchrow('SELECT * FROM wallet_transactions WHERE reference = $1', reference)
        return dict(row) if row else None

    async def history(self, user_id: str, limit: int = 20, offset: int = 0) -> Dict[str, Any]:
        """Paginated wallet ledger, newest first."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM wallet_transactions
                WHERE user_id = $1
                ORDER BY created_at DESC
                LIMIT $2 OFFSET $3
                ''',
                user_id,
                limit,
                offset
            )
            total = await conn.fetchval(
                'SELECT count(*) FROM wallet_transactions WHERE user_id = $1',
                user_id
            )
        return {
            'transactions': [dict(row) for row in rows],
            'total': total,
            'limit': limit,
            'offset': offset
        }

    async def withdraw(self, user_id: str, amount: Decimal, payment_method_id: str) -> Dict[str, Any]:
        """Request a payout of ``amount`` from the available balance.

        The gross amount leaves the wallet now; the provider fee comes out of
        what the user receives.

        Returns:
            The pending withdrawal entry

        Raises:
            NotFoundError: If the payout method is not the user's
            ValidationError: If the fee leaves nothing to pay out
            InsufficientFundsError: If available balance is too low
        """
        amount = _positive(amount)
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                method = await conn.fetchrow(
                    'SELECT * FROM payment_methods WHERE id = $1 AND user_id = $2',
                    payment_method_id,
                    user_id
                )
                if not method:
                    raise NotFoundError("Payment method not found")

                fee = withdrawal_fee(method['provider'])
                net = amount - fee
                if net <= 0:
                    raise ValidationError(f"Amount must exceed the {fee} withdrawal fee")

                await self.debit(user_id, amount, Bucket.AVAILABLE, conn, count_as_spent=True)

                reference = generate_reference('WD')
                row = await conn.fetchrow(
                    '''
                    INSERT INTO wallet_transactions (
                        user_id, type, amount, fee, net_amount, reference,
                        status, payment_method, payment_method_id, metadata
                    ) VALUES ($1, 'withdrawal', $2, $3, $4, $5, 'pending', $6, $7, $8)
                    RETURNING *
                    ''',
                    user_id,
                    amount,
                    fee,
                    net,
                    reference,
                    method['provider'],
                    method['id'],
                    {
                        'account_number': method['account_number'],
                        'account_name': method['account_name'],
                        'method_type': method['method_type']
                    }
                )

        logger.info(f"Withdrawal {reference} of {amount} requested by {user_id}")
        return dict(row)

    async def complete_withdrawal(self, reference: str) -> Dict[str, Any]:
        """Mark a pending withdrawal as paid out."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                UPDATE wallet_transactions
                SET status = 'completed', completed_at = now()
                WHERE reference = $1 AND type = 'withdrawal' AND status = 'pending'
                RETURNING *
                ''',
                reference
            )
            if not row:
                await self._raise_for_entry(conn, reference)

        logger.info(f"Withdrawal {reference} completed")
        return dict(row)

    async def fail_withdrawal(self, reference: str, reason: str) -> Dict[str, Any]:
        """Mark a pending withdrawal failed and return the money to the wallet."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    '''
                    UPDATE wallet_transactions
                    SET status = 'failed', failure_reason = $2, completed_at = now()
                    WHERE reference = $1 AND type = 'withdrawal' AND status = 'pending'
                    RETURNING *
                    ''',
                    reference,
                    reason
                )
                if not row:
                    await self._raise_for_entry(conn, reference)

                await conn.execute(
                    '''
                    UPDATE wallets
                    SET available_balance = available_balance + $2,
                        total_spent = GREATEST(total_spent - $2, 0),
                        updated_at = now()
                    WHERE user_id = $1
                    ''',
                    row['user_id'],
                    row['amount']
                )

        logger.warning(f"Withdrawal {reference} failed: {reason}")
        return dict(row)

    async def list_withdrawals(self, status: Optional[str] = 'pending', limit: int = 100) -> List[Dict[str, Any]]:
        """Withdrawals for admin processing, oldest first."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM wallet_transactions
                WHERE type = 'withdrawal' AND ($1::text IS NULL OR status = $1)
                ORDER BY created_at ASC
                LIMIT $2
                ''',
                status,
                limit
            )
        return [dict(row) for row in rows]

    async def _raise_for_entry(self, conn, reference: str) -> None:
        current = await conn.fetchval(
            "SELECT status FROM wallet_transactions WHERE reference = $1 AND type = 'withdrawal'",
            reference
        )
        if current is None:
            raise NotFoundError(f"Withdrawal {reference} not found")
        raise InvalidStatusError(f"Withdrawal {reference} is already {current}")

__all__ = [
    'WalletStore',
    'Bucket',
    'WITHDRAWAL_FEES',
    'withdrawal_fee',
    'generate_reference',
    'empty_wallet'
]
