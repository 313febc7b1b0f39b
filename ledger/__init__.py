"""Transaction ledger.

This module owns the ``transactions`` table: order creation, lookups and the
single state-transition function every other component goes through.
"""
import logging
import secrets
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from asyncpg.exceptions import PostgresError

from database import get_pool, acquire
from database.exceptions import DatabaseError
from errors import NotFoundError, InvalidStatusError, ValidationError
from .status import (
    TransactionStatus,
    TRANSITIONS,
    TIMESTAMP_COLUMNS,
    normalize_status,
    can_transition,
    allowed_sources
)

logger = logging.getLogger(__name__)

# Columns transition() may write alongside the status
UPDATABLE_FIELDS = frozenset({
    'payment_reference',
    'payment_method',
    'platform_fee',
    'seller_payout',
    'paid_at',
    'buyer_id',
    'cancellation_reason'
})

BASE36 = '0123456789abcdefghijklmnopqrstuvwxyz'

def _base36(number: int) -> str:
    digits = ''
    while number:
        number, rem = divmod(number, 36)
        digits = BASE36[rem] + digits
    return digits or '0'

def generate_transaction_id() -> str:
    """Order id in the form ORD-<base36 epoch ms>-<8 hex>."""
    return f"ORD-{_base36(int(time.time() * 1000)).upper()}-{secrets.token_hex(4).upper()}"

class TransactionLedger:
    """Reads and writes marketplace transactions."""

    def __init__(self, pool=None) -> None:
        """Initialize ledger.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def create(
        self,
        seller_id: str,
        amount: Decimal,
        item_name: str,
        currency: str = 'KES',
        buyer_id: Optional[str] = None,
        buyer_name: Optional[str] = None,
        buyer_phone: Optional[str] = None,
        buyer_email: Optional[str] = None,
        buyer_address: Optional[str] = None,
        product_id: Optional[Any] = None,
        item_description: Optional[str] = None,
        item_images: Optional[List[str]] = None,
        quantity: int = 1,
        conn=None
    ) -> Dict[str, Any]:
        """Create a pending transaction.

        Raises:
            ValidationError: If the amount is not positive
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValidationError("Transaction amount must be positive")

        await self.ensure_pool()
        transaction_id = generate_transaction_id()

        try:
            async with acquire(self.pool, conn) as c:
                row = await c.fetchrow(
                    '''
                    INSERT INTO transactions (
                        id, seller_id, buyer_id, buyer_name, buyer_phone,
                        buyer_email, buyer_address, product_id, item_name,
                        item_description, item_images, quantity, amount,
                        currency, status
                    ) VALUES (
                        $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, 'pending'
                    )
                    RETURNING *
                    ''',
                    transaction_id,
                    seller_id,
                    buyer_id,
                    buyer_name,
                    buyer_phone,
                    buyer_email,
                    buyer_address,
                    product_id,
                    item_name,
                    item_description,
                    item_images or [],
                    quantity,
                    amount,
                    currency
                )
        except PostgresError as e:
            logger.error(f"Error creating transaction for seller {seller_id}: {e}")
            raise DatabaseError(f"Failed to create transaction: {e}")

        logger.info(f"Created transaction {transaction_id} for {amount} {currency}")
        return dict(row)

    async def get(self, transaction_id: str, conn=None, for_update: bool = False) -> Optional[Dict[str, Any]]:
        """Fetch a transaction, optionally locking the row."""
        await self.ensure_pool()
        lock = ' FOR UPDATE' if for_update else ''
        async with acquire(self.pool, conn) as c:
            row = await c.fetchrow(f'SELECT * FROM transactions WHERE id = $1{lock}', transaction_id)
        return dict(row) if row else None

    async def transition(
        self,
        transaction_id: str,
        target: Union[str, TransactionStatus],
        conn=None,
        **fields: Any
    ) -> Dict[str, Any]:
        """Move a transaction to ``target`` if the transition table allows it.

        The status check and the write happen in one guarded UPDATE, so two
        racing callers cannot both succeed.

        Args:
            transaction_id: Transaction to update
            target: Desired status, any casing
            conn: Optional connection of an enclosing database transaction
            **fields: Extra columns to write, see UPDATABLE_FIELDS

        Returns:
            The updated transaction

        Raises:
            NotFoundError: If the transaction does not exist
            InvalidStatusError: If the current status cannot move to target
        """
        target = normalize_status(target)
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot set transaction fields: {', '.join(sorted(unknown))}")

        sources = [state.value for state in allowed_sources(target)]
        sets = ['status = $2', 'updated_at = now()']
        params: List[Any] = [transaction_id, target.value, sources]

        if target in TIMESTAMP_COLUMNS:
            sets.append(f'{TIMESTAMP_COLUMNS[target]} = now()')

        for name, value in fields.items():
            params.append(value)
            sets.append(f'{name} = ${len(params)}')

        await self.ensure_pool()
        async with acquire(self.pool, conn) as c:
            row = await c.fetchrow(
                f'''
                UPDATE transactions
                SET {', '.join(sets)}
                WHERE id = $1 AND status = ANY($3::text[])
                RETURNING *
                ''',
                *params
            )

            if not row:
                current = await c.fetchval('SELECT status FROM transactions WHERE id = $1', transaction_id)
                if current is None:
                    raise NotFoundError(f"Transaction {transaction_id} not found")
                raise InvalidStatusError(
                    f"Cannot move transaction {transaction_id} from {current} to {target}"
                )

        logger.info(f"Transaction {transaction_id} -> {target}")
        return dict(row)

    async def set_payment_reference(self, transaction_id: str, reference: str, conn=None) -> Dict[str, Any]:
        """Record the gateway reference of a still-pending transaction.

        Raises:
            NotFoundError: If the transaction does not exist
            InvalidStatusError: If the transaction is no longer pending
        """
        await self.ensure_pool()
        async with acquire(self.pool, conn) as c:
            row = await c.fetchrow(
                '''
                UPDATE transactions
                SET payment_reference = $2, updated_at = now()
                WHERE id = $1 AND status = 'pending'
                RETURNING *
                ''',
                transaction_id,
                reference
            )
            if not row:
                current = await c.fetchval('SELECT status FROM transactions WHERE id = $1', transaction_id)
                if current is None:
                    raise NotFoundError(f"Transaction {transaction_id} not found")
                raise InvalidStatusError(f"Transaction {transaction_id} is {current}, not pending")
        return dict(row)

    async def find_by_reference(self, reference: str, conn=None) -> Optional[Dict[str, Any]]:
        """Transaction holding a gateway payment reference, if any."""
        await self.ensure_pool()
        async with acquire(self.pool, conn) as c:
            row = await c.fetchrow('SELECT * FROM transactions WHERE payment_reference = $1', reference)
        return dict(row) if row else None

    async def search(
        self,
        seller_id: Optional[str] = None,
        buyer_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """List transactions, newest first."""
        await self.ensure_pool()

        conditions = []
        params: List[Any] = []
        if seller_id:
            params.append(seller_id)
            conditions.append(f'seller_id = ${len(params)}')
        if buyer_id:
            params.append(buyer_id)
            conditions.append(f'buyer_id = ${len(params)}')
        if status:
            params.append(normalize_status(status).value)
            conditions.append(f'status = ${len(params)}')

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ''
        params.extend([limit, offset])

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f'''
                SELECT * FROM transactions
                {where}
                ORDER BY created_at DESC
                LIMIT ${len(params) - 1} OFFSET ${len(params)}
                ''',
                *params
            )
        return [dict(row) for row in rows]

    async def list_pending_review(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Captured payments waiting for admin approval, oldest first."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT t.*, d.payer_name, d.payer_phone, d.status AS deposit_status
                FROM transactions t
                LEFT JOIN escrow_deposits d ON d.transaction_id = t.id
                WHERE t.status = 'processing'
                ORDER BY t.paid_at ASC NULLS LAST
                LIMIT $1
                ''',
                limit
            )
        return [dict(row) for row in rows]

__all__ = [
    'TransactionLedger',
    'TransactionStatus',
    'TRANSITIONS',
    'normalize_status',
    'can_transition',
    'allowed_sources',
    'generate_transaction_id'
]
