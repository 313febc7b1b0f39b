"""Escrow deposit records, one per captured transaction."""
import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from database import get_pool, acquire
from errors import DuplicateError, InvalidStatusError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

class DepositStatus(str, Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    RELEASED = 'released'
    REFUNDED = 'refunded'
    REJECTED = 'rejected'

    def __str__(self) -> str:
        return self.value

# Money is still held for the seller in these states
HELD: FrozenSet[DepositStatus] = frozenset({DepositStatus.PENDING, DepositStatus.CONFIRMED})

# Allowed source states for each settling transition
SETTLE_SOURCES = {
    DepositStatus.RELEASED: HELD,
    DepositStatus.REFUNDED: HELD,
    DepositStatus.REJECTED: frozenset({DepositStatus.PENDING}),
}

def status_filter(status: Optional[str]) -> Optional[List[str]]:
    """Translate a list filter into deposit statuses.

    ``locked`` (or ``held``) selects every status in which funds are held.

    Raises:
        ValidationError: For an unknown status
    """
    if not status:
        return None
    status = status.strip().lower()
    if status in ('locked', 'held'):
        return sorted(s.value for s in HELD)
    try:
        return [DepositStatus(status).value]
    except ValueError:
        raise ValidationError(f"Unknown escrow status: {status}")

class EscrowDeposits:
    """Reads and writes the escrow_deposits table."""

    def __init__(self, pool=None) -> None:
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def create(
        self,
        transaction_id: str,
        seller_id: str,
        amount: Decimal,
        platform_fee: Decimal,
        seller_payout: Decimal,
        currency: str,
        payment_method: str,
        payment_reference: str,
        payer_name: Optional[str] = None,
        payer_phone: Optional[str] = None,
        conn=None
    ) -> Dict[str, Any]:
        """Insert the deposit for a transaction.

        Raises:
            DuplicateError: If the transaction already has a deposit
        """
        await self.ensure_pool()
        async with acquire(self.pool, conn) as c:
            row = await c.fetchrow(
                '''
                INSERT INTO escrow_deposits (
                    transaction_id, seller_id, amount, platform_fee, seller_payout,
                    currency, payment_method, payment_reference, payer_name,
                    payer_phone, status
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, 'pending')
                ON CONFLICT (transaction_id) DO NOTHING
                RETURNING *
                ''',
                transaction_id,
                seller_id,
                amount,
                platform_fee,
                seller_payout,
                currency,
                payment_method,
                payment_reference,
                payer_name,
                payer_phone
            )
        if not row:
            raise DuplicateError(f"Transaction {transaction_id} already has an escrow deposit")
        return dict(row)

    async def get_by_transaction(self, transaction_id: str, conn=None, for_update: bool = False) -> Optional[Dict[str, Any]]:
        await self.ensure_pool()
        lock = ' FOR UPDATE' if for_update else ''
        async with acquire(self.pool, conn) as c:
            row = await c.fetchrow(
                f'SELECT * FROM escrow_deposits WHERE transaction_id = $1{lock}',
                transaction_id
            )
        return dict(row) if row else None

    async def confirm(
        self,
        transaction_id: str,
        confirmed_by: str,
        auto_release_at: datetime,
        notes: Optional[str] = None,
        conn=None
    ) -> Dict[str, Any]:
        """Admin confirmation of a pending deposit; starts the auto-release clock."""
        await self.ensure_pool()
        async with acquire(self.pool, conn) as c:
            row = await c.fetchrow(
                '''
                UPDATE escrow_deposits
                SET status = 'confirmed',
                    confirmed_by = $2,
                    confirmed_at = now(),
                    auto_release_at = $3,
                    admin_notes = COALESCE($4, admin_notes),
                    updated_at = now()
                WHERE transaction_id = $1 AND status = 'pending'
                RETURNING *
                ''',
                transaction_id,
                confirmed_by,
                auto_release_at,
                notes
            )
            if not row:
                await self._raise_for(c, transaction_id, DepositStatus.CONFIRMED)
        return dict(row)

    async def settle(
        self,
        transaction_id: str,
        target: DepositStatus,
        settled_by: str,
        notes: Optional[str] = None,
        conn=None
    ) -> Dict[str, Any]:
        """Move a deposit to released, refunded or rejected."""
        target = DepositStatus(target)
        sources = [s.value for s in SETTLE_SOURCES[target]]
        await self.ensure_pool()
        async with acquire(self.pool, conn) as c:
            row = await c.fetchrow(
                '''
                UPDATE escrow_deposits
                SET status = $2,
                    released_by = $3,
                    released_at = now(),
                    admin_notes = COALESCE($5, admin_notes),
                    updated_at = now()
                WHERE transaction_id = $1 AND status = ANY($4::text[])
                RETURNING *
                ''',
                transaction_id,
                target.value,
                settled_by,
                sources,
                notes
            )
            if not row:
                await self._raise_for(c, transaction_id, target)
        return dict(row)

    async def list(self, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        """Deposits with their order summary, newest first."""
        statuses = status_filter(status)
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT d.*, t.item_name, t.buyer_name, t.buyer_phone,
                       t.status AS transaction_status
                FROM escrow_deposits d
                JOIN transactions t ON t.id = d.transaction_id
                WHERE ($1::text[] IS NULL OR d.status = ANY($1::text[]))
                ORDER BY d.created_at DESC
                LIMIT $2 OFFSET $3
                ''',
                statuses,
                limit,
                offset
            )
        return [dict(row) for row in rows]

    async def list_due(self, now: datetime, limit: int = 100) -> List[Dict[str, Any]]:
        """Confirmed deposits past their release date whose order has shipped."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT d.*
                FROM escrow_deposits d
                JOIN transactions t ON t.id = d.transaction_id
                WHERE d.status = 'confirmed'
                  AND d.auto_release_at <= $1
                  AND t.status IN ('shipped', 'delivered')
                ORDER BY d.auto_release_at ASC
                LIMIT $2
                ''',
                now,
                limit
            )
        return [dict(row) for row in rows]

    async def summary(self) -> Dict[str, Any]:
        """Platform totals for the admin dashboard."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                SELECT
                    COALESCE(SUM(platform_fee) FILTER (WHERE status = 'released'), 0) AS fees_earned,
                    COALESCE(SUM(amount) FILTER (WHERE status IN ('pending', 'confirmed')), 0) AS held_amount,
                    COUNT(*) FILTER (WHERE status = 'pending') AS pending_review,
                    COUNT(*) FILTER (WHERE status = 'confirmed') AS confirmed,
                    COUNT(*) FILTER (WHERE status = 'released') AS released,
                    COUNT(*) FILTER (WHERE status = 'refunded') AS refunded
                FROM escrow_deposits
                '''
            )
            wallets = await conn.fetchrow(
                '''
                SELECT COALESCE(SUM(pending_balance), 0) AS pending_seller_balances,
                       COALESCE(SUM(available_balance), 0) AS available_seller_balances
                FROM wallets
                '''
            )
            withdrawals = await conn.fetchval(
                '''
                SELECT COALESCE(SUM(amount), 0) FROM wallet_transactions
                WHERE type = 'withdrawal' AND status = 'pending'
                '''
            )
        result = dict(row)
        result.update(dict(wallets))
        result['pending_withdrawals'] = withdrawals
        return result

    async def _raise_for(self, conn, transaction_id: str, target: DepositStatus) -> None:
        current = await conn.fetchval(
            'SELECT status FROM escrow_deposits WHERE transaction_id = $1',
            transaction_id
        )
        if current is None:
            raise NotFoundError(f"No escrow deposit for transaction {transaction_id}")
        raise InvalidStatusError(f"Escrow for {transaction_id} is {current}, cannot become {target}")
