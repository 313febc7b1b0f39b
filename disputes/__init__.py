"""Disputes module.

A buyer or seller can open one dispute per transaction. Opening it freezes
the order in the ``disputed`` state; an admin resolves it by releasing the
escrow to the seller or refunding the buyer.
"""
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from asyncpg.exceptions import UniqueViolationError

from database import get_pool
from errors import (
    DisputeExistsError,
    ForbiddenError,
    InvalidStatusError,
    NotFoundError,
    ValidationError
)
from escrow import EscrowEngine
from ledger import TransactionLedger, TransactionStatus

logger = logging.getLogger(__name__)

MIN_DESCRIPTION_LENGTH = 20
MAX_MESSAGE_LENGTH = 2000

class DisputeStatus(str, Enum):
    OPEN = 'open'
    UNDER_REVIEW = 'under_review'
    RESOLVED = 'resolved'
    CLOSED = 'closed'

ACTIVE = (DisputeStatus.OPEN.value, DisputeStatus.UNDER_REVIEW.value)

class Outcome(str, Enum):
    RELEASE = 'release'
    REFUND = 'refund'

class DisputeManager:
    """Manages disputes and their message threads."""

    def __init__(self, pool=None, engine: Optional[EscrowEngine] = None) -> None:
        """Initialize dispute manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
            engine: Escrow engine used to settle resolved disputes
        """
        self.pool = pool
        self.engine = engine or EscrowEngine(pool)
        self.ledger: TransactionLedger = self.engine.ledger

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def open_dispute(
        self,
        user_id: str,
        transaction_id: str,
        reason: str,
        description: str
    ) -> Dict[str, Any]:
        """Open a dispute on a transaction.

        Args:
            user_id: Buyer or seller opening the dispute
            transaction_id: Disputed transaction
            reason: Short reason code or title
            description: What went wrong, at least 20 characters

        Returns:
            The new dispute

        Raises:
            ValidationError: Missing reason or too short a description
            NotFoundError: Unknown transaction
            ForbiddenError: Caller is not a party to the transaction
            DisputeExistsError: Transaction already has a dispute
            InvalidStatusError: Transaction cannot be disputed in its state
        """
        reason = (reason or '').strip()
        description = (description or '').strip()
        if not transaction_id or not reason or not description:
            raise ValidationError("transactionId, reason and description are required")
        if len(description) < MIN_DESCRIPTION_LENGTH:
            raise ValidationError(f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters")

        txn = await self.ledger.get(transaction_id)
        if not txn:
            raise NotFoundError("Transaction not found")
        if user_id not in (txn['buyer_id'], txn['seller_id']):
            raise ForbiddenError("Only the buyer or seller can open a dispute")

        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    existing = await conn.fetchval(
                        'SELECT id FROM disputes WHERE transaction_id = $1',
                        transaction_id
                    )
                    if existing:
                        raise DisputeExistsError("A dispute already exists for this transaction")

                    dispute = await conn.fetchrow(
                        '''
                        INSERT INTO disputes (transaction_id, opened_by, reason, description, status)
                        VALUES ($1, $2, $3, $4, 'open')
                        RETURNING *
                        ''',
                        transaction_id,
                        user_id,
                        reason,
                        description
                    )
                    await self.ledger.transition(transaction_id, TransactionStatus.DISPUTED, conn)
                    await conn.execute(
                        '''
                        INSERT INTO dispute_messages (dispute_id, sender_id, message, is_admin)
                        VALUES ($1, $2, $3, false)
                        ''',
                        dispute['id'],
                        user_id,
                        description
                    )
        except UniqueViolationError:
            raise DisputeExistsError("A dispute already exists for this transaction")

        logger.info(f"Dispute {dispute['id']} opened on {transaction_id} by {user_id}")
        return dict(dispute)

    async def get(self, dispute_id: str) -> Optional[Dict[str, Any]]:
        """Dispute with the parties of its transaction."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                SELECT d.*, t.buyer_id, t.seller_id, t.item_name, t.amount,
                       t.currency, t.status AS transaction_status
                FROM disputes d
                JOIN transactions t ON t.id = d.transaction_id
                WHERE d.id = $1
                ''',
                dispute_id
            )
        return dict(row) if row else None

    async def get_for_user(self, dispute_id: str, user_id: str, is_admin: bool = False) -> Dict[str, Any]:
        """Dispute visible to a party or an admin.

        Raises:
            NotFoundError: Unknown dispute
            ForbiddenError: Caller is neither a party nor an admin
        """
        dispute = await self.get(dispute_id)
        if not dispute:
            raise NotFoundError("Dispute not found")
        if not is_admin and user_id not in (dispute['buyer_id'], dispute['seller_id']):
            raise ForbiddenError("Not a participant in this dispute")
        return dispute

    async def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        """Disputes on transactions where the user is buyer or seller."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT d.*, t.item_name, t.amount, t.currency
                FROM disputes d
                JOIN transactions t ON t.id = d.transaction_id
                WHERE t.buyer_id = $1 OR t.seller_id = $1
                ORDER BY d.created_at DESC
                ''',
                user_id
            )
        return [dict(row) for row in rows]

    async def list_all(self, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        """All disputes for admin review."""
        if status:
            try:
                status = DisputeStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown dispute status: {status}")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT d.*, t.item_name, t.amount, t.currency, t.buyer_id, t.seller_id
                FROM disputes d
                JOIN transactions t ON t.id = d.transaction_id
                WHERE ($1::text IS NULL OR d.status = $1)
                ORDER BY d.created_at ASC
                LIMIT $2 OFFSET $3
                ''',
                status,
                limit,
                offset
            )
        return [dict(row) for row in rows]

    async def add_message(
        self,
        dispute_id: str,
        sender_id: str,
        message: str,
        is_admin: bool = False
    ) -> Dict[str, Any]:
        """Append a message to an active dispute thread.

        Raises:
            ValidationError: Empty or oversized message
            InvalidStatusError: Dispute is resolved or closed
        """
        message = (message or '').strip()
        if not message:
            raise ValidationError("Message is required")
        if len(message) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters")

        dispute = await self.get_for_user(dispute_id, sender_id, is_admin)
        if dispute['status'] not in ACTIVE:
            raise InvalidStatusError(f"Dispute is {dispute['status']}")

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    '''
                    INSERT INTO dispute_messages (dispute_id, sender_id, message, is_admin)
                    VALUES ($1, $2, $3, $4)
                    RETURNING *
                    ''',
                    dispute['id'],
                    sender_id,
                    message,
                    is_admin
                )
                await conn.execute('UPDATE disputes SET updated_at = now() WHERE id = $1', dispute['id'])
        return dict(row)

    async def messages(self, dispute_id: str, user_id: str, is_admin: bool = False) -> List[Dict[str, Any]]:
        """Thread of a dispute, oldest first."""
        dispute = await self.get_for_user(dispute_id, user_id, is_admin)
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                'SELECT * FROM dispute_messages WHERE dispute_id = $1 ORDER BY created_at ASC',
                dispute['id']
            )
        return [dict(row) for row in rows]

    async def set_status(self, dispute_id: str, status: str) -> Dict[str, Any]:
        """Admin moves an active dispute between open and under_review."""
        if status not in ACTIVE:
            raise ValidationError(f"Status must be one of {', '.join(ACTIVE)}")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                UPDATE disputes SET status = $2, updated_at = now()
                WHERE id = $1 AND status = ANY($3::text[])
                RETURNING *
                ''',
                dispute_id,
                status,
                list(ACTIVE)
            )
        if not row:
            await self._raise_for(dispute_id)
        return dict(row)

    async def resolve(self, dispute_id: str, admin_id: str, outcome: str, resolution: str) -> Dict[str, Any]:
        """Settle the escrow and close the dispute.

        Args:
            dispute_id: Dispute to resolve
            admin_id: Resolving admin
            outcome: 'release' pays the seller, 'refund' returns the money
            resolution: Free-text explanation shown to both parties

        Raises:
            ValidationError: Unknown outcome or empty resolution
            InvalidStatusError: Dispute is no longer active
        """
        try:
            outcome = Outcome(outcome)
        except ValueError:
            raise ValidationError("Outcome must be 'release' or 'refund'")
        if not (resolution or '').strip():
            raise ValidationError("Resolution is required")

        dispute = await self.get(dispute_id)
        if not dispute:
            raise NotFoundError("Dispute not found")
        if dispute['status'] not in ACTIVE:
            raise InvalidStatusError(f"Dispute is already {dispute['status']}")

        settled_by = f"dispute:{admin_id}"
        if outcome == Outcome.RELEASE:
            await self.engine.release(dispute['transaction_id'], settled_by)
        else:
            await self.engine.refund(dispute['transaction_id'], settled_by, resolution)

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                UPDATE disputes
                SET status = 'resolved', outcome = $2, resolution = $3,
                    resolved_by = $4, resolved_at = now(), updated_at = now()
                WHERE id = $1 AND status = ANY($5::text[])
                RETURNING *
                ''',
                dispute['id'],
                outcome.value,
                resolution.strip(),
                admin_id,
                list(ACTIVE)
            )
        if not row:
            await self._raise_for(dispute_id)

        logger.info(f"Dispute {dispute_id} resolved by {admin_id}: {outcome.value}")
        return dict(row)

    async def _raise_for(self, dispute_id: str) -> None:
        dispute = await self.get(dispute_id)
        if not dispute:
            raise NotFoundError("Dispute not found")
        raise InvalidStatusError(f"Dispute is already {dispute['status']}")

__all__ = ['DisputeManager', 'DisputeStatus', 'Outcome', 'MIN_DESCRIPTION_LENGTH']
