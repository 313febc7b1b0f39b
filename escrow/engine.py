"""Escrow engine.

Moves money between the buyer's payment, the escrow deposit and the seller's
wallet. Each operation runs in one serializable database transaction so that
the transaction status, the deposit and the wallet can never disagree.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, Optional

import backoff
from asyncpg.exceptions import PostgresError, SerializationError, DeadlockDetectedError

from database import get_pool
from database.exceptions import DatabaseError
from errors import (
    AmountMismatchError,
    DuplicateError,
    ForbiddenError,
    InvalidStatusError,
    MarketplaceError,
    NotFoundError
)
from ledger import TransactionLedger, TransactionStatus, normalize_status
from wallets import WalletStore, Bucket
from .deposits import EscrowDeposits, DepositStatus, HELD
from .split import compute_split

logger = logging.getLogger(__name__)

DEFAULT_AUTO_RELEASE_DAYS = 7

# Conflicts between concurrent serializable transactions are retried
RETRYABLE = (SerializationError, DeadlockDetectedError)

retry_on_conflict = backoff.on_exception(backoff.expo, RETRYABLE, max_tries=5, max_time=10)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class EscrowEngine:
    """Capture, approve, reject, release and refund escrowed payments."""

    def __init__(
        self,
        pool=None,
        ledger: Optional[TransactionLedger] = None,
        deposits: Optional[EscrowDeposits] = None,
        wallets: Optional[WalletStore] = None,
        fee_percent: Decimal = Decimal('5'),
        fee_minimum: Decimal = Decimal('0'),
        auto_release_days: int = DEFAULT_AUTO_RELEASE_DAYS
    ) -> None:
        """Initialize escrow engine.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
            ledger: Transaction ledger sharing the pool
            deposits: Escrow deposit store sharing the pool
            wallets: Wallet store sharing the pool
            fee_percent: Platform fee percentage
            fee_minimum: Minimum platform fee
            auto_release_days: Days after approval before funds release on their own
        """
        self.pool = pool
        self.ledger = ledger or TransactionLedger(pool)
        self.deposits = deposits or EscrowDeposits(pool)
        self.wallets = wallets or WalletStore(pool)
        self.fee_percent = Decimal(str(fee_percent))
        self.fee_minimum = Decimal(str(fee_minimum))
        self.auto_release_days = auto_release_days

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    @asynccontextmanager
    async def _serializable(self) -> AsyncIterator[Any]:
        """Connection inside a serializable transaction.

        Conflicts propagate unchanged for the retry decorator; any other
        asyncpg error becomes a DatabaseError.
        """
        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction(isolation='serializable'):
                    yield conn
        except RETRYABLE:
            raise
        except PostgresError as e:
            logger.error(f"Escrow database error: {e}")
            raise DatabaseError(f"Escrow operation failed: {e}")

    @retry_on_conflict
    async def capture_payment(
        self,
        transaction_id: str,
        reference: str,
        paid_amount: Decimal,
        payment_method: str = 'PAYSTACK',
        payer_name: Optional[str] = None,
        payer_phone: Optional[str] = None
    ) -> Dict[str, Any]:
        """Record a verified payment and hold the money in escrow.

        Moves the transaction pending -> processing, writes the fee split,
        creates the deposit and credits the payout to the seller's pending
        balance. A repeat for the same reference changes nothing.

        Args:
            transaction_id: Transaction being paid
            reference: Gateway payment reference
            paid_amount: Amount the gateway says was paid, major units
            payment_method: Payment channel label
            payer_name: Name the payer gave
            payer_phone: Phone the payer gave

        Returns:
            Dict containing:
                - status: 'captured' or 'already_processed'
                - transaction: The transaction row
                - deposit: The escrow deposit row

        Raises:
            NotFoundError: Unknown transaction
            InvalidStatusError: Transaction is not pending
            AmountMismatchError: Paid amount is below the amount due
            DuplicateError: The reference paid another transaction or a top-up
            DatabaseError: Storage failure other than a retried conflict
        """
        paid_amount = Decimal(str(paid_amount))

        async with self._serializable() as conn:
            txn = await self.ledger.get(transaction_id, conn, for_update=True)
            if not txn:
                raise NotFoundError(f"Transaction {transaction_id} not found")

            status = normalize_status(txn['status'])
            if status != TransactionStatus.PENDING:
                deposit = await self.deposits.get_by_transaction(transaction_id, conn)
                if deposit and deposit['payment_reference'] == reference:
                    logger.info(f"Payment {reference} for {transaction_id} already captured")
                    return {'status': 'already_processed', 'transaction': txn, 'deposit': deposit}
                raise InvalidStatusError(f"Transaction {transaction_id} is {status}, not pending")

            # One gateway reference pays for one thing
            holder = await self.ledger.find_by_reference(reference, conn)
            if holder and holder['id'] != transaction_id:
                logger.warning(f"Payment {reference} already belongs to {holder['id']}, not {transaction_id}")
                raise DuplicateError(f"Payment {reference} belongs to another transaction")
            if await self.wallets.find_entry(reference, conn):
                logger.warning(f"Payment {reference} was already credited as a wallet top-up")
                raise DuplicateError(f"Payment {reference} was already credited to a wallet")

            amount = Decimal(str(txn['amount']))
            if paid_amount < amount:
                logger.warning(
                    f"Payment {reference} for {transaction_id} is short: "
                    f"paid {paid_amount}, due {amount}"
                )
                raise AmountMismatchError(f"Amount paid ({paid_amount}) is less than amount due ({amount})")

            fee, payout = compute_split(amount, self.fee_percent, self.fee_minimum)

            txn = await self.ledger.transition(
                transaction_id,
                TransactionStatus.PROCESSING,
                conn,
                payment_reference=reference,
                payment_method=payment_method,
                platform_fee=fee,
                seller_payout=payout,
                paid_at=utcnow()
            )
            deposit = await self.deposits.create(
                transaction_id,
                txn['seller_id'],
                amount,
                fee,
                payout,
                txn['currency'],
                payment_method,
                reference,
                payer_name=payer_name or txn.get('buyer_name'),
                payer_phone=payer_phone or txn.get('buyer_phone'),
                conn=conn
            )
            if payout > 0:
                await self.wallets.credit(txn['seller_id'], payout, Bucket.PENDING, conn)

        logger.info(
            f"Captured {amount} for {transaction_id}: fee {fee}, "
            f"payout {payout} pending for seller {txn['seller_id']}"
        )
        return {'status': 'captured', 'transaction': txn, 'deposit': deposit}

    @retry_on_conflict
    async def approve(self, transaction_id: str, admin_id: str, notes: Optional[str] = None) -> Dict[str, Any]:
        """Admin confirms a captured payment; starts the auto-release clock.

        Raises:
            NotFoundError: Unknown transaction or no deposit
            InvalidStatusError: Transaction is not awaiting review
        """
        auto_release_at = utcnow() + timedelta(days=self.auto_release_days)

        async with self._serializable() as conn:
            txn = await self.ledger.transition(transaction_id, TransactionStatus.PAID, conn)
            deposit = await self.deposits.confirm(
                transaction_id,
                admin_id,
                auto_release_at,
                notes=notes,
                conn=conn
            )

        logger.info(f"Payment for {transaction_id} approved by {admin_id}")
        return {'transaction': txn, 'deposit': deposit}

    @retry_on_conflict
    async def reject(self, transaction_id: str, admin_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """Admin rejects a captured payment; the pending credit is reversed.

        Raises:
            NotFoundError: Unknown transaction or no deposit
            InvalidStatusError: Deposit is no longer pending review
        """
        async with self._serializable() as conn:
            deposit = await self.deposits.settle(
                transaction_id,
                DepositStatus.REJECTED,
                admin_id,
                notes=reason,
                conn=conn
            )
            txn = await self.ledger.transition(
                transaction_id,
                TransactionStatus.CANCELLED,
                conn,
                cancellation_reason=reason
            )
            payout = Decimal(str(deposit['seller_payout']))
            if payout > 0:
                await self.wallets.debit(deposit['seller_id'], payout, Bucket.PENDING, conn)

        logger.warning(f"Payment for {transaction_id} rejected by {admin_id}: {reason}")
        return {'transaction': txn, 'deposit': deposit}

    @retry_on_conflict
    async def release(self, transaction_id: str, released_by: str) -> Dict[str, Any]:
        """Pay the seller: transaction completed, payout moves pending -> available.

        Raises:
            NotFoundError: Unknown transaction or no deposit
            InvalidStatusError: Funds are not held or the transaction cannot complete
        """
        async with self._serializable() as conn:
            deposit = await self._held_deposit(transaction_id, conn)
            txn = await self.ledger.transition(transaction_id, TransactionStatus.COMPLETED, conn)
            deposit = await self.deposits.settle(
                transaction_id,
                DepositStatus.RELEASED,
                released_by,
                conn=conn
            )
            payout = Decimal(str(deposit['seller_payout']))
            if payout > 0:
                await self.wallets.release_pending(deposit['seller_id'], payout, conn)

        logger.info(f"Released {payout} to seller {deposit['seller_id']} for {transaction_id} ({released_by})")
        return {'transaction': txn, 'deposit': deposit}

    @retry_on_conflict
    async def refund(self, transaction_id: str, refunded_by: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """Return the money to the buyer: the seller's pending payout is removed.

        Raises:
            NotFoundError: Unknown transaction or no deposit
            InvalidStatusError: Funds are not held or the transaction cannot be refunded
        """
        async with self._serializable() as conn:
            await self._held_deposit(transaction_id, conn)
            txn = await self.ledger.transition(
                transaction_id,
                TransactionStatus.REFUNDED,
                conn,
                cancellation_reason=reason
            )
            deposit = await self.deposits.settle(
                transaction_id,
                DepositStatus.REFUNDED,
                refunded_by,
                notes=reason,
                conn=conn
            )
            payout = Decimal(str(deposit['seller_payout']))
            if payout > 0:
                await self.wallets.debit(deposit['seller_id'], payout, Bucket.PENDING, conn)

        logger.info(f"Refunded {deposit['amount']} for {transaction_id} ({refunded_by})")
        return {'transaction': txn, 'deposit': deposit}

    async def mark_shipped(self, transaction_id: str, seller_id: str) -> Dict[str, Any]:
        """Seller marks an approved order as shipped."""
        await self._require_party(transaction_id, seller_id=seller_id)
        return await self.ledger.transition(transaction_id, TransactionStatus.SHIPPED)

    async def mark_delivered(self, transaction_id: str, seller_id: str) -> Dict[str, Any]:
        """Seller marks an order as delivered."""
        await self._require_party(transaction_id, seller_id=seller_id)
        return await self.ledger.transition(transaction_id, TransactionStatus.DELIVERED)

    async def confirm_delivery(self, transaction_id: str, buyer_id: str) -> Dict[str, Any]:
        """Buyer confirms receipt, which releases the escrow to the seller.

        Raises:
            ForbiddenError: Caller is not the buyer
            InvalidStatusError: Order has not shipped yet
        """
        txn = await self._require_party(transaction_id, buyer_id=buyer_id)
        status = normalize_status(txn['status'])
        if status not in (TransactionStatus.SHIPPED, TransactionStatus.DELIVERED):
            raise InvalidStatusError(f"Order must be shipped or delivered to confirm, it is {status}")
        return await self.release(transaction_id, 'buyer_confirmation')

    async def auto_release_due(self, now: Optional[datetime] = None) -> int:
        """Release every confirmed deposit whose release date has passed.

        Failures are logged per deposit and do not stop the sweep.

        Returns:
            Number of deposits released
        """
        due = await self.deposits.list_due(now or utcnow())
        released = 0
        for deposit in due:
            try:
                await self.release(deposit['transaction_id'], 'auto_release')
                released += 1
            except (MarketplaceError, DatabaseError, PostgresError) as e:
                logger.error(f"Auto-release of {deposit['transaction_id']} failed: {e}")
        if due:
            logger.info(f"Auto-released {released} of {len(due)} due escrow deposits")
        return released

    async def escrow_status(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        """The deposit for a transaction, if any."""
        return await self.deposits.get_by_transaction(transaction_id)

    async def _held_deposit(self, transaction_id: str, conn) -> Dict[str, Any]:
        deposit = await self.deposits.get_by_transaction(transaction_id, conn, for_update=True)
        if not deposit:
            raise NotFoundError(f"No escrow deposit for transaction {transaction_id}")
        if DepositStatus(deposit['status']) not in HELD:
            raise InvalidStatusError(f"Escrow for {transaction_id} is already {deposit['status']}")
        return deposit

    async def _require_party(
        self,
        transaction_id: str,
        seller_id: Optional[str] = None,
        buyer_id: Optional[str] = None
    ) -> Dict[str, Any]:
        txn = await self.ledger.get(transaction_id)
        if not txn:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if seller_id is not None and txn['seller_id'] != seller_id:
            raise ForbiddenError("Only the seller can update this order")
        if buyer_id is not None and txn['buyer_id'] != buyer_id:
            raise ForbiddenError("Only the buyer can confirm this order")
        return txn
