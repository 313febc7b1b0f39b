"""Saved payout destinations (M-Pesa numbers, paybills, bank accounts)."""
import logging
from typing import Any, Dict, List, Optional

from database import get_pool
from errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

METHOD_TYPES = ('paybill', 'till', 'mobile_money', 'bank_account')

class PaymentMethodManager:
    """Manages a user's payout methods."""

    def __init__(self, pool=None) -> None:
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def list(self, user_id: str) -> List[Dict[str, Any]]:
        """Methods for a user, default first."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM payment_methods
                WHERE user_id = $1
                ORDER BY is_default DESC, created_at ASC
                ''',
                user_id
            )
        return [dict(row) for row in rows]

    async def add(
        self,
        user_id: str,
        method_type: str,
        provider: str,
        account_number: str,
        account_name: Optional[str] = None,
        bank_code: Optional[str] = None,
        country: str = 'KE'
    ) -> Dict[str, Any]:
        """Save a payout method. A user's first method becomes the default.

        Raises:
            ValidationError: For an unknown type or missing account number
        """
        if method_type not in METHOD_TYPES:
            raise ValidationError(f"method_type must be one of {', '.join(METHOD_TYPES)}")
        if not account_number or not provider:
            raise ValidationError("provider and account_number are required")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                has_default = await conn.fetchval(
                    'SELECT EXISTS(SELECT 1 FROM payment_methods WHERE user_id = $1 AND is_default)',
                    user_id
                )
                row = await conn.fetchrow(
                    '''
                    INSERT INTO payment_methods (
                        user_id, method_type, provider, account_number,
                        account_name, bank_code, country, is_default
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    RETURNING *
                    ''',
                    user_id,
                    method_type,
                    provider.upper(),
                    account_number,
                    account_name,
                    bank_code,
                    country,
                    not has_default
                )

        logger.info(f"Added {method_type} payout method for {user_id}")
        return dict(row)

    async def set_default(self, user_id: str, method_id: str) -> Dict[str, Any]:
        """Make one method the default and unset the others."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                exists = await conn.fetchval(
                    'SELECT EXISTS(SELECT 1 FROM payment_methods WHERE id = $1 AND user_id = $2)',
                    method_id,
                    user_id
                )
                if not exists:
                    raise NotFoundError("Payment method not found")

                await conn.execute(
                    'UPDATE payment_methods SET is_default = false WHERE user_id = $1 AND is_default',
                    user_id
                )
                row = await conn.fetchrow(
                    'UPDATE payment_methods SET is_default = true WHERE id = $1 RETURNING *',
                    method_id
                )
        return dict(row)

    async def delete(self, user_id: str, method_id: str) -> None:
        """Remove a method."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                'DELETE FROM payment_methods WHERE id = $1 AND user_id = $2',
                method_id,
                user_id
            )
        if result == 'DELETE 0':
            raise NotFoundError("Payment method not found")
