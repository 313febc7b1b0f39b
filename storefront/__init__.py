"""Storefront module.

Public store and product pages, checkout (which opens a pending transaction)
and the product review / question threads.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from asyncpg.exceptions import UniqueViolationError

from database import get_pool
from errors import DuplicateError, ForbiddenError, NotFoundError, ValidationError
from escrow import compute_split
from ledger import TransactionLedger

logger = logging.getLogger(__name__)

# Orders in these states may be reviewed
REVIEWABLE_STATUSES = ('completed', 'delivered')

MIN_REVIEW_LENGTH = 10
MIN_QUESTION_LENGTH = 10
MAX_QUESTION_LENGTH = 500

class StorefrontManager:
    """Stores, products, checkout, reviews and questions."""

    def __init__(
        self,
        pool=None,
        ledger: Optional[TransactionLedger] = None,
        fee_percent: Decimal = Decimal('5'),
        fee_minimum: Decimal = Decimal('0')
    ) -> None:
        """Initialize storefront manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
            ledger: Ledger used to open checkout transactions
            fee_percent: Platform fee percentage quoted at checkout
            fee_minimum: Minimum platform fee quoted at checkout
        """
        self.pool = pool
        self.ledger = ledger or TransactionLedger(pool)
        self.fee_percent = fee_percent
        self.fee_minimum = fee_minimum

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def list_stores(self, search: Optional[str] = None, limit: int = 20, offset: int = 0) -> Dict[str, Any]:
        """Active stores, newest first."""
        await self.ensure_pool()
        pattern = f"%{search.strip()}%" if search else None
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT id, name, slug, description, logo_url, banner_url, created_at
                FROM stores
                WHERE status = 'active' AND ($1::text IS NULL OR name ILIKE $1)
                ORDER BY created_at DESC
                LIMIT $2 OFFSET $3
                ''',
                pattern,
                limit,
                offset
            )
            total = await conn.fetchval(
                "SELECT count(*) FROM stores WHERE status = 'active' AND ($1::text IS NULL OR name ILIKE $1)",
                pattern
            )
        return {'stores': [dict(row) for row in rows], 'total': total, 'limit': limit, 'offset': offset}

    async def get_store(self, slug: str) -> Dict[str, Any]:
        """Active store with its published products.

        Raises:
            NotFoundError: No active store with that slug
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            store = await conn.fetchrow(
                "SELECT * FROM stores WHERE slug = $1 AND status = 'active'",
                slug
            )
            if not store:
                raise NotFoundError("Store not found")

            products = await conn.fetch(
                '''
                SELECT * FROM products
                WHERE store_id = $1 AND status = 'published'
                ORDER BY created_at DESC
                ''',
                store['id']
            )
        result = dict(store)
        result['products'] = [dict(row) for row in products]
        return result

    async def get_product(self, slug: str, product_id: str) -> Dict[str, Any]:
        """Published product of an active store.

        Raises:
            NotFoundError: Unknown store or product
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                SELECT p.*, s.name AS store_name, s.slug AS store_slug, s.seller_id
                FROM products p
                JOIN stores s ON s.id = p.store_id
                WHERE s.slug = $1 AND s.status = 'active'
                  AND p.id = $2 AND p.status = 'published'
                ''',
                slug,
                product_id
            )
        if not row:
            raise NotFoundError("Product not found")
        return dict(row)

    async def checkout(
        self,
        slug: str,
        product_id: str,
        buyer_name: str,
        buyer_phone: str,
        buyer_email: Optional[str] = None,
        delivery_address: Optional[str] = None,
        buyer_id: Optional[str] = None,
        quantity: int = 1
    ) -> Dict[str, Any]:
        """Open a pending transaction for a product.

        Returns:
            Dict containing the transaction and the fee quote

        Raises:
            ValidationError: Missing buyer details, bad quantity or unpriced product
            NotFoundError: Unknown store or product
        """
        if not (buyer_name or '').strip() or not (buyer_phone or '').strip():
            raise ValidationError("Buyer name and phone required")
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        product = await self.get_product(slug, product_id)
        if not product['price']:
            raise ValidationError("Product price not set")
        if buyer_id and buyer_id == product['seller_id']:
            raise ForbiddenError("Sellers cannot buy from their own store")

        amount = Decimal(str(product['price'])) * quantity
        txn = await self.ledger.create(
            seller_id=product['seller_id'],
            amount=amount,
            item_name=product['name'],
            currency=product['currency'],
            buyer_id=buyer_id,
            buyer_name=buyer_name.strip(),
            buyer_phone=buyer_phone.strip(),
            buyer_email=buyer_email,
            buyer_address=delivery_address,
            product_id=product['id'],
            item_description=product['description'],
            item_images=product['images'],
            quantity=quantity
        )

        fee, payout = compute_split(amount, self.fee_percent, self.fee_minimum)
        logger.info(f"Checkout {txn['id']} opened for product {product_id}")
        return {
            'transaction': txn,
            'quote': {'amount': amount, 'platform_fee': fee, 'seller_payout': payout}
        }

    async def list_reviews(self, product_id: str, sort: str = 'recent', limit: int = 10, offset: int = 0) -> Dict[str, Any]:
        """Published reviews of a product."""
        order = 'helpful_count DESC, created_at DESC' if sort == 'helpful' else 'created_at DESC'
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f'''
                SELECT id, rating, title, content, customer_name, is_verified_purchase,
                       helpful_count, created_at
                FROM product_reviews
                WHERE product_id = $1 AND status = 'published'
                ORDER BY {order}
                LIMIT $2 OFFSET $3
                ''',
                product_id,
                limit,
                offset
            )
            total = await conn.fetchval(
                "SELECT count(*) FROM product_reviews WHERE product_id = $1 AND status = 'published'",
                product_id
            )
        return {'reviews': [dict(row) for row in rows], 'total': total, 'limit': limit, 'offset': offset}

    async def review_summary(self, product_id: str) -> Dict[str, Any]:
        """Average rating and 1-5 star distribution."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT rating, count(*) AS total
                FROM product_reviews
                WHERE product_id = $1 AND status = 'published'
                GROUP BY rating
                ''',
                product_id
            )
        return summarize_ratings({row['rating']: row['total'] for row in rows})

    async def add_review(
        self,
        user: Dict[str, Any],
        slug: str,
        product_id: str,
        order_id: str,
        rating: int,
        content: str,
        title: Optional[str] = None
    ) -> Dict[str, Any]:
        """Verified-purchase review.

        Raises:
            ValidationError: Rating outside 1-5 or content too short
            NotFoundError: Unknown product or order
            ForbiddenError: Order is not the caller's or is for another product
            DuplicateError: Order already reviewed
        """
        if not 1 <= int(rating) <= 5:
            raise ValidationError("Rating must be between 1 and 5")
        content = (content or '').strip()
        if len(content) < MIN_REVIEW_LENGTH:
            raise ValidationError(f"Review must be at least {MIN_REVIEW_LENGTH} characters")

        product = await self.get_product(slug, product_id)
        order = await self.ledger.get(order_id)
        if not order:
            raise NotFoundError("Order not found")
        if order['buyer_id'] != user['id']:
            raise ForbiddenError("You can only review your own orders")
        if str(order['product_id']) != str(product['id']):
            raise ForbiddenError("Order is for a different product")
        if order['status'] not in REVIEWABLE_STATUSES:
            raise ValidationError("Only completed or delivered orders can be reviewed")

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    '''
                    INSERT INTO product_reviews (
                        product_id, store_id, order_id, customer_id, customer_name,
                        rating, title, content
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    RETURNING *
                    ''',
                    product['id'],
                    product['store_id'],
                    order_id,
                    user['id'],
                    order['buyer_name'],
                    int(rating),
                    title,
                    content
                )
        except UniqueViolationError:
            raise DuplicateError("You have already reviewed this order")

        logger.info(f"Review {row['id']} added for product {product_id}")
        return dict(row)

    async def mark_review_helpful(self, review_id: str) -> int:
        """Count a helpful vote; returns the new total."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            count = await conn.fetchval(
                '''
                UPDATE product_reviews SET helpful_count = helpful_count + 1
                WHERE id = $1 AND status = 'published'
                RETURNING helpful_count
                ''',
                review_id
            )
        if count is None:
            raise NotFoundError("Review not found")
        return count

    async def list_questions(self, product_id: str, limit: int = 20, offset: int = 0) -> List[Dict[str, Any]]:
        """Questions about a product, newest first."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT id, question, answer, is_answered, customer_name, answered_at, created_at
                FROM review_questions
                WHERE product_id = $1
                ORDER BY created_at DESC
                LIMIT $2 OFFSET $3
                ''',
                product_id,
                limit,
                offset
            )
        return [dict(row) for row in rows]

    async def ask_question(self, user: Dict[str, Any], slug: str, product_id: str, question: str) -> Dict[str, Any]:
        """Post a question on a product.

        Raises:
            ValidationError: Question shorter than 10 or longer than 500 characters
        """
        question = (question or '').strip()
        if not MIN_QUESTION_LENGTH <= len(question) <= MAX_QUESTION_LENGTH:
            raise ValidationError(
                f"Question must be {MIN_QUESTION_LENGTH}-{MAX_QUESTION_LENGTH} characters"
            )

        product = await self.get_product(slug, product_id)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                INSERT INTO review_questions (product_id, store_id, customer_id, customer_name, question)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING *
                ''',
                product['id'],
                product['store_id'],
                user['id'],
                user.get('email'),
                question
            )
        return dict(row)

    async def answer_question(self, seller_id: str, question_id: str, answer: str) -> Dict[str, Any]:
        """Seller answers a question about one of their products.

        Raises:
            NotFoundError: Unknown question or not the caller's product
        """
        answer = (answer or '').strip()
        if not answer:
            raise ValidationError("Answer is required")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                UPDATE review_questions q
                SET answer = $3, answered_by = $2, answered_at = now(), is_answered = true
                FROM stores s
                WHERE q.id = $1 AND s.id = q.store_id AND s.seller_id = $2
                RETURNING q.*
                ''',
                question_id,
                seller_id,
                answer
            )
        if not row:
            raise NotFoundError("Question not found")
        return dict(row)

def summarize_ratings(counts: Dict[int, int]) -> Dict[str, Any]:
    """Build the review summary from a rating -> count mapping."""
    distribution = {str(star): int(counts.get(star, 0)) for star in range(5, 0, -1)}
    total = sum(distribution.values())
    average = (
        Decimal(sum(star * counts.get(star, 0) for star in range(1, 6))) / total
        if total else Decimal('0')
    )
    return {
        'total_reviews': total,
        'average_rating': average.quantize(Decimal('0.1')),
        'rating_distribution': distribution
    }

__all__ = ['StorefrontManager', 'summarize_ratings', 'REVIEWABLE_STATUSES']
