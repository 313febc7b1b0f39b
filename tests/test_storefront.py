"""Tests for storefront checkout rules and review summaries."""

from decimal import Decimal

import pytest

from errors import ForbiddenError, ValidationError
from storefront import StorefrontManager, summarize_ratings
from conftest import SELLER_ID, FakeLedger

PRODUCT = {
    'id': '7d3c1a52-0000-4000-8000-000000000001',
    'store_id': '7d3c1a52-0000-4000-8000-0000000000aa',
    'store_name': 'Basket House',
    'store_slug': 'basket-house',
    'seller_id': SELLER_ID,
    'name': 'Handmade basket',
    'description': 'Woven sisal basket',
    'images': ['https://cdn.example.com/basket.jpg'],
    'price': Decimal('1500.00'),
    'currency': 'KES',
}

class RecordingLedger(FakeLedger):
    """Ledger that keeps the arguments of create()."""

    def __init__(self):
        super().__init__()
        self.created = []

    async def create(self, **fields):
        self.created.append(fields)
        return self.add(id='ORD-NEW', **{k: v for k, v in fields.items() if k in ('seller_id', 'amount', 'buyer_id')})

class CatalogStorefront(StorefrontManager):
    """Storefront whose catalogue is a single in-memory product."""

    def __init__(self, product, **kwargs):
        super().__init__(pool=object(), ledger=RecordingLedger(), **kwargs)
        self.product = product

    async def get_product(self, slug, product_id):
        return dict(self.product)

@pytest.mark.asyncio
async def test_checkout_opens_pending_transaction():
    storefront = CatalogStorefront(PRODUCT)

    result = await storefront.checkout(
        'basket-house',
        PRODUCT['id'],
        ' Jane Buyer ',
        '+254700000000',
        buyer_email='jane@example.com',
        delivery_address='Nairobi',
        buyer_id='buyer-0001',
        quantity=2
    )

    created = storefront.ledger.created[0]
    assert created['amount'] == Decimal('3000.00')
    assert created['seller_id'] == SELLER_ID
    assert created['buyer_name'] == 'Jane Buyer'
    assert created['quantity'] == 2
    assert result['transaction']['status'] == 'pending'
    assert result['quote'] == {
        'amount': Decimal('3000.00'),
        'platform_fee': Decimal('150.00'),
        'seller_payout': Decimal('2850.00')
    }

@pytest.mark.asyncio
@pytest.mark.parametrize("name,phone", [('', '+254700000000'), ('Jane', ''), ('  ', '  ')])
async def test_checkout_needs_name_and_phone(name, phone):
    storefront = CatalogStorefront(PRODUCT)
    with pytest.raises(ValidationError):
        await storefront.checkout('basket-house', PRODUCT['id'], name, phone)
    assert storefront.ledger.created == []

@pytest.mark.asyncio
async def test_checkout_quantity_positive():
    storefront = CatalogStorefront(PRODUCT)
    with pytest.raises(ValidationError):
        await storefront.checkout('basket-house', PRODUCT['id'], 'Jane', '0700', quantity=0)

@pytest.mark.asyncio
async def test_checkout_unpriced_product():
    storefront = CatalogStorefront(dict(PRODUCT, price=None))
    with pytest.raises(ValidationError):
        await storefront.checkout('basket-house', PRODUCT['id'], 'Jane', '0700')

@pytest.mark.asyncio
async def test_seller_cannot_buy_own_product():
    storefront = CatalogStorefront(PRODUCT)
    with pytest.raises(ForbiddenError):
        await storefront.checkout('basket-house', PRODUCT['id'], 'Sam Seller', '0711', buyer_id=SELLER_ID)

@pytest.mark.asyncio
async def test_review_rating_range():
    storefront = CatalogStorefront(PRODUCT)
    user = {'id': 'buyer-0001'}
    with pytest.raises(ValidationError):
        await storefront.add_review(user, 'basket-house', PRODUCT['id'], 'ORD-1', 6, 'Lovely basket, well made')
    with pytest.raises(ValidationError):
        await storefront.add_review(user, 'basket-house', PRODUCT['id'], 'ORD-1', 5, 'Nice')

@pytest.mark.asyncio
async def test_review_needs_delivered_own_order():
    storefront = CatalogStorefront(PRODUCT)
    storefront.ledger.add(id='ORD-1', buyer_id='buyer-0001', product_id=PRODUCT['id'], status='shipped')
    user = {'id': 'buyer-0001'}

    with pytest.raises(ValidationError):
        await storefront.add_review(user, 'basket-house', PRODUCT['id'], 'ORD-1', 5, 'Lovely basket, well made')
    with pytest.raises(ForbiddenError):
        await storefront.add_review({'id': 'other'}, 'basket-house', PRODUCT['id'], 'ORD-1', 5, 'Lovely basket, well made')

@pytest.mark.asyncio
@pytest.mark.parametrize("question", ['short', 'x' * 501])
async def test_question_length(question):
    storefront = CatalogStorefront(PRODUCT)
    with pytest.raises(ValidationError):
        await storefront.ask_question({'id': 'buyer-0001'}, 'basket-house', PRODUCT['id'], question)

def test_summarize_ratings():
    summary = summarize_ratings({5: 3, 4: 1, 1: 1})
    assert summary['total_reviews'] == 5
    assert summary['average_rating'] == Decimal('4.0')
    assert summary['rating_distribution'] == {'5': 3, '4': 1, '3': 0, '2': 0, '1': 1}
    assert list(summary['rating_distribution']) == ['5', '4', '3', '2', '1']

def test_summarize_ratings_rounds():
    assert summarize_ratings({5: 2, 4: 1})['average_rating'] == Decimal('4.7')

def test_summarize_no_reviews():
    summary = summarize_ratings({})
    assert summary['total_reviews'] == 0
    assert summary['average_rating'] == Decimal('0.0')
