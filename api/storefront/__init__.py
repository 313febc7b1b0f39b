"""Public storefront endpoints: stores, products, checkout, reviews and questions."""
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from auth import get_current_user, get_optional_user
from storefront import StorefrontManager
from ..deps import get_storefront, success

router = APIRouter(
    prefix="/storefront-api",
    tags=["Storefront"]
)

class CheckoutRequest(BaseModel):
    """Buyer details for a checkout."""
    buyer_name: str
    buyer_phone: str
    buyer_email: Optional[str] = None
    delivery_address: Optional[str] = None
    quantity: int = Field(1, ge=1)

class ReviewRequest(BaseModel):
    """Request model for a product review."""
    order_id: str
    rating: int
    content: str
    title: Optional[str] = None

class QuestionRequest(BaseModel):
    """Request model for a product question."""
    question: str

class AnswerRequest(BaseModel):
    """Request model for a seller's answer."""
    answer: str

@router.get("/stores")
async def list_stores(
    search: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    storefront: StorefrontManager = Depends(get_storefront)
):
    """List active stores."""
    return success(await storefront.list_stores(search, limit, offset))

@router.get("/store/{slug}")
async def get_store(slug: str, storefront: StorefrontManager = Depends(get_storefront)):
    """Store page with its published products."""
    return success(await storefront.get_store(slug))

@router.get("/product/{slug}/{product_id}")
async def get_product(
    slug: str,
    product_id: UUID,
    storefront: StorefrontManager = Depends(get_storefront)
):
    """Product page."""
    return success(await storefront.get_product(slug, str(product_id)))

@router.get("/product/{slug}/{product_id}/reviews")
async def list_reviews(
    slug: str,
    product_id: UUID,
    sort: str = Query('recent', pattern='^(recent|helpful)$'),
    limit: int = Query(10, ge=1, le=50),
    offset: int = Query(0, ge=0),
    storefront: StorefrontManager = Depends(get_storefront)
):
    """Published reviews of a product."""
    return success(await storefront.list_reviews(str(product_id), sort, limit, offset))

@router.get("/product/{slug}/{product_id}/reviews/summary")
async def review_summary(
    slug: str,
    product_id: UUID,
    storefront: StorefrontManager = Depends(get_storefront)
):
    """Rating average and distribution."""
    return success(await storefront.review_summary(str(product_id)))

@router.post("/product/{slug}/{product_id}/review")
async def add_review(
    slug: str,
    product_id: UUID,
    request: ReviewRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    storefront: StorefrontManager = Depends(get_storefront)
):
    """Review a product bought through the marketplace."""
    review = await storefront.add_review(
        user,
        slug,
        str(product_id),
        request.order_id,
        request.rating,
        request.content,
        request.title
    )
    return success(review)

@router.post("/reviews/{review_id}/helpful")
async def mark_review_helpful(
    review_id: UUID,
    user: Dict[str, Any] = Depends(get_current_user),
    storefront: StorefrontManager = Depends(get_storefront)
):
    """Vote a review as helpful."""
    count = await storefront.mark_review_helpful(str(review_id))
    return success({'helpful_count': count})

@router.get("/product/{slug}/{product_id}/questions")
async def list_questions(
    slug: str,
    product_id: UUID,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    storefront: StorefrontManager = Depends(get_storefront)
):
    """Questions and answers about a product."""
    return success(await storefront.list_questions(str(product_id), limit, offset))

@router.post("/product/{slug}/{product_id}/question")
async def ask_question(
    slug: str,
    product_id: UUID,
    request: QuestionRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    storefront: StorefrontManager = Depends(get_storefront)
):
    """Ask the seller a question."""
    return success(await storefront.ask_question(user, slug, str(product_id), request.question))

@router.post("/questions/{question_id}/answer")
async def answer_question(
    question_id: UUID,
    request: AnswerRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    storefront: StorefrontManager = Depends(get_storefront)
):
    """Seller answers a question about their product."""
    return success(await storefront.answer_question(user['id'], str(question_id), request.answer))

@router.post("/checkout/{slug}/{product_id}")
async def checkout(
    slug: str,
    product_id: UUID,
    request: CheckoutRequest,
    user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    storefront: StorefrontManager = Depends(get_storefront)
):
    """Open a pending transaction; guests may check out."""
    result = await storefront.checkout(
        slug,
        str(product_id),
        request.buyer_name,
        request.buyer_phone,
        buyer_email=request.buyer_email,
        delivery_address=request.delivery_address,
        buyer_id=user['id'] if user else None,
        quantity=request.quantity
    )
    return success(result)

__all__ = ['router']
