"""Paystack checkout, verification, top-up and webhook endpoints."""
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel

from auth import get_current_user
from payments import PaymentService
from ..deps import get_payment_service, success

router = APIRouter(
    prefix="/paystack-api",
    tags=["Payments"]
)

class InitializeRequest(BaseModel):
    """Request model for starting a checkout payment."""
    transactionId: Optional[str] = None
    email: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

class VerifyRequest(BaseModel):
    """Request model for verifying a checkout payment."""
    reference: Optional[str] = None
    transactionId: Optional[str] = None

class TopupInitializeRequest(BaseModel):
    """Request model for starting a wallet top-up."""
    amount: Decimal
    email: Optional[str] = None

class TopupVerifyRequest(BaseModel):
    """Request model for verifying a wallet top-up."""
    reference: Optional[str] = None

@router.get("/config")
async def get_config(service: PaymentService = Depends(get_payment_service)):
    """Public key for the inline checkout widget."""
    return success(service.config())

@router.post("/initialize")
async def initialize_payment(
    request: InitializeRequest,
    service: PaymentService = Depends(get_payment_service)
):
    """Start a hosted payment for a pending transaction."""
    result = await service.initialize_checkout(
        request.transactionId,
        request.email,
        request.metadata
    )
    return success(result)

@router.post("/verify")
async def verify_payment(
    request: VerifyRequest,
    service: PaymentService = Depends(get_payment_service)
):
    """Verify a payment and hold the money in escrow."""
    result = await service.verify_checkout(request.reference, request.transactionId)
    return success(result)

@router.post("/webhook")
async def paystack_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(None),
    service: PaymentService = Depends(get_payment_service)
):
    """Provider event callback. The raw body is needed for the signature."""
    raw_body = await request.body()
    result = await service.handle_webhook(raw_body, x_paystack_signature)
    return success(result)

@router.post("/wallet-topup/initialize")
async def initialize_topup(
    request: TopupInitializeRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    """Start a wallet top-up for the caller."""
    result = await service.initialize_topup(user, request.amount, request.email)
    return success(result)

@router.post("/wallet-topup/verify")
async def verify_topup(
    request: TopupVerifyRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    """Verify a top-up and credit the caller's wallet."""
    result = await service.verify_topup(user, request.reference)
    return success(result)

__all__ = ['router']
