"""Wallet endpoints: balances, history, withdrawals and payout methods."""
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from auth import get_current_user
from wallets import WalletStore, WITHDRAWAL_FEES
from wallets.payment_methods import PaymentMethodManager
from ..deps import get_payment_methods, get_wallets, success

router = APIRouter(
    prefix="/wallet-api",
    tags=["Wallet"]
)

class WithdrawRequest(BaseModel):
    """Request model for a withdrawal."""
    amount: Decimal
    payment_method_id: UUID

class PaymentMethodRequest(BaseModel):
    """Request model for saving a payout method."""
    method_type: str
    provider: str
    account_number: str
    account_name: Optional[str] = None
    bank_code: Optional[str] = None
    country: str = 'KE'

@router.get("/")
async def get_wallet(
    user: Dict[str, Any] = Depends(get_current_user),
    wallets: WalletStore = Depends(get_wallets)
):
    """Balances of the caller's wallet."""
    return success(await wallets.get_balance(user['id']))

@router.get("/history")
async def get_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: Dict[str, Any] = Depends(get_current_user),
    wallets: WalletStore = Depends(get_wallets)
):
    """Wallet ledger, newest first."""
    return success(await wallets.history(user['id'], limit, offset))

@router.get("/withdrawal-fees")
async def get_withdrawal_fees():
    """Flat payout fee per provider."""
    return success(WITHDRAWAL_FEES)

@router.post("/withdraw")
async def withdraw(
    request: WithdrawRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    wallets: WalletStore = Depends(get_wallets)
):
    """Request a payout from the available balance."""
    entry = await wallets.withdraw(user['id'], request.amount, str(request.payment_method_id))
    return success(entry)

@router.get("/payment-methods")
async def list_payment_methods(
    user: Dict[str, Any] = Depends(get_current_user),
    methods: PaymentMethodManager = Depends(get_payment_methods)
):
    """Saved payout methods."""
    return success(await methods.list(user['id']))

@router.post("/payment-methods")
async def add_payment_method(
    request: PaymentMethodRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    methods: PaymentMethodManager = Depends(get_payment_methods)
):
    """Save a payout method."""
    method = await methods.add(
        user['id'],
        request.method_type,
        request.provider,
        request.account_number,
        account_name=request.account_name,
        bank_code=request.bank_code,
        country=request.country
    )
    return success(method)

@router.post("/payment-methods/{method_id}/default")
async def set_default_payment_method(
    method_id: UUID,
    user: Dict[str, Any] = Depends(get_current_user),
    methods: PaymentMethodManager = Depends(get_payment_methods)
):
    """Make a payout method the default."""
    return success(await methods.set_default(user['id'], str(method_id)))

@router.delete("/payment-methods/{method_id}")
async def delete_payment_method(
    method_id: UUID,
    user: Dict[str, Any] = Depends(get_current_user),
    methods: PaymentMethodManager = Depends(get_payment_methods)
):
    """Remove a payout method."""
    await methods.delete(user['id'], str(method_id))
    return success({'deleted': str(method_id)})

__all__ = ['router']
