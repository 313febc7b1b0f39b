"""Escrow status and order fulfilment endpoints for buyers and sellers."""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from auth import get_current_user
from errors import ForbiddenError, NotFoundError
from escrow import EscrowEngine
from ..deps import get_engine, success

router = APIRouter(
    prefix="/escrow-api",
    tags=["Escrow"]
)

@router.get("/{transaction_id}")
async def get_escrow_status(
    transaction_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    engine: EscrowEngine = Depends(get_engine)
):
    """Order status and its escrow deposit, for the buyer, the seller or an admin."""
    txn = await engine.ledger.get(transaction_id)
    if not txn:
        raise NotFoundError("Transaction not found")
    if user['id'] not in (txn['seller_id'], txn['buyer_id']) and not user.get('is_admin'):
        raise ForbiddenError("Not a party to this transaction")

    deposit = await engine.escrow_status(transaction_id)
    return success({
        'transaction_id': txn['id'],
        'status': txn['status'],
        'amount': txn['amount'],
        'currency': txn['currency'],
        'escrow': deposit
    })

@router.post("/{transaction_id}/ship")
async def mark_shipped(
    transaction_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    engine: EscrowEngine = Depends(get_engine)
):
    """Seller marks the order shipped."""
    return success(await engine.mark_shipped(transaction_id, user['id']))

@router.post("/{transaction_id}/deliver")
async def mark_delivered(
    transaction_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    engine: EscrowEngine = Depends(get_engine)
):
    """Seller marks the order delivered."""
    return success(await engine.mark_delivered(transaction_id, user['id']))

@router.post("/{transaction_id}/confirm")
async def confirm_delivery(
    transaction_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    engine: EscrowEngine = Depends(get_engine)
):
    """Buyer confirms receipt, releasing the escrow to the seller."""
    return success(await engine.confirm_delivery(transaction_id, user['id']))

__all__ = ['router']
