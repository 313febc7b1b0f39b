"""Admin oversight endpoints.

Every route requires an admin caller: a user holding the admin role or the
service-role key.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from auth import require_admin
from escrow import EscrowDeposits, EscrowEngine
from ledger import TransactionLedger
from wallets import WalletStore
from ..deps import get_deposits, get_engine, get_ledger, get_wallets, success

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin-api",
    tags=["Admin"],
    dependencies=[Depends(require_admin)]
)

class NotesRequest(BaseModel):
    """Optional admin notes on an approval."""
    notes: Optional[str] = None

class ReasonRequest(BaseModel):
    """Optional reason for a rejection or refund."""
    reason: Optional[str] = None

class FailWithdrawalRequest(BaseModel):
    """Why a payout could not be made."""
    reason: str

@router.get("/pending-payments")
async def pending_payments(
    limit: int = Query(100, ge=1, le=500),
    ledger: TransactionLedger = Depends(get_ledger)
):
    """Captured payments waiting for review."""
    return success(await ledger.list_pending_review(limit))

@router.get("/deposits")
async def list_deposits(
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    deposits: EscrowDeposits = Depends(get_deposits)
):
    """Escrow deposits; ``status=locked`` lists everything still held."""
    return success(await deposits.list(status, limit, offset))

@router.get("/transactions")
async def search_transactions(
    status: Optional[str] = None,
    seller_id: Optional[str] = None,
    buyer_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    ledger: TransactionLedger = Depends(get_ledger)
):
    """Search the transaction ledger."""
    return success(await ledger.search(
        seller_id=seller_id,
        buyer_id=buyer_id,
        status=status,
        limit=limit,
        offset=offset
    ))

@router.post("/approve/{transaction_id}")
async def approve_payment(
    transaction_id: str,
    request: Optional[NotesRequest] = None,
    admin: Dict[str, Any] = Depends(require_admin),
    engine: EscrowEngine = Depends(get_engine)
):
    """Confirm a captured payment."""
    return success(await engine.approve(transaction_id, admin['id'], request.notes if request else None))

@router.post("/reject/{transaction_id}")
async def reject_payment(
    transaction_id: str,
    request: Optional[ReasonRequest] = None,
    admin: Dict[str, Any] = Depends(require_admin),
    engine: EscrowEngine = Depends(get_engine)
):
    """Reject a captured payment."""
    return success(await engine.reject(transaction_id, admin['id'], request.reason if request else None))

@router.post("/release/{transaction_id}")
async def release_escrow(
    transaction_id: str,
    admin: Dict[str, Any] = Depends(require_admin),
    engine: EscrowEngine = Depends(get_engine)
):
    """Pay the seller now."""
    return success(await engine.release(transaction_id, admin['id']))

@router.post("/refund/{transaction_id}")
async def refund_escrow(
    transaction_id: str,
    request: Optional[ReasonRequest] = None,
    admin: Dict[str, Any] = Depends(require_admin),
    engine: EscrowEngine = Depends(get_engine)
):
    """Return the money to the buyer."""
    return success(await engine.refund(transaction_id, admin['id'], request.reason if request else None))

@router.post("/auto-release")
async def run_auto_release(engine: EscrowEngine = Depends(get_engine)):
    """Run the auto-release sweep immediately."""
    released = await engine.auto_release_due()
    return success({'released': released})

@router.get("/platform-summary")
async def platform_summary(deposits: EscrowDeposits = Depends(get_deposits)):
    """Fees earned, money held and wallet totals."""
    return success(await deposits.summary())

@router.get("/withdrawals")
async def list_withdrawals(
    status: Optional[str] = 'pending',
    limit: int = Query(100, ge=1, le=500),
    wallets: WalletStore = Depends(get_wallets)
):
    """Withdrawal requests to process."""
    return success(await wallets.list_withdrawals(status, limit))

@router.post("/withdrawals/{reference}/complete")
async def complete_withdrawal(
    reference: str,
    admin: Dict[str, Any] = Depends(require_admin),
    wallets: WalletStore = Depends(get_wallets)
):
    """Record a payout as sent."""
    entry = await wallets.complete_withdrawal(reference)
    logger.info(f"Withdrawal {reference} completed by {admin['id']}")
    return success(entry)

@router.post("/withdrawals/{reference}/fail")
async def fail_withdrawal(
    reference: str,
    request: FailWithdrawalRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    wallets: WalletStore = Depends(get_wallets)
):
    """Record a failed payout; the money goes back to the wallet."""
    entry = await wallets.fail_withdrawal(reference, request.reason)
    logger.info(f"Withdrawal {reference} failed by {admin['id']}: {request.reason}")
    return success(entry)

__all__ = ['router']
