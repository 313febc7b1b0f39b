"""FastAPI dependency providers.

Every router gets its managers from here so tests can swap them through
``app.dependency_overrides``.
"""
from typing import Any, Dict

from fastapi import Depends

from config import settings_conf
from database import get_pool
from disputes import DisputeManager
from escrow import EscrowDeposits, EscrowEngine
from ledger import TransactionLedger
from payments import PaymentService
from storefront import StorefrontManager
from wallets import WalletStore
from wallets.payment_methods import PaymentMethodManager

def success(data: Any = None, **extra: Any) -> Dict[str, Any]:
    """Standard success envelope."""
    body = {'success': True, 'data': data}
    body.update(extra)
    return body

def build_engine(pool) -> EscrowEngine:
    """Escrow engine configured from settings."""
    return EscrowEngine(
        pool,
        fee_percent=settings_conf['platform_fee_percent'],
        fee_minimum=settings_conf['platform_fee_minimum'],
        auto_release_days=settings_conf['auto_release_days']
    )

async def get_ledger(pool=Depends(get_pool)) -> TransactionLedger:
    return TransactionLedger(pool)

async def get_wallets(pool=Depends(get_pool)) -> WalletStore:
    return WalletStore(pool)

async def get_deposits(pool=Depends(get_pool)) -> EscrowDeposits:
    return EscrowDeposits(pool)

async def get_payment_methods(pool=Depends(get_pool)) -> PaymentMethodManager:
    return PaymentMethodManager(pool)

async def get_engine(pool=Depends(get_pool)) -> EscrowEngine:
    return build_engine(pool)

async def get_payment_service(engine: EscrowEngine = Depends(get_engine)) -> PaymentService:
    return PaymentService(engine, settings=settings_conf)

async def get_dispute_manager(
    pool=Depends(get_pool),
    engine: EscrowEngine = Depends(get_engine)
) -> DisputeManager:
    return DisputeManager(pool, engine)

async def get_storefront(pool=Depends(get_pool)) -> StorefrontManager:
    return StorefrontManager(
        pool,
        fee_percent=settings_conf['platform_fee_percent'],
        fee_minimum=settings_conf['platform_fee_minimum']
    )
