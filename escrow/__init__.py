"""Escrow: fee split, deposits and the engine that settles them"""
from .split import compute_split
from .deposits import EscrowDeposits, DepositStatus, HELD, status_filter
from .engine import EscrowEngine, DEFAULT_AUTO_RELEASE_DAYS

__all__ = [
    'compute_split',
    'EscrowDeposits',
    'DepositStatus',
    'HELD',
    'status_filter',
    'EscrowEngine',
    'DEFAULT_AUTO_RELEASE_DAYS'
]
