"""Transaction states and the allowed-transition table."""
from enum import Enum
from typing import Dict, FrozenSet, Union

from errors import InvalidStatusError

class TransactionStatus(str, Enum):
    """Canonical transaction states, stored lower case."""
    PENDING = 'pending'
    PROCESSING = 'processing'
    PAID = 'paid'
    SHIPPED = 'shipped'
    DELIVERED = 'delivered'
    COMPLETED = 'completed'
    DISPUTED = 'disputed'
    REFUNDED = 'refunded'
    CANCELLED = 'cancelled'
    CLOSED = 'closed'

    def __str__(self) -> str:
        return self.value

S = TransactionStatus

TRANSITIONS: Dict[TransactionStatus, FrozenSet[TransactionStatus]] = {
    S.PENDING: frozenset({S.PROCESSING, S.CANCELLED}),
    S.PROCESSING: frozenset({S.PAID, S.COMPLETED, S.DISPUTED, S.REFUNDED, S.CANCELLED}),
    S.PAID: frozenset({S.SHIPPED, S.DELIVERED, S.COMPLETED, S.DISPUTED, S.REFUNDED}),
    S.SHIPPED: frozenset({S.DELIVERED, S.COMPLETED, S.DISPUTED, S.REFUNDED}),
    S.DELIVERED: frozenset({S.COMPLETED, S.DISPUTED, S.REFUNDED}),
    S.DISPUTED: frozenset({S.COMPLETED, S.REFUNDED, S.CLOSED}),
    S.COMPLETED: frozenset({S.CLOSED}),
    S.REFUNDED: frozenset({S.CLOSED}),
    S.CANCELLED: frozenset(),
    S.CLOSED: frozenset(),
}

# Column stamped with now() when a transaction enters the state
TIMESTAMP_COLUMNS: Dict[TransactionStatus, str] = {
    S.SHIPPED: 'shipped_at',
    S.DELIVERED: 'delivered_at',
    S.COMPLETED: 'completed_at',
    S.REFUNDED: 'refunded_at',
    S.CANCELLED: 'cancelled_at',
}

def normalize_status(value: Union[str, TransactionStatus]) -> TransactionStatus:
    """Map any spelling of a status ("PAID", " paid ") to its enum member.

    Raises:
        InvalidStatusError: If the value is not a known status
    """
    if isinstance(value, TransactionStatus):
        return value
    try:
        return TransactionStatus(str(value).strip().lower())
    except ValueError:
        raise InvalidStatusError(f"Unknown transaction status: {value!r}")

def can_transition(current: Union[str, TransactionStatus], target: Union[str, TransactionStatus]) -> bool:
    """Check the transition table."""
    return normalize_status(target) in TRANSITIONS[normalize_status(current)]

def allowed_sources(target: Union[str, TransactionStatus]) -> FrozenSet[TransactionStatus]:
    """All states from which ``target`` may be entered."""
    target = normalize_status(target)
    return frozenset(state for state, targets in TRANSITIONS.items() if target in targets)
