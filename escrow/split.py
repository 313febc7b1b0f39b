"""Platform fee / seller payout split."""
from decimal import Decimal, ROUND_HALF_UP
from typing import Tuple, Union

from errors import ValidationError

CENT = Decimal('0.01')
ZERO = Decimal('0')

Number = Union[Decimal, int, str, float]

def compute_split(
    amount: Number,
    fee_percent: Number,
    fee_minimum: Number = ZERO
) -> Tuple[Decimal, Decimal]:
    """Split a payment into platform fee and seller payout.

    The fee is ``amount * fee_percent / 100`` rounded half-up to cents, raised
    to ``fee_minimum`` and capped at ``amount``. The payout is the remainder,
    so the two always sum to the amount exactly.

    Args:
        amount: Amount paid by the buyer
        fee_percent: Platform fee percentage, 0-100
        fee_minimum: Minimum fee in the same currency

    Returns:
        Tuple of (platform_fee, seller_payout)

    Raises:
        ValidationError: If amount is not positive or percent is out of range
    """
    amount = Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)
    fee_percent = Decimal(str(fee_percent))
    fee_minimum = Decimal(str(fee_minimum)).quantize(CENT, rounding=ROUND_HALF_UP)

    if amount <= 0:
        raise ValidationError("Amount must be positive")
    if not ZERO <= fee_percent <= 100:
        raise ValidationError("Fee percent must be between 0 and 100")

    fee = (amount * fee_percent / 100).quantize(CENT, rounding=ROUND_HALF_UP)
    fee = min(max(fee, fee_minimum), amount)
    return fee, amount - fee
