"""Fixed-point money helpers. All ledger arithmetic goes through Decimal quantized to cents."""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import List
from uuid import UUID

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_uuid(val):
    if val is None:
        return None
    return val if isinstance(val, UUID) else UUID(str(val))


def to_money(val) -> Decimal:
    """Coerce DB/driver values (Decimal, int, str, SQLite floats) to a 2-place Decimal."""
    if val is None:
        return ZERO
    if not isinstance(val, Decimal):
        # str() first so a float coming back from SQLite does not carry binary noise
        val = Decimal(str(val))
    return val.quantize(CENT, rounding=ROUND_HALF_UP)


def split_evenly(total: Decimal, parts: int) -> List[Decimal]:
    """
    Split total into parts equal instalments; the rounding remainder lands on the last one.

    split_evenly(Decimal("1000.00"), 3) -> [333.33, 333.33, 333.34]
    """
    if parts < 1:
        raise ValueError("parts must be >= 1")
    total = to_money(total)
    base = (total / parts).quantize(CENT, rounding=ROUND_DOWN)
    shares = [base] * parts
    shares[-1] = total - base * (parts - 1)
    return shares
