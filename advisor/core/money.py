"""
Currency helpers. Amounts are stored as integer minor units and surfaced as
Decimal rupees; binary floats are never accepted for money.
"""

from decimal import Decimal, InvalidOperation
from typing import Union

MINOR_PER_UNIT = 100
TWO_PLACES = Decimal("0.01")

Amount = Union[int, Decimal, str]


def to_minor(amount: Amount) -> int:
    """Convert a rupee amount (int, Decimal or numeric string) to paise."""
    if isinstance(amount, bool) or isinstance(amount, float):
        raise TypeError("monetary amounts must be int, Decimal or str, not float")
    try:
        value = Decimal(amount)
    except (InvalidOperation, ValueError):
        raise ValueError(f"not a monetary amount: {amount!r}")
    if not value.is_finite():
        raise ValueError(f"not a monetary amount: {amount!r}")
    minor = value * MINOR_PER_UNIT
    if minor != minor.to_integral_value():
        raise ValueError(f"amount has more than two decimal places: {amount!r}")
    return int(minor)


def from_minor(minor: int) -> Decimal:
    """Convert paise to a Decimal rupee amount with two places."""
    return (Decimal(int(minor)) / MINOR_PER_UNIT).quantize(TWO_PLACES)


def format_inr(amount: Decimal) -> str:
    """Format a rupee amount with Indian digit grouping, e.g. ₹8,40,000."""
    sign = "-" if amount < 0 else ""
    amount = abs(Decimal(amount)).quantize(TWO_PLACES)
    whole, _, fraction = f"{amount:f}".partition(".")

    if len(whole) > 3:
        head, tail = whole[:-3], whole[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        whole = ",".join(groups + [tail])

    if fraction and fraction != "00":
        return f"{sign}₹{whole}.{fraction}"
    return f"{sign}₹{whole}"
