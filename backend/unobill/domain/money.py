# backend/unobill/domain/money.py
from __future__ import annotations

import math
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable


class MoneyError(ValueError):
    """Raised when currency/money parsing or formatting fails."""


# Balances within this distance of zero are treated as settled. Repeated
# float division of even splits leaves noise well below one currency unit.
BALANCE_EPSILON = 0.01

# Allowed gap between the sum of manual splits and the expense amount.
SPLIT_SUM_EPSILON = 0.01

# Bound on the sum of all balances computed from valid expenses.
ZERO_SUM_TOLERANCE = 1e-6

CURRENCY_CODE = "VND"
CURRENCY_SYMBOL = "₫"

# "." is always the decimal point; "," only groups thousands and a group
# never starts with 0, so "0,750" is rejected instead of read as 750.
_GROUPED_RE = re.compile(r"^[1-9]\d{0,2}(,\d{3})+([.]\d+)?$")
_PLAIN_RE = re.compile(r"^\d+([.]\d+)?$")


def parse_amount(
    value: object,
    *,
    max_amount: float = 1_000_000_000_000.0,
) -> float:
    """
    Parse a user supplied amount into a positive float.

    Accepts examples:
      90 -> 90.0
      "90" -> 90.0
      "12.5" -> 12.5
      "0.500" -> 0.5
      "30,000" -> 30000.0
      "1,250,000.5" -> 1250000.5

    Rejects booleans, zero, negatives, NaN/inf and unparseable strings,
    including comma groups that start with 0 ("0,750").
    """
    if isinstance(value, bool):
        raise MoneyError("amount must be a number")

    if isinstance(value, (int, float)):
        amount = float(value)
    elif isinstance(value, str):
        s = value.strip().replace(" ", "")
        if s == "":
            raise MoneyError("amount is empty")
        if _GROUPED_RE.match(s):
            amount = float(s.replace(",", ""))
        elif _PLAIN_RE.match(s):
            amount = float(s)
        else:
            raise MoneyError(f"invalid amount: {value}")
    else:
        raise MoneyError("amount must be a number")

    if math.isnan(amount) or math.isinf(amount):
        raise MoneyError("amount must be finite")
    if amount <= 0:
        raise MoneyError("amount must be > 0")
    if amount > max_amount:
        raise MoneyError("amount exceeds safety limit")

    return amount


def format_amount(amount: float, *, symbol: str = CURRENCY_SYMBOL) -> str:
    """
    Format an amount as whole currency units with dot grouping, e.g. "30.000 ₫".
    """
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise MoneyError("amount must be a number")
    try:
        rounded = Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise MoneyError(f"invalid amount: {amount}") from e

    whole = int(rounded)
    sign = "-" if whole < 0 else ""
    grouped = f"{abs(whole):,}".replace(",", ".")
    return f"{sign}{grouped} {symbol}"


def sums_to(values: Iterable[float], total: float, *, epsilon: float = SPLIT_SUM_EPSILON) -> bool:
    """
    True when values add up to total within epsilon.
    """
    return abs(math.fsum(values) - total) <= epsilon
