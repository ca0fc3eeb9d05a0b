# utils/validators.py
import math
from typing import Optional

from .helpers import round_to_step


def non_empty(text: str) -> bool:
    """
    True if `text` is not None/empty after stripping whitespace.
    """
    return bool(text and str(text).strip())


# ---- Money ----

def parse_money(x) -> Optional[float]:
    """
    Amount as typed in a form or read from a row, rounded to the currency step.

    Returns None for anything that is not a finite number ("", "abc", None,
    NaN, inf, booleans). Sign is not checked here.
    """
    if isinstance(x, bool):
        return None
    try:
        val = float(x.strip()) if isinstance(x, str) else float(x)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(val):
        return None
    return round_to_step(val)


def is_valid_amount(x, *, allow_zero: bool = False) -> bool:
    """True iff x parses as money and is > 0 (or >= 0 with allow_zero)."""
    val = parse_money(x)
    if val is None:
        return False
    return val >= 0 if allow_zero else val > 0
