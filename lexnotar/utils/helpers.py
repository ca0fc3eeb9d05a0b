# utils/helpers.py
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
import logging
import uuid
from typing import Any, Union, Optional

from ..constants import CURRENCY_STEP

NumberLike = Union[float, int, str]

_log = logging.getLogger(__name__)


def now_ts() -> datetime:
    """Current local timestamp; single seam so tests can monkeypatch it."""
    return datetime.now()


def as_local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Aware datetimes are converted to local time and stripped of tzinfo; naive ones pass through."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def new_id() -> str:
    """Opaque string id for new records."""
    return uuid.uuid4().hex


def _to_decimal(x: Any) -> Decimal:
    try:
        return Decimal(str(x))
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")


def round_to_step(x: NumberLike, step: float = CURRENCY_STEP) -> float:
    """Round to nearest step using **half-up** (typical financial rounding).

    Example: x=10.005, step=0.01 -> 10.01
    """
    q = _to_decimal(step)
    if q <= 0:
        q = Decimal("0.01")
    dec = _to_decimal(x)
    return float((dec / q).quantize(Decimal("1"), rounding=ROUND_HALF_UP) * q)


def fmt_money(
    v: NumberLike,
    places: int = 2,
    *,
    strict: bool = False,
    sentinel: Optional[str] = None,
) -> str:
    """
    Format a number as money with thousands separators and a fixed number of decimals.

    Behavior on parse failure:
      - By default (strict=False, sentinel=None), returns str(v).
      - If `sentinel` is provided (e.g., "N/A"), returns that sentinel instead.
      - If `strict=True`, raises ValueError on parse failures.
    """
    try:
        x = float(v)
    except (TypeError, ValueError) as e:
        _log.debug("fmt_money: failed to parse %r as float: %s", v, e)
        if strict:
            raise ValueError(f"Could not parse {v!r} as a number.") from e
        return str(sentinel) if sentinel is not None else str(v)
    return f"{x:,.{places}f}"


def fmt_date(value: Optional[datetime]) -> str:
    """dd/mm/YYYY as shown across the practice's screens; empty for None."""
    if value is None:
        return ""
    return value.strftime("%d/%m/%Y")
