"""
ledger/allocator.py

Decides which step(s) of a job absorb a payment.

- Direct mode (target step given): the whole amount goes to that step, even
  when it drives the balance negative. Overpayment is reported, not refused.
- Distributed mode (general payment): steps in ascending step_number; each
  step with a positive balance takes min(remaining, balance) until the amount
  is spent. Whatever is left after every step is settled is returned as
  `unapplied` so the caller can keep it as job credit.

Pure functions; no DB. Input step lists are never modified.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, Mapping, Optional

from ...utils.helpers import fmt_money, now_ts, round_to_step
from ...utils.validators import parse_money
from .entities import Step
from .errors import InvalidAmountError, StepNotFoundError

__all__ = [
    "Allocation",
    "validate_amount",
    "allocate_payment",
    "apply_payment",
    "reverse_allocations",
]

_log = logging.getLogger(__name__)


@dataclass
class Allocation:
    """Allocation plan envelope returned by allocate_payment()."""
    steps: list[Step]
    requested_total: float
    allocated_total: float
    unapplied: float
    # step_id -> amount applied, in application order
    allocations: dict[str, float] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


def validate_amount(amount) -> float:
    """Return the amount as a rounded float or raise InvalidAmountError (≤ 0, NaN, junk)."""
    value = parse_money(amount)
    if value is None:
        raise InvalidAmountError(f"Invalid payment amount: {amount!r}.")
    if value <= 0:
        raise InvalidAmountError("Payment amount must be greater than zero.")
    return value


def _credit(step: Step, amount: float) -> Step:
    return replace(step, paid=round_to_step(step.paid + amount), updated_at=now_ts())


def allocate_payment(
    steps: Iterable[Step],
    amount,
    target_step_id: Optional[str] = None,
) -> Allocation:
    """Split `amount` over a job's steps. See module docstring for the rules."""
    requested = validate_amount(amount)
    work = list(steps)
    by_id = {s.step_id: i for i, s in enumerate(work)}
    allocations: dict[str, float] = {}
    warnings: list[str] = []

    if target_step_id is not None:
        idx = by_id.get(target_step_id)
        if idx is None:
            raise StepNotFoundError(f"Step {target_step_id} does not belong to this job.")
        updated = _credit(work[idx], requested)
        work[idx] = updated
        allocations[updated.step_id] = requested
        if updated.balance < 0:
            warnings.append(
                f"Payment exceeds the balance of step {updated.step_number} "
                f"by {fmt_money(-updated.balance)}."
            )
        return Allocation(
            steps=work,
            requested_total=requested,
            allocated_total=requested,
            unapplied=0.0,
            allocations=allocations,
            warnings=warnings,
        )

    remaining = requested
    for s in sorted(work, key=lambda s: s.step_number):
        if remaining <= 0:
            break
        if s.balance <= 0:
            continue
        to_apply = round_to_step(min(remaining, s.balance))
        work[by_id[s.step_id]] = _credit(s, to_apply)
        allocations[s.step_id] = to_apply
        remaining = round_to_step(remaining - to_apply)

    if remaining > 0:
        warnings.append(
            f"{fmt_money(remaining)} exceeds the combined balance of the job's steps "
            "and was kept as unapplied credit."
        )
        _log.info("General payment of %s left %s unapplied", requested, remaining)

    return Allocation(
        steps=work,
        requested_total=requested,
        allocated_total=round_to_step(requested - remaining),
        unapplied=remaining,
        allocations=allocations,
        warnings=warnings,
    )


def apply_payment(steps: Iterable[Step], amount, target_step_id: Optional[str] = None) -> list[Step]:
    """Convenience wrapper returning only the updated step collection."""
    return allocate_payment(steps, amount, target_step_id).steps


def reverse_allocations(steps: Iterable[Step], allocations: Mapping[str, float]) -> list[Step]:
    """
    Undo a payment: subtract each recorded allocation from its step's paid.
    Every referenced step must be present; nothing is changed otherwise.
    """
    work = list(steps)
    by_id = {s.step_id: i for i, s in enumerate(work)}
    missing = [sid for sid in allocations if sid not in by_id]
    if missing:
        raise StepNotFoundError(f"Cannot reverse payment: unknown step(s) {', '.join(missing)}.")
    for sid, amt in allocations.items():
        i = by_id[sid]
        work[i] = _credit(work[i], -float(amt))
    return work
