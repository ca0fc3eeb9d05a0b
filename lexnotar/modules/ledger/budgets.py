"""
ledger/budgets.py

Quotable budget versions ("presupuestos") of a job.

A version freezes subtotal/discount/extra charges/tax/total at creation; later
step edits do not touch it. Version numbers grow per job and are never
reused: callers pass the highest number ever issued (`high_water`) so a
deleted version's number stays burned.

    borrador --send--> enviado --approve--> aprobado
    borrador --approve--> aprobado
    enviado --reject(reason)--> rechazado

aprobado and rechazado are terminal; aprobado is also immutable.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

from ...constants import DEFAULT_TAX_RATE
from ...utils.helpers import new_id, now_ts, round_to_step
from .entities import BudgetSnapshot, BudgetVersion, Step
from .errors import BudgetNotFoundError, ImmutableRecordError, InvalidAmountError, InvalidTransitionError
from .status import (
    BUDGET_APPROVED,
    BUDGET_DRAFT,
    BUDGET_REJECTED,
    BUDGET_SENT,
    BUDGET_STATES,
    normalize,
)

__all__ = [
    "BUDGET_TRANSITIONS",
    "next_version",
    "snapshot_from_steps",
    "create_budget_version",
    "transition_budget_status",
    "ensure_deletable",
    "delete_budget_version",
    "versions_for_job",
]

_log = logging.getLogger(__name__)

BUDGET_TRANSITIONS: dict[str, frozenset[str]] = {
    BUDGET_DRAFT: frozenset({BUDGET_SENT, BUDGET_APPROVED}),
    BUDGET_SENT: frozenset({BUDGET_APPROVED, BUDGET_REJECTED}),
    BUDGET_APPROVED: frozenset(),
    BUDGET_REJECTED: frozenset(),
}


def versions_for_job(job_id: str, versions: Iterable[BudgetVersion]) -> list[BudgetVersion]:
    """Job's versions, newest first (as listed on the job screen)."""
    return sorted((v for v in versions if v.job_id == job_id), key=lambda v: v.version, reverse=True)


def next_version(job_id: str, existing: Iterable[BudgetVersion], high_water: int = 0) -> int:
    """1 + the highest version ever issued for the job (existing or burned)."""
    top = max((v.version for v in existing if v.job_id == job_id), default=0)
    return max(top, int(high_water or 0)) + 1


def snapshot_from_steps(
    steps: Iterable[Step],
    *,
    discount: float = 0.0,
    extra_charges: float = 0.0,
    tax_rate: Optional[float] = DEFAULT_TAX_RATE,
    terms: Optional[str] = None,
) -> BudgetSnapshot:
    """
    Quote the current step costs. tax = subtotal * tax_rate / 100
    (pass tax_rate=None or 0 when the practice does not charge IVA).
    """
    subtotal = round_to_step(sum(s.cost for s in steps))
    tax = round_to_step(subtotal * float(tax_rate) / 100.0) if tax_rate else 0.0
    return BudgetSnapshot(
        subtotal=subtotal,
        discount=round_to_step(discount),
        extra_charges=round_to_step(extra_charges),
        tax=tax,
        terms=terms,
    )


def _validate_snapshot(snapshot: BudgetSnapshot) -> None:
    for label, value in (
        ("Subtotal", snapshot.subtotal),
        ("Discount", snapshot.discount),
        ("Extra charges", snapshot.extra_charges),
        ("Tax", snapshot.tax),
    ):
        if value is None or value < 0:
            raise InvalidAmountError(f"{label} cannot be negative.")
    if snapshot.total < 0:
        raise InvalidAmountError("Discount cannot exceed subtotal plus extra charges and tax.")


def create_budget_version(
    job_id: str,
    existing_versions: Iterable[BudgetVersion],
    snapshot: BudgetSnapshot,
    *,
    high_water: int = 0,
    budget_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> BudgetVersion:
    """New draft version numbered after every version the job ever had."""
    _validate_snapshot(snapshot)
    version = next_version(job_id, existing_versions, high_water)
    bv = BudgetVersion(
        budget_id=budget_id or new_id(),
        job_id=job_id,
        version=version,
        subtotal=round_to_step(snapshot.subtotal),
        discount=round_to_step(snapshot.discount),
        extra_charges=round_to_step(snapshot.extra_charges),
        tax=round_to_step(snapshot.tax),
        total=snapshot.total,
        status=BUDGET_DRAFT,
        terms=snapshot.terms,
        created_at=now or now_ts(),
    )
    _log.info("Budget version %s created for job %s (total %s)", version, job_id, bv.total)
    return bv


def transition_budget_status(
    version: BudgetVersion,
    new_status: str,
    reason: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> BudgetVersion:
    """
    Returns a copy in `new_status` with the matching timestamp stamped.
    `reason` is only kept when rejecting.

    Raises:
        ImmutableRecordError   : version is already approved
        InvalidTransitionError : any other undefined move
    """
    target = normalize(new_status, BUDGET_STATES)
    if version.status == BUDGET_APPROVED:
        raise ImmutableRecordError(f"Budget version {version.version} is approved and cannot change.")
    if target is None or target not in BUDGET_TRANSITIONS.get(version.status, frozenset()):
        raise InvalidTransitionError(
            f"Cannot change budget version {version.version} from '{version.status}' to '{new_status}'.",
            current=version.status,
            requested=new_status,
        )

    ts = now or now_ts()
    if target == BUDGET_SENT:
        return replace(version, status=target, sent_at=ts)
    if target == BUDGET_APPROVED:
        return replace(version, status=target, approved_at=ts)
    reason = (reason or "").strip() or None
    return replace(version, status=target, rejected_at=ts, rejection_reason=reason)


def ensure_deletable(version: BudgetVersion) -> None:
    """
    Drafts and rejected versions can go. A sent version is in the client's
    hands and has to be rejected first; approved ones are permanent.
    """
    if version.status == BUDGET_APPROVED:
        raise ImmutableRecordError("An approved budget version cannot be deleted.")
    if version.status == BUDGET_SENT:
        raise InvalidTransitionError(
            "A sent budget version must be rejected before it can be deleted.",
            current=version.status,
            requested=None,
        )


def delete_budget_version(versions: Iterable[BudgetVersion], budget_id: str) -> list[BudgetVersion]:
    """Remaining versions after removing `budget_id`; input is left untouched."""
    versions = list(versions)
    target = next((v for v in versions if v.budget_id == budget_id), None)
    if target is None:
        raise BudgetNotFoundError(f"Budget version {budget_id} not found.")
    ensure_deletable(target)
    return [v for v in versions if v.budget_id != budget_id]
