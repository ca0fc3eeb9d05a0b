"""
ledger/calculations.py

Pure balance arithmetic for steps, jobs and clients.

Do not import repos or open DB connections here.
Only compute numbers; formatting belongs in the UI.
"""
from __future__ import annotations

from typing import Iterable

from ...utils.helpers import round_to_step
from .entities import Job, JobTotals, Payment, Step
from .status import JOB_STATES_ACTIVE, JOB_STATES_WITHOUT_DEBT, STEP_COMPLETED

__all__ = [
    "step_balance",
    "job_totals",
    "job_progress",
    "client_debt",
    "all_steps_completed",
    "steps_with_balance",
    "can_delete_step",
    "can_delete_client",
]


def step_balance(step: Step) -> float:
    """balance = cost - paid. Not clamped: overpaid steps go negative."""
    return round_to_step(step.cost - step.paid)


def job_totals(steps: Iterable[Step]) -> JobTotals:
    """
    Aggregate a job's steps:
      cost_final  = sum(cost)
      paid_total  = sum(paid)
      balance_due = cost_final - paid_total

    Empty input yields all zeros.
    """
    cost = 0.0
    paid = 0.0
    for s in steps:
        cost += s.cost
        paid += s.paid
    cost = round_to_step(cost)
    paid = round_to_step(paid)
    return JobTotals(cost_final=cost, paid_total=paid, balance_due=round_to_step(cost - paid))


def job_progress(steps: Iterable[Step]) -> int:
    """Percentage (0-100, rounded) of completed steps; 0 when there are none."""
    steps = list(steps)
    if not steps:
        return 0
    done = sum(1 for s in steps if s.status == STEP_COMPLETED)
    return int(round(done * 100 / len(steps)))


def client_debt(client_id: str, jobs: Iterable[Job]) -> float:
    """Sum of balance_due over the client's jobs, ignoring drafts and cancelled jobs."""
    return round_to_step(sum(
        j.balance_due
        for j in jobs
        if j.client_id == client_id and j.status not in JOB_STATES_WITHOUT_DEBT
    ))


def all_steps_completed(steps: Iterable[Step]) -> bool:
    """True iff there is at least one step and every step is completed."""
    steps = list(steps)
    return bool(steps) and all(s.status == STEP_COMPLETED for s in steps)


def steps_with_balance(steps: Iterable[Step]) -> list[Step]:
    return [s for s in steps if s.balance > 0]


def can_delete_step(step_id: str, payments: Iterable[Payment]) -> bool:
    """A step is deletable only while no payment targets it or was allocated to it."""
    for p in payments:
        if p.step_id == step_id or step_id in p.allocations:
            return False
    return True


def can_delete_client(client_id: str, jobs: Iterable[Job]) -> bool:
    """Clients with pending or in-progress jobs must stay."""
    return not any(j.client_id == client_id and j.status in JOB_STATES_ACTIVE for j in jobs)
