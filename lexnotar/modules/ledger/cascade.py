"""
ledger/cascade.py

Restores consistency after any step or payment mutation, top-down:

  1. job totals from the job's current steps (cost_final, paid_total, balance_due)
  2. client debt from all of the client's jobs, using the job computed in (1)

Both phases run inside one call so the client can never be computed from a
stale job balance. Running the cascade again on its own output changes nothing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable, Optional

from ...utils.helpers import now_ts, round_to_step
from .calculations import client_debt, job_totals
from .entities import Client, Job, JobTotals, Payment, Step
from .status import JOB_STATES_WITHOUT_DEBT

__all__ = ["CascadeResult", "recompute_job", "recompute_client_debt", "apply_job_totals", "cascade"]

_log = logging.getLogger(__name__)


@dataclass
class CascadeResult:
    job: Job
    client: Client


def recompute_job(steps: Iterable[Step]) -> JobTotals:
    return job_totals(steps)


def recompute_client_debt(jobs: Iterable[Job]) -> float:
    """Debt over the given jobs (callers pass one client's jobs)."""
    return round_to_step(sum(j.balance_due for j in jobs if j.status not in JOB_STATES_WITHOUT_DEBT))


def apply_job_totals(
    job: Job,
    steps: Iterable[Step],
    payments: Optional[Iterable[Payment]] = None,
) -> Job:
    """
    Copy of `job` with totals recomputed from `steps` (only the job's own steps
    are considered). When `payments` is given, unapplied_credit is refreshed too.
    Returns the same object when nothing changed so repeated runs stay stable.
    """
    own = [s for s in steps if s.job_id == job.job_id]
    totals = job_totals(own)
    credit = job.unapplied_credit
    if payments is not None:
        credit = round_to_step(sum(p.unapplied for p in payments if p.job_id == job.job_id))
    if (
        totals.cost_final == job.cost_final
        and totals.paid_total == job.paid_total
        and credit == job.unapplied_credit
    ):
        return job
    return replace(
        job,
        cost_final=totals.cost_final,
        paid_total=totals.paid_total,
        unapplied_credit=credit,
        updated_at=now_ts(),
    )


def cascade(
    job: Job,
    steps: Iterable[Step],
    client: Client,
    jobs: Iterable[Job],
    payments: Optional[Iterable[Payment]] = None,
) -> CascadeResult:
    """
    Step -> Job -> Client in one pass.

    `jobs` may be the whole job collection; only the client's jobs count, and
    the entry for `job` is replaced by its freshly recomputed version.
    """
    new_job = apply_job_totals(job, steps, payments)

    client_jobs = [new_job if j.job_id == new_job.job_id else j for j in jobs]
    if all(j.job_id != new_job.job_id for j in client_jobs):
        client_jobs.append(new_job)
    debt = client_debt(client.client_id, client_jobs)

    new_client = client
    if debt != client.debt_total:
        new_client = replace(client, debt_total=debt, updated_at=now_ts())

    _log.debug(
        "cascade job=%s cost=%s paid=%s due=%s -> client=%s debt=%s",
        new_job.job_id, new_job.cost_final, new_job.paid_total, new_job.balance_due,
        new_client.client_id, new_client.debt_total,
    )
    return CascadeResult(job=new_job, client=new_client)
