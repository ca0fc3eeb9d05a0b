"""
ledger/lifecycle.py

Status state machines for jobs and steps.

Jobs:   Borrador -> Pendiente -> En proceso -> {Completado, Cancelado}
        Pendiente -> Cancelado
        anything not yet completed -> Completado

Completing is never refused. Unfinished steps and an outstanding balance are
reported as warnings next to the successful result, and the completion date
is stamped. Steps follow their kanban columns forward only; completing a step
that still owes money warns the same way.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

from ...utils.helpers import fmt_money, now_ts
from .calculations import all_steps_completed
from .entities import Job, Step, Transition
from .errors import InvalidTransitionError
from .status import (
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_DRAFT,
    JOB_IN_PROGRESS,
    JOB_PENDING,
    JOB_STATES,
    STEP_COMPLETED,
    normalize,
    step_states,
)

__all__ = [
    "JOB_TRANSITIONS",
    "allowed_job_transitions",
    "transition_job_status",
    "transition_step_status",
]

_log = logging.getLogger(__name__)

JOB_TRANSITIONS: dict[str, frozenset[str]] = {
    JOB_DRAFT: frozenset({JOB_PENDING, JOB_COMPLETED}),
    JOB_PENDING: frozenset({JOB_IN_PROGRESS, JOB_CANCELLED, JOB_COMPLETED}),
    JOB_IN_PROGRESS: frozenset({JOB_COMPLETED, JOB_CANCELLED}),
    JOB_CANCELLED: frozenset({JOB_COMPLETED}),
    JOB_COMPLETED: frozenset(),
}


def allowed_job_transitions(current: str) -> frozenset[str]:
    s = normalize(current, JOB_STATES)
    return JOB_TRANSITIONS.get(s, frozenset()) if s else frozenset()


def transition_job_status(
    job: Job,
    steps: Iterable[Step],
    new_status: str,
    *,
    now: Optional[datetime] = None,
) -> Transition:
    """
    Move `job` to `new_status`. Returns Transition(entity=<new Job>, warnings=[...]).

    `steps` may contain other jobs' steps; only this job's are inspected.
    Raises InvalidTransitionError for transitions the machine does not define.
    """
    target = normalize(new_status, JOB_STATES)
    if target is None:
        raise InvalidTransitionError(
            f"Unknown job status: {new_status!r}.", current=job.status, requested=new_status
        )
    if target not in allowed_job_transitions(job.status):
        raise InvalidTransitionError(
            f"Cannot change job from '{job.status}' to '{target}'.",
            current=job.status,
            requested=target,
        )

    ts = now or now_ts()
    warnings: list[str] = []
    changes: dict = {"status": target, "updated_at": ts}

    if target == JOB_COMPLETED:
        own = [s for s in steps if s.job_id == job.job_id]
        if not all_steps_completed(own):
            warnings.append("Some steps are not completed.")
        if job.balance_due > 0:
            warnings.append(f"The job has an outstanding balance of {fmt_money(job.balance_due)}.")
        changes["completion_date"] = ts

    for w in warnings:
        _log.warning("Job %s completed with warning: %s", job.job_id, w)
    return Transition(entity=replace(job, **changes), warnings=warnings)


def transition_step_status(
    step: Step,
    new_status: str,
    *,
    custom_states: Optional[Iterable[str]] = None,
    now: Optional[datetime] = None,
) -> Transition:
    """
    Move a step along its columns. Forward moves (skipping allowed) are fine;
    Completado is reachable from any open column. Backward moves and anything
    out of Completado raise InvalidTransitionError.
    """
    order = step_states(custom_states)
    target = normalize(new_status, order)
    if target is None:
        raise InvalidTransitionError(
            f"Unknown step status: {new_status!r}.", current=step.status, requested=new_status
        )
    current = normalize(step.status, order)
    if current == STEP_COMPLETED:
        raise InvalidTransitionError(
            "Completed steps cannot change status.", current=step.status, requested=target
        )
    # a column that was removed from the board counts as the start of it
    cur_idx = order.index(current) if current is not None else -1
    if order.index(target) <= cur_idx:
        raise InvalidTransitionError(
            f"Cannot move step from '{step.status}' back to '{target}'.",
            current=step.status,
            requested=target,
        )

    ts = now or now_ts()
    warnings: list[str] = []
    changes: dict = {"status": target, "updated_at": ts}
    if target == STEP_COMPLETED:
        if step.balance > 0:
            warnings.append(f"This step has an outstanding balance of {fmt_money(step.balance)}.")
            _log.warning("Step %s completed with balance %s", step.step_id, step.balance)
        changes["completion_date"] = ts
    return Transition(entity=replace(step, **changes), warnings=warnings)
