"""
ledger/service.py

Mutation entry points the screens call (register a payment, edit a step,
change a status...). Each operation:

  1. validates against the current state and raises before touching anything,
  2. computes a brand-new LedgerState (records are replaced, never mutated),
  3. runs the Step -> Job -> Client cascade for every job it touched,
  4. hands the new state to `on_commit` (e.g. LedgerRepo.save_state) and only
     then swaps it in.

All of that happens behind one lock, so two threads can never interleave the
job and client phases of a cascade. If `on_commit` raises, the service keeps
its previous state and the exception propagates.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional

from ...constants import DEFAULT_TAX_RATE
from ...utils.helpers import as_local_naive, fmt_money, new_id, now_ts, round_to_step
from ...utils.validators import is_valid_amount, non_empty, parse_money
from .allocator import allocate_payment, reverse_allocations
from .budgets import (
    create_budget_version,
    delete_budget_version,
    snapshot_from_steps,
    transition_budget_status,
)
from .calculations import can_delete_client, can_delete_step, client_debt
from .cascade import apply_job_totals, cascade
from .entities import (
    BudgetSnapshot,
    BudgetVersion,
    Client,
    Job,
    JobType,
    Payment,
    Step,
)
from .errors import (
    BudgetNotFoundError,
    ClientNotFoundError,
    EntityNotFoundError,
    InvalidAmountError,
    InvalidTransitionError,
    JobNotFoundError,
    LedgerError,
    PaymentNotFoundError,
    ReferentialIntegrityError,
    StepNotFoundError,
)
from .lifecycle import transition_job_status, transition_step_status
from .status import BUDGET_APPROVED, JOB_DRAFT, JOB_PENDING, PAYMENT_METHODS, ensure_valid

__all__ = ["LedgerState", "LedgerResult", "LedgerService"]

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerState:
    """Value snapshot of every collection the engine reconciles."""
    clients: tuple[Client, ...] = ()
    jobs: tuple[Job, ...] = ()
    steps: tuple[Step, ...] = ()
    payments: tuple[Payment, ...] = ()
    budgets: tuple[BudgetVersion, ...] = ()
    job_types: tuple[JobType, ...] = ()
    # job_id -> highest budget version ever issued (survives deletions)
    budget_counters: Mapping[str, int] = field(default_factory=dict)

    # ---- lookups ------------------------------------------------------------

    def client(self, client_id: str) -> Client:
        for c in self.clients:
            if c.client_id == client_id:
                return c
        raise ClientNotFoundError(f"Client {client_id} not found.")

    def job(self, job_id: str) -> Job:
        for j in self.jobs:
            if j.job_id == job_id:
                return j
        raise JobNotFoundError(f"Job {job_id} not found.")

    def step(self, step_id: str) -> Step:
        for s in self.steps:
            if s.step_id == step_id:
                return s
        raise StepNotFoundError(f"Step {step_id} not found.")

    def payment(self, payment_id: str) -> Payment:
        for p in self.payments:
            if p.payment_id == payment_id:
                return p
        raise PaymentNotFoundError(f"Payment {payment_id} not found.")

    def budget(self, budget_id: str) -> BudgetVersion:
        for b in self.budgets:
            if b.budget_id == budget_id:
                return b
        raise BudgetNotFoundError(f"Budget version {budget_id} not found.")

    def job_type(self, job_type_id: str) -> JobType:
        for t in self.job_types:
            if t.job_type_id == job_type_id:
                return t
        raise EntityNotFoundError(f"Job type {job_type_id} not found.")

    def jobs_for(self, client_id: str) -> list[Job]:
        return [j for j in self.jobs if j.client_id == client_id]

    def steps_for(self, job_id: str) -> list[Step]:
        return sorted((s for s in self.steps if s.job_id == job_id), key=lambda s: s.step_number)

    def payments_for(self, job_id: str) -> list[Payment]:
        return [p for p in self.payments if p.job_id == job_id]

    def budgets_for(self, job_id: str) -> list[BudgetVersion]:
        return sorted((b for b in self.budgets if b.job_id == job_id), key=lambda b: b.version, reverse=True)


@dataclass
class LedgerResult:
    state: LedgerState
    warnings: list[str] = field(default_factory=list)
    # record created/changed by the operation, when there is one
    record: Any = None


# ---- small tuple helpers ------------------------------------------------------

def _swap(items: Iterable, key: str, new) -> tuple:
    ident = getattr(new, key)
    return tuple(new if getattr(i, key) == ident else i for i in items)


def _swap_many(items: Iterable, key: str, news: Iterable) -> tuple:
    by_id = {getattr(n, key): n for n in news}
    return tuple(by_id.get(getattr(i, key), i) for i in items)


_CLIENT_EDITABLE = frozenset({"document_id", "phone", "email", "address", "notes", "status"})


def _money_arg(value, label: str) -> float:
    if not is_valid_amount(value, allow_zero=True):
        raise InvalidAmountError(f"{label} must be a number greater than or equal to 0.")
    return parse_money(value)


def _cascade_job(state: LedgerState, job_id: str) -> LedgerState:
    """Recompute one job and its client inside `state`."""
    job = state.job(job_id)
    client = state.client(job.client_id)
    res = cascade(job, state.steps_for(job_id), client, state.jobs, state.payments_for(job_id))
    return replace(
        state,
        jobs=_swap(state.jobs, "job_id", res.job),
        clients=_swap(state.clients, "client_id", res.client),
    )


def _refresh_client(state: LedgerState, client_id: str) -> LedgerState:
    client = state.client(client_id)
    debt = client_debt(client_id, state.jobs)
    if debt == client.debt_total:
        return state
    return replace(state, clients=_swap(state.clients, "client_id", replace(client, debt_total=debt, updated_at=now_ts())))


class LedgerService:
    """Owns the current LedgerState and serializes every mutation of it."""

    def __init__(
        self,
        state: Optional[LedgerState] = None,
        *,
        on_commit: Optional[Callable[[LedgerState], None]] = None,
        step_columns: Optional[Iterable[str]] = None,
    ):
        self._state = state or LedgerState()
        self._on_commit = on_commit
        self._step_columns = tuple(step_columns) if step_columns is not None else None
        self._lock = threading.RLock()

    @property
    def state(self) -> LedgerState:
        return self._state

    # ---- commit plumbing ----------------------------------------------------

    def _run(self, op: Callable, *args, **kwargs) -> LedgerResult:
        with self._lock:
            try:
                new_state, warnings, record = op(self._state, *args, **kwargs)
            except LedgerError as e:
                _log.info("%s rejected: %s", op.__name__.lstrip("_"), e)
                raise
            if self._on_commit is not None:
                self._on_commit(new_state)
            self._state = new_state
        for w in warnings:
            _log.warning("%s: %s", op.__name__.lstrip("_"), w)
        return LedgerResult(state=new_state, warnings=list(warnings), record=record)

    # ---- clients ------------------------------------------------------------

    def add_client(self, name: str, **fields) -> LedgerResult:
        return self._run(self._add_client, name, **fields)

    @staticmethod
    def _add_client(state: LedgerState, name: str, **fields):
        if not non_empty(name):
            raise LedgerError("Name cannot be empty.")
        unknown = sorted(set(fields) - _CLIENT_EDITABLE - {"client_id"})
        if unknown:
            raise LedgerError(f"Unknown client field(s): {', '.join(unknown)}.")
        if "status" in fields and fields["status"] not in ("activo", "inactivo"):
            raise LedgerError("Client status must be 'activo' or 'inactivo'.")
        ts = now_ts()
        client = Client(
            client_id=fields.pop("client_id", None) or new_id(),
            name=name.strip(),
            registered_at=ts,
            updated_at=ts,
            **fields,
        )
        return replace(state, clients=state.clients + (client,)), [], client

    def delete_client(self, client_id: str) -> LedgerResult:
        return self._run(self._delete_client, client_id)

    @staticmethod
    def _delete_client(state: LedgerState, client_id: str):
        client = state.client(client_id)
        if not can_delete_client(client_id, state.jobs):
            raise ReferentialIntegrityError(f"Client '{client.name}' has active jobs.")
        job_ids = {j.job_id for j in state.jobs_for(client_id)}
        if any(p.job_id in job_ids for p in state.payments):
            raise ReferentialIntegrityError(f"Client '{client.name}' has registered payments.")
        if any(b.job_id in job_ids and b.status == BUDGET_APPROVED for b in state.budgets):
            raise ReferentialIntegrityError(f"Client '{client.name}' has approved budget versions.")
        new_state = replace(
            state,
            clients=tuple(c for c in state.clients if c.client_id != client_id),
            jobs=tuple(j for j in state.jobs if j.job_id not in job_ids),
            steps=tuple(s for s in state.steps if s.job_id not in job_ids),
            budgets=tuple(b for b in state.budgets if b.job_id not in job_ids),
            budget_counters={k: v for k, v in state.budget_counters.items() if k not in job_ids},
        )
        return new_state, [], client

    # ---- jobs ---------------------------------------------------------------

    def create_job(
        self,
        client_id: str,
        name: str,
        budget_initial: float = 0.0,
        *,
        job_type_id: Optional[str] = None,
        custom_steps: Optional[Iterable[Mapping[str, Any]]] = None,
        status: str = JOB_PENDING,
        description: str = "",
        start_date: Optional[datetime] = None,
        estimated_end_date: Optional[datetime] = None,
    ) -> LedgerResult:
        return self._run(
            self._create_job, client_id, name, budget_initial,
            job_type_id=job_type_id, custom_steps=custom_steps, status=status,
            description=description, start_date=start_date, estimated_end_date=estimated_end_date,
        )

    @staticmethod
    def _create_job(
        state: LedgerState,
        client_id: str,
        name: str,
        budget_initial: float,
        *,
        job_type_id,
        custom_steps,
        status,
        description,
        start_date,
        estimated_end_date,
    ):
        state.client(client_id)
        if not non_empty(name):
            raise LedgerError("Job name cannot be empty.")
        budget = _money_arg(budget_initial, "Initial budget")
        if status not in (JOB_DRAFT, JOB_PENDING):
            raise InvalidTransitionError(
                f"New jobs start as '{JOB_PENDING}' or '{JOB_DRAFT}'.", current=None, requested=status
            )
        if start_date and estimated_end_date and estimated_end_date < start_date:
            raise LedgerError("Estimated end date must not be before the start date.")

        ts = now_ts()
        job_id = new_id()
        steps: list[Step] = []
        if custom_steps is not None:
            for i, row in enumerate(custom_steps, start=1):
                steps.append(Step(
                    step_id=new_id(),
                    job_id=job_id,
                    step_number=i,
                    name=str(row.get("name") or ""),
                    description=str(row.get("description") or ""),
                    cost=_money_arg(row.get("cost", 0.0), "Step cost"),
                    estimated_days=int(row.get("estimated_days") or 0),
                    updated_at=ts,
                ))
        elif job_type_id is not None:
            template = state.job_type(job_type_id)
            for i, tpl in enumerate(sorted(template.steps, key=lambda t: t.number), start=1):
                steps.append(Step(
                    step_id=new_id(),
                    job_id=job_id,
                    step_number=i,
                    name=tpl.name,
                    description=tpl.description,
                    status=tpl.initial_status,
                    cost=round_to_step(tpl.estimated_cost),
                    estimated_days=tpl.estimated_days,
                    updated_at=ts,
                ))

        job = Job(
            job_id=job_id,
            client_id=client_id,
            name=name.strip(),
            budget_initial=budget,
            job_type_id=job_type_id,
            description=description,
            status=status,
            start_date=start_date,
            estimated_end_date=estimated_end_date,
            created_at=ts,
            updated_at=ts,
        )
        new_state = replace(state, jobs=state.jobs + (job,), steps=state.steps + tuple(steps))
        new_state = _cascade_job(new_state, job_id)
        return new_state, [], new_state.job(job_id)

    def delete_job(self, job_id: str) -> LedgerResult:
        return self._run(self._delete_job, job_id)

    @staticmethod
    def _delete_job(state: LedgerState, job_id: str):
        job = state.job(job_id)
        pays = state.payments_for(job_id)
        if pays:
            raise ReferentialIntegrityError(
                f"Job '{job.name}' has {len(pays)} registered payment(s) and cannot be deleted."
            )
        if any(b.status == BUDGET_APPROVED for b in state.budgets_for(job_id)):
            raise ReferentialIntegrityError(f"Job '{job.name}' has an approved budget version and cannot be deleted.")
        new_state = replace(
            state,
            jobs=tuple(j for j in state.jobs if j.job_id != job_id),
            steps=tuple(s for s in state.steps if s.job_id != job_id),
            budgets=tuple(b for b in state.budgets if b.job_id != job_id),
            budget_counters={k: v for k, v in state.budget_counters.items() if k != job_id},
        )
        return _refresh_client(new_state, job.client_id), [], job

    def change_job_status(self, job_id: str, new_status: str) -> LedgerResult:
        return self._run(self._change_job_status, job_id, new_status)

    @staticmethod
    def _change_job_status(state: LedgerState, job_id: str, new_status: str):
        # transitions are judged on fresh totals
        state = _cascade_job(state, job_id)
        tr = transition_job_status(state.job(job_id), state.steps_for(job_id), new_status)
        new_state = replace(state, jobs=_swap(state.jobs, "job_id", tr.entity))
        # Draft/Cancelled jobs stop counting towards debt
        new_state = _refresh_client(new_state, tr.entity.client_id)
        return new_state, tr.warnings, new_state.job(job_id)

    # ---- steps --------------------------------------------------------------

    def add_step(
        self,
        job_id: str,
        name: str,
        cost: float = 0.0,
        *,
        description: str = "",
        estimated_days: int = 0,
    ) -> LedgerResult:
        return self._run(self._add_step, job_id, name, cost, description=description, estimated_days=estimated_days)

    @staticmethod
    def _add_step(state: LedgerState, job_id: str, name: str, cost, *, description: str, estimated_days: int):
        state.job(job_id)
        if not non_empty(name):
            raise LedgerError("Step name cannot be empty.")
        cost = _money_arg(cost, "Step cost")
        last = max((s.step_number for s in state.steps_for(job_id)), default=0)
        step = Step(
            step_id=new_id(),
            job_id=job_id,
            step_number=last + 1,
            name=name.strip(),
            description=description,
            cost=cost,
            estimated_days=int(estimated_days or 0),
            updated_at=now_ts(),
        )
        new_state = _cascade_job(replace(state, steps=state.steps + (step,)), job_id)
        return new_state, [], step

    def update_step(
        self,
        step_id: str,
        *,
        cost: Optional[float] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
        estimated_days: Optional[int] = None,
    ) -> LedgerResult:
        """Edit a step's details. `paid` is not editable; balance follows the new cost."""
        return self._run(
            self._update_step, step_id,
            cost=cost, name=name, description=description, estimated_days=estimated_days,
        )

    @staticmethod
    def _update_step(state: LedgerState, step_id: str, *, cost, name, description, estimated_days):
        step = state.step(step_id)
        changes: dict = {"updated_at": now_ts()}
        if cost is not None:
            changes["cost"] = _money_arg(cost, "Step cost")
        if name is not None:
            if not non_empty(name):
                raise LedgerError("Step name cannot be empty.")
            changes["name"] = name.strip()
        if description is not None:
            changes["description"] = description
        if estimated_days is not None:
            changes["estimated_days"] = int(estimated_days)
        updated = replace(step, **changes)
        warnings = []
        if updated.balance < 0:
            warnings.append(f"Step {updated.step_number} is now overpaid by {fmt_money(-updated.balance)}.")
        new_state = _cascade_job(replace(state, steps=_swap(state.steps, "step_id", updated)), step.job_id)
        return new_state, warnings, new_state.step(step_id)

    def delete_step(self, step_id: str) -> LedgerResult:
        return self._run(self._delete_step, step_id)

    @staticmethod
    def _delete_step(state: LedgerState, step_id: str):
        step = state.step(step_id)
        if not can_delete_step(step_id, state.payments):
            raise ReferentialIntegrityError(
                f"Step {step.step_number} ('{step.name}') has payments and cannot be deleted."
            )
        remaining = [s for s in state.steps_for(step.job_id) if s.step_id != step_id]
        renumbered = [
            s if s.step_number == i else replace(s, step_number=i)
            for i, s in enumerate(remaining, start=1)
        ]
        steps = tuple(s for s in state.steps if s.step_id != step_id)
        new_state = replace(state, steps=_swap_many(steps, "step_id", renumbered))
        return _cascade_job(new_state, step.job_id), [], step

    def change_step_status(self, step_id: str, new_status: str) -> LedgerResult:
        return self._run(self._change_step_status, step_id, new_status)

    def _change_step_status(self, state: LedgerState, step_id: str, new_status: str):
        tr = transition_step_status(state.step(step_id), new_status, custom_states=self._step_columns)
        new_state = replace(state, steps=_swap(state.steps, "step_id", tr.entity))
        return new_state, tr.warnings, tr.entity

    # ---- payments -----------------------------------------------------------

    def register_payment(
        self,
        job_id: str,
        amount: float,
        *,
        step_id: Optional[str] = None,
        date: Optional[datetime] = None,
        method: str = "Efectivo",
        reference: str = "",
        notes: str = "",
    ) -> LedgerResult:
        return self._run(
            self._register_payment, job_id, amount,
            step_id=step_id, date=date, method=method, reference=reference, notes=notes,
        )

    @staticmethod
    def _register_payment(state: LedgerState, job_id: str, amount, *, step_id, date, method, reference, notes):
        state.job(job_id)
        try:
            method = ensure_valid(method, PAYMENT_METHODS, "Payment method")
        except ValueError as e:
            raise LedgerError(str(e)) from e
        if date is not None and not isinstance(date, datetime):
            raise LedgerError(f"Payment date must be a datetime, got {type(date).__name__}.")
        ts = now_ts()
        date = as_local_naive(date)
        if date is not None and date > ts:
            raise LedgerError("Payment date cannot be in the future.")

        alloc = allocate_payment(state.steps_for(job_id), amount, step_id)
        payment = Payment(
            payment_id=new_id(),
            job_id=job_id,
            step_id=step_id,
            amount=alloc.requested_total,
            date=date or ts,
            method=method,
            reference=(reference or "").strip(),
            notes=(notes or "").strip(),
            allocations=dict(alloc.allocations),
            unapplied=alloc.unapplied,
            registered_at=ts,
        )
        new_state = replace(
            state,
            steps=_swap_many(state.steps, "step_id", alloc.steps),
            payments=state.payments + (payment,),
        )
        return _cascade_job(new_state, job_id), alloc.warnings, payment

    def delete_payment(self, payment_id: str) -> LedgerResult:
        return self._run(self._delete_payment, payment_id)

    @staticmethod
    def _delete_payment(state: LedgerState, payment_id: str):
        payment = state.payment(payment_id)
        steps = reverse_allocations(state.steps_for(payment.job_id), payment.allocations)
        new_state = replace(
            state,
            steps=_swap_many(state.steps, "step_id", steps),
            payments=tuple(p for p in state.payments if p.payment_id != payment_id),
        )
        return _cascade_job(new_state, payment.job_id), [], payment

    # ---- budget versions ----------------------------------------------------

    def create_budget(
        self,
        job_id: str,
        *,
        snapshot: Optional[BudgetSnapshot] = None,
        discount: float = 0.0,
        extra_charges: float = 0.0,
        tax_rate: Optional[float] = DEFAULT_TAX_RATE,
        terms: Optional[str] = None,
    ) -> LedgerResult:
        """Snapshot the job's current step costs (or the given snapshot) as a new draft version."""
        return self._run(
            self._create_budget, job_id,
            snapshot=snapshot, discount=discount, extra_charges=extra_charges, tax_rate=tax_rate, terms=terms,
        )

    @staticmethod
    def _create_budget(state: LedgerState, job_id: str, *, snapshot, discount, extra_charges, tax_rate, terms):
        state.job(job_id)
        if snapshot is None:
            snapshot = snapshot_from_steps(
                state.steps_for(job_id),
                discount=_money_arg(discount, "Discount"),
                extra_charges=_money_arg(extra_charges, "Extra charges"),
                tax_rate=tax_rate,
                terms=terms,
            )
        bv = create_budget_version(
            job_id, state.budgets, snapshot, high_water=state.budget_counters.get(job_id, 0)
        )
        counters = dict(state.budget_counters)
        counters[job_id] = bv.version
        return replace(state, budgets=state.budgets + (bv,), budget_counters=counters), [], bv

    def change_budget_status(self, budget_id: str, new_status: str, reason: Optional[str] = None) -> LedgerResult:
        return self._run(self._change_budget_status, budget_id, new_status, reason)

    @staticmethod
    def _change_budget_status(state: LedgerState, budget_id: str, new_status: str, reason):
        bv = transition_budget_status(state.budget(budget_id), new_status, reason)
        return replace(state, budgets=_swap(state.budgets, "budget_id", bv)), [], bv

    def delete_budget(self, budget_id: str) -> LedgerResult:
        return self._run(self._delete_budget, budget_id)

    @staticmethod
    def _delete_budget(state: LedgerState, budget_id: str):
        bv = state.budget(budget_id)
        remaining = tuple(delete_budget_version(state.budgets, budget_id))
        # a deleted number stays burned even when no counter was loaded for the job
        counters = dict(state.budget_counters)
        counters[bv.job_id] = max(counters.get(bv.job_id, 0), bv.version)
        return replace(state, budgets=remaining, budget_counters=counters), [], bv

    # ---- full resync --------------------------------------------------------

    def recalculate_all(self) -> LedgerResult:
        """Recompute every job and client from scratch (e.g. after importing data)."""
        return self._run(self._recalculate_all)

    @staticmethod
    def _recalculate_all(state: LedgerState):
        jobs = tuple(apply_job_totals(j, state.steps, state.payments) for j in state.jobs)
        new_state = replace(state, jobs=jobs)
        for c in state.clients:
            new_state = _refresh_client(new_state, c.client_id)
        return new_state, [], None
