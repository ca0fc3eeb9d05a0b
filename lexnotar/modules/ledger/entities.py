"""
ledger/entities.py

Plain records handed to (and returned by) the reconciliation engine.

Derived money fields that must always equal a formula of other fields
(`Step.balance`, `Job.balance_due`) are not constructor arguments: they are
computed in __post_init__, so `dataclasses.replace` keeps them consistent.
The engine never mutates a record in place; it returns replaced copies.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ...utils.helpers import round_to_step
from .status import BUDGET_DRAFT, JOB_PENDING, STEP_PENDING


@dataclass
class Client:
    client_id: str
    name: str
    document_id: str = ""
    phone: str = ""
    email: str = ""
    address: str = ""
    notes: str = ""
    status: str = "activo"
    # derived; written only by the cascade
    debt_total: float = 0.0
    registered_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class StepTemplate:
    number: int
    name: str
    description: str = ""
    initial_status: str = STEP_PENDING
    estimated_days: int = 0
    estimated_cost: float = 0.0
    optional: bool = False


@dataclass
class JobType:
    job_type_id: str
    name: str
    description: str = ""
    suggested_price: float = 0.0
    steps: list[StepTemplate] = field(default_factory=list)


@dataclass
class Job:
    job_id: str
    client_id: str
    name: str
    budget_initial: float = 0.0
    job_type_id: Optional[str] = None
    description: str = ""
    status: str = JOB_PENDING
    # derived from the job's steps by the cascade
    cost_final: float = 0.0
    paid_total: float = 0.0
    # general payments nobody owed anything for
    unapplied_credit: float = 0.0
    start_date: Optional[datetime] = None
    estimated_end_date: Optional[datetime] = None
    completion_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    balance_due: float = field(init=False, default=0.0)

    def __post_init__(self) -> None:
        self.balance_due = round_to_step(self.cost_final - self.paid_total)


@dataclass
class Step:
    step_id: str
    job_id: str
    step_number: int
    name: str
    cost: float = 0.0
    paid: float = 0.0
    status: str = STEP_PENDING
    description: str = ""
    estimated_days: int = 0
    completion_date: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    balance: float = field(init=False, default=0.0)

    def __post_init__(self) -> None:
        self.balance = round_to_step(self.cost - self.paid)


@dataclass
class Payment:
    payment_id: str
    job_id: str
    amount: float
    date: datetime
    method: str = "Efectivo"
    # None means a general payment distributed across the job's steps
    step_id: Optional[str] = None
    reference: str = ""
    notes: str = ""
    # step_id -> amount actually applied to that step when registered
    allocations: dict[str, float] = field(default_factory=dict)
    unapplied: float = 0.0
    registered_at: Optional[datetime] = None

    @property
    def is_general(self) -> bool:
        return self.step_id is None


@dataclass
class BudgetSnapshot:
    subtotal: float
    discount: float = 0.0
    extra_charges: float = 0.0
    tax: float = 0.0
    terms: Optional[str] = None

    @property
    def total(self) -> float:
        return round_to_step(self.subtotal - self.discount + self.extra_charges + self.tax)


@dataclass
class BudgetVersion:
    budget_id: str
    job_id: str
    version: int
    subtotal: float
    discount: float
    extra_charges: float
    tax: float
    total: float
    status: str = BUDGET_DRAFT
    terms: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None


@dataclass(frozen=True)
class JobTotals:
    cost_final: float
    paid_total: float
    balance_due: float


@dataclass
class Transition:
    """Outcome of a status change: the updated record plus advisory warnings."""
    entity: object
    warnings: list[str] = field(default_factory=list)
