"""
Reconciliation engine public API.

Usage:
    from lexnotar.modules.ledger import (
        # Records
        Client, Job, Step, Payment, BudgetVersion, BudgetSnapshot, JobType, StepTemplate,
        # Entry points
        apply_payment, recompute_job, recompute_client_debt,
        transition_job_status, transition_step_status,
        create_budget_version, transition_budget_status,
        # Stateful facade
        LedgerService, LedgerState,
    )
"""
from .allocator import Allocation, allocate_payment, apply_payment, reverse_allocations
from .budgets import (
    create_budget_version,
    delete_budget_version,
    next_version,
    snapshot_from_steps,
    transition_budget_status,
)
from .calculations import client_debt, job_progress, job_totals, step_balance
from .cascade import CascadeResult, cascade, recompute_client_debt, recompute_job
from .entities import (
    BudgetSnapshot,
    BudgetVersion,
    Client,
    Job,
    JobTotals,
    JobType,
    Payment,
    Step,
    StepTemplate,
    Transition,
)
from .errors import (
    BudgetNotFoundError,
    ClientNotFoundError,
    DomainError,
    EntityNotFoundError,
    ImmutableRecordError,
    InvalidAmountError,
    InvalidTransitionError,
    JobNotFoundError,
    LedgerError,
    PaymentNotFoundError,
    ReferentialIntegrityError,
    StepNotFoundError,
)
from .lifecycle import transition_job_status, transition_step_status
from .service import LedgerResult, LedgerService, LedgerState

__all__ = [
    # records
    "BudgetSnapshot",
    "BudgetVersion",
    "Client",
    "Job",
    "JobTotals",
    "JobType",
    "Payment",
    "Step",
    "StepTemplate",
    "Transition",
    # arithmetic / allocation / cascade
    "step_balance",
    "job_totals",
    "job_progress",
    "client_debt",
    "Allocation",
    "allocate_payment",
    "apply_payment",
    "reverse_allocations",
    "CascadeResult",
    "cascade",
    "recompute_job",
    "recompute_client_debt",
    # lifecycle / budgets
    "transition_job_status",
    "transition_step_status",
    "next_version",
    "snapshot_from_steps",
    "create_budget_version",
    "transition_budget_status",
    "delete_budget_version",
    # service
    "LedgerService",
    "LedgerState",
    "LedgerResult",
    # errors
    "DomainError",
    "LedgerError",
    "InvalidAmountError",
    "ReferentialIntegrityError",
    "InvalidTransitionError",
    "ImmutableRecordError",
    "EntityNotFoundError",
    "ClientNotFoundError",
    "JobNotFoundError",
    "StepNotFoundError",
    "PaymentNotFoundError",
    "BudgetNotFoundError",
]
