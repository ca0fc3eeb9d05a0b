from __future__ import annotations


# Domain-level error the controller can surface directly (e.g., toast/snackbar)
class DomainError(Exception):
    pass


class LedgerError(DomainError):
    """Base class for reconciliation errors. Raised before anything is mutated."""


class InvalidAmountError(LedgerError):
    """Payment amount is missing, unparsable or not strictly positive."""


class ReferentialIntegrityError(LedgerError):
    """Record is still referenced (payments on a step/job, active jobs on a client)."""


class InvalidTransitionError(LedgerError):
    """Requested status change is not defined by the state machine."""

    def __init__(self, message: str, *, current: str | None = None, requested: str | None = None):
        super().__init__(message)
        self.current = current
        self.requested = requested


class ImmutableRecordError(LedgerError):
    """Approved budget versions can be neither changed nor deleted."""


class EntityNotFoundError(LedgerError):
    """Referenced id does not exist in the collections handed to the engine."""


class ClientNotFoundError(EntityNotFoundError):
    pass


class JobNotFoundError(EntityNotFoundError):
    pass


class StepNotFoundError(EntityNotFoundError):
    pass


class PaymentNotFoundError(EntityNotFoundError):
    pass


class BudgetNotFoundError(EntityNotFoundError):
    pass
