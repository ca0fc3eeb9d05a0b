from .ledger_repo import ConstraintViolationError, LedgerRepo, open_ledger_service

__all__ = ["LedgerRepo", "ConstraintViolationError", "open_ledger_service"]
