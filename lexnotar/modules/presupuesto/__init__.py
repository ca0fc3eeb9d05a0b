"""
Budget screen ("presupuestos") table model.

BudgetVersionsTableModel lists LedgerState.budgets_for(job_id) for the job
detail view; IS_LOCKED_ROLE lets the view disable edit/delete on approved rows.
"""
