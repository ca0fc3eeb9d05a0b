"""
Job screen ("trabajos") table models.

StepsTableModel and JobsTableModel are fed from LedgerService.state by the
job list and job detail views; they only read ledger records.
"""
