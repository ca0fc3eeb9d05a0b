"""LexNotar: job, payment and budget reconciliation for a notarial practice."""

__version__ = "0.1.0"
