"""
ledger/status.py

Canonical status values for jobs, steps and budget versions, plus the small
helpers the table models and state machines share (labels, ordering,
normalization). Stored values are the ones the practice already uses on
screen, so they double as labels for jobs and steps.
"""
from __future__ import annotations

from typing import Iterable, Optional

# ---------- Jobs ----------
JOB_DRAFT = "Borrador"
JOB_PENDING = "Pendiente"
JOB_IN_PROGRESS = "En proceso"
JOB_COMPLETED = "Completado"
JOB_CANCELLED = "Cancelado"

JOB_STATES: tuple[str, ...] = (
    JOB_DRAFT,
    JOB_PENDING,
    JOB_IN_PROGRESS,
    JOB_COMPLETED,
    JOB_CANCELLED,
)

# jobs that never count towards a client's debt
JOB_STATES_WITHOUT_DEBT: frozenset[str] = frozenset({JOB_DRAFT, JOB_CANCELLED})

# jobs that block deleting their client
JOB_STATES_ACTIVE: frozenset[str] = frozenset({JOB_PENDING, JOB_IN_PROGRESS})

# ---------- Steps ----------
STEP_PENDING = "Pendiente"
STEP_IN_PROGRESS = "En proceso"
STEP_COMPLETED = "Completado"

# kanban columns configured by the practice between "En proceso" and "Completado"
DEFAULT_STEP_CUSTOM_STATES: tuple[str, ...] = ("Mesa entrada", "Mesa salida", "Listo retirar")


def step_states(custom: Optional[Iterable[str]] = None) -> tuple[str, ...]:
    """Full ordered step column list: Pendiente, En proceso, <custom...>, Completado."""
    middle = DEFAULT_STEP_CUSTOM_STATES if custom is None else tuple(custom)
    return (STEP_PENDING, STEP_IN_PROGRESS, *middle, STEP_COMPLETED)


STEP_STATES: tuple[str, ...] = step_states()

# ---------- Budget versions ----------
BUDGET_DRAFT = "borrador"
BUDGET_SENT = "enviado"
BUDGET_APPROVED = "aprobado"
BUDGET_REJECTED = "rechazado"

BUDGET_STATES: tuple[str, ...] = (BUDGET_DRAFT, BUDGET_SENT, BUDGET_APPROVED, BUDGET_REJECTED)

BUDGET_LABELS = {
    BUDGET_DRAFT: "Borrador",
    BUDGET_SENT: "Enviado",
    BUDGET_APPROVED: "Aprobado",
    BUDGET_REJECTED: "Rechazado",
}

# ---------- Payment methods ----------
PAYMENT_METHODS: tuple[str, ...] = ("Efectivo", "Transferencia", "Tarjeta", "Cheque")


# ---------- API ----------

def normalize(state: Optional[str], valid: Iterable[str]) -> Optional[str]:
    """
    Match `state` against `valid` ignoring case and surrounding whitespace.
    Returns the canonical spelling, or None if there is no match.
    Does NOT invent synonyms.
    """
    if state is None:
        return None
    s = str(state).strip().lower()
    for v in valid:
        if v.lower() == s:
            return v
    return None


def ensure_valid(state: Optional[str], valid: Iterable[str], field: str = "status") -> str:
    """Return the canonical value or raise ValueError listing the allowed ones."""
    valid = tuple(valid)
    s = normalize(state, valid)
    if s is None:
        raise ValueError(f"{field} must be one of: {', '.join(valid)}")
    return s


def budget_label(state: str) -> str:
    """Human label ('Aprobado'). If unknown, returns the original string title-cased."""
    s = normalize(state, BUDGET_STATES)
    if s is not None:
        return BUDGET_LABELS[s]
    return (state or "").strip().title()


def sort_key(state: str, order: Iterable[str]) -> int:
    """Stable sort key using the given order; unknown states sort after known ones."""
    order = tuple(order)
    s = normalize(state, order)
    return order.index(s) if s is not None else 999
