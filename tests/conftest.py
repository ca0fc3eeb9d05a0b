# lexnotar/tests/conftest.py
# ---------------------------------------------------------------------
# Ground rules:
# - pytest-qt owns QApplication (use qapp/qtbot fixtures)
# - Every DB test gets its own in-memory database (schema + seed applied)
# - For every test: BEGIN; ... ROLLBACK; the repo nests a savepoint inside
# - conn.row_factory = sqlite3.Row, PRAGMA foreign_keys=ON
# - Engine tests build records directly with the small factories below
# ---------------------------------------------------------------------

from __future__ import annotations

import os
import re
import sqlite3
from datetime import datetime

import pytest

# Run Qt headless when no display is available.
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from PySide6 import QtCore

from lexnotar.database import get_connection
from lexnotar.modules.ledger import Client, Job, LedgerService, LedgerState, Step


# ---------- Qt: let pytest-qt own the app ----------
@pytest.fixture(scope="session")
def app(qapp):  # alias to match code that expects an `app` fixture
    return qapp


# ---------- Silence benign Qt warnings ----------
_BENIGN_QT_PATTERNS = [
    r"^QObject::connect: .* already connected",
    r"^QBasicTimer::stop: Failed\. Platform timer not running\.",
]

@pytest.fixture(autouse=True, scope="session")
def _silence_benign_qt():
    """Drop known harmless Qt messages; everything else is printed as usual."""
    rx = [re.compile(p) for p in _BENIGN_QT_PATTERNS]

    def handler(msg_type, context, message):
        text = str(message)
        if any(r.search(text) for r in rx):
            return
        print(text)

    original = QtCore.qInstallMessageHandler(handler)
    try:
        yield
    finally:
        QtCore.qInstallMessageHandler(original)


# ---------- Per-test connection with transaction rollback ----------
@pytest.fixture()
def conn():
    """Fresh in-memory DB per test, wrapped in a transaction rolled back at the end."""
    con = get_connection(":memory:")
    con.execute("BEGIN;")
    try:
        yield con
        con.rollback()
    finally:
        con.close()


# ---------- Record factories ----------
FIXED_NOW = datetime(2025, 3, 14, 10, 30)


def make_step(step_id: str, number: int, cost: float, paid: float = 0.0, *, job_id: str = "J1", **kw) -> Step:
    return Step(step_id=step_id, job_id=job_id, step_number=number, name=f"Step {number}",
                cost=cost, paid=paid, **kw)


def make_job(job_id: str = "J1", client_id: str = "C1", *, steps=(), **kw) -> Job:
    cost = round(sum(s.cost for s in steps), 2)
    paid = round(sum(s.paid for s in steps), 2)
    return Job(job_id=job_id, client_id=client_id, name=f"Job {job_id}",
               cost_final=cost, paid_total=paid, **kw)


@pytest.fixture()
def steps():
    """Three steps of J1: 100 (fully unpaid), 50, 0."""
    return [make_step("S1", 1, 100.0), make_step("S2", 2, 50.0), make_step("S3", 3, 0.0)]


@pytest.fixture()
def state(steps) -> LedgerState:
    """One client with one pending job J1 owing 150."""
    job = make_job("J1", "C1", steps=steps)
    client = Client(client_id="C1", name="Ana Gómez", debt_total=150.0)
    return LedgerState(clients=(client,), jobs=(job,), steps=tuple(steps))


@pytest.fixture()
def service(state) -> LedgerService:
    return LedgerService(state)
