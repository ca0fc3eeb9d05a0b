# tests/test_ledger_repo.py
from __future__ import annotations

import sqlite3
from dataclasses import replace

import pytest

from lexnotar.database.repositories import ConstraintViolationError, LedgerRepo, open_ledger_service
from lexnotar.modules.ledger import Payment
from lexnotar.modules.ledger.status import BUDGET_APPROVED, JOB_CANCELLED

from conftest import FIXED_NOW


def _by_id(items, key):
    return {getattr(i, key): i for i in items}


def test_seeded_job_types_load_with_their_steps(conn: sqlite3.Connection):
    types = _by_id(LedgerRepo(conn).list_job_types(), "job_type_id")
    assert set(types) == {"1", "2", "3"}
    assert [s.number for s in types["2"].steps] == [1, 2, 3, 4, 5, 6, 7]
    assert types["1"].suggested_price == 500000.0


def test_service_mutations_round_trip_through_the_db(conn: sqlite3.Connection):
    svc = open_ledger_service(conn)
    client = svc.add_client("María López", document_id="1.234.567").record
    job = svc.create_job(client.client_id, "Compraventa Lote 5", job_type_id="2").record
    first = svc.state.steps_for(job.job_id)[0]
    svc.update_step(first.step_id, cost=400000)
    svc.update_step(svc.state.steps_for(job.job_id)[1].step_id, cost=250000)
    svc.register_payment(job.job_id, 500000, method="Cheque", date=FIXED_NOW)
    svc.create_budget(job.job_id, discount=50000)

    loaded = LedgerRepo(conn).load_state()

    assert _by_id(loaded.clients, "client_id") == _by_id(svc.state.clients, "client_id")
    assert _by_id(loaded.jobs, "job_id") == _by_id(svc.state.jobs, "job_id")
    assert _by_id(loaded.steps, "step_id") == _by_id(svc.state.steps, "step_id")
    assert _by_id(loaded.payments, "payment_id") == _by_id(svc.state.payments, "payment_id")
    assert _by_id(loaded.budgets, "budget_id") == _by_id(svc.state.budgets, "budget_id")
    assert loaded.budget_counters == {job.job_id: 1}

    # derived columns are stored too, for reporting queries
    row = conn.execute("SELECT balance_due FROM jobs WHERE job_id=?", (job.job_id,)).fetchone()
    assert float(row["balance_due"]) == 150000.0
    row = conn.execute("SELECT debt_total FROM clients WHERE client_id=?", (client.client_id,)).fetchone()
    assert float(row["debt_total"]) == 150000.0


def test_payment_allocations_keep_their_order(conn: sqlite3.Connection):
    svc = open_ledger_service(conn)
    c = svc.add_client("Ana").record
    job = svc.create_job(c.client_id, "Poder", custom_steps=[
        {"name": "Consulta", "cost": 100}, {"name": "Firma", "cost": 100}, {"name": "Entrega", "cost": 100},
    ]).record
    pay = svc.register_payment(job.job_id, 250).record

    loaded = LedgerRepo(conn).load_state().payment(pay.payment_id)
    assert list(loaded.allocations.values()) == [100.0, 100.0, 50.0]
    assert list(loaded.allocations) == list(pay.allocations)


def test_deleted_rows_are_removed(conn: sqlite3.Connection):
    svc = open_ledger_service(conn)
    c = svc.add_client("Ana").record
    job = svc.create_job(c.client_id, "Poder", custom_steps=[{"name": "Firma", "cost": 10}]).record
    pay = svc.register_payment(job.job_id, 5).record
    svc.delete_payment(pay.payment_id)
    svc.change_job_status(job.job_id, JOB_CANCELLED)
    svc.delete_client(c.client_id)

    for table in ("clients", "jobs", "steps", "payments", "payment_allocations"):
        assert conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0] == 0, table


def test_budget_counter_survives_deleting_the_version(conn: sqlite3.Connection):
    svc = open_ledger_service(conn)
    c = svc.add_client("Ana").record
    job = svc.create_job(c.client_id, "Poder").record
    v1 = svc.create_budget(job.job_id).record
    svc.delete_budget(v1.budget_id)

    repo = LedgerRepo(conn)
    assert repo.budget_high_water(job.job_id) == 1
    # a service started later over the same DB keeps counting
    assert open_ledger_service(conn).create_budget(job.job_id).record.version == 2


def test_approved_versions_are_protected_by_the_db(conn: sqlite3.Connection):
    svc = open_ledger_service(conn)
    c = svc.add_client("Ana").record
    job = svc.create_job(c.client_id, "Poder").record
    v = svc.create_budget(job.job_id).record
    svc.change_budget_status(v.budget_id, BUDGET_APPROVED)

    # later saves leave the approved row alone
    svc.add_step(job.job_id, "Extra", 10)
    assert LedgerRepo(conn).load_state().budget(v.budget_id).status == BUDGET_APPROVED

    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("UPDATE budget_versions SET total=0 WHERE budget_id=?", (v.budget_id,))
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("DELETE FROM budget_versions WHERE budget_id=?", (v.budget_id,))


def test_refused_save_rolls_back_and_keeps_service_state(conn: sqlite3.Connection):
    svc = open_ledger_service(conn)
    c = svc.add_client("Ana").record
    job = svc.create_job(c.client_id, "Poder", custom_steps=[{"name": "Firma", "cost": 10}]).record
    repo = LedgerRepo(conn)

    orphan = Payment(payment_id="P-X", job_id="no-such-job", amount=5.0, date=FIXED_NOW)
    broken = replace(
        svc.state,
        clients=(replace(svc.state.clients[0], name="Renamed"),),
        payments=(orphan,),
    )
    with pytest.raises(ConstraintViolationError) as exc:
        repo.save_state(broken)
    assert isinstance(exc.value.original, sqlite3.IntegrityError)

    # nothing from the failed save is visible
    assert repo.load_state().client(c.client_id).name == "Ana"
    assert repo.load_state().job(job.job_id).cost_final == 10.0


def test_high_water_falls_back_to_stored_versions(conn: sqlite3.Connection):
    svc = open_ledger_service(conn)
    c = svc.add_client("Ana").record
    job = svc.create_job(c.client_id, "Poder").record
    v1 = svc.create_budget(job.job_id).record
    conn.execute("DELETE FROM budget_version_counters")

    repo = LedgerRepo(conn)
    assert repo.budget_high_water(job.job_id) == 1
    assert repo.load_state().budget_counters == {job.job_id: 1}

    fresh = open_ledger_service(conn)
    fresh.delete_budget(v1.budget_id)
    assert fresh.create_budget(job.job_id).record.version == 2
