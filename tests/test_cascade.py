# tests/test_cascade.py
import pytest

from lexnotar.modules.ledger import Client, Payment, apply_payment, cascade, recompute_client_debt, recompute_job
from lexnotar.modules.ledger.cascade import apply_job_totals
from lexnotar.modules.ledger.status import JOB_CANCELLED

from conftest import FIXED_NOW, make_job, make_step


def test_recompute_job_matches_step_sums(steps):
    paid = apply_payment(steps, 120)
    t = recompute_job(paid)
    assert t.cost_final == pytest.approx(150.0)
    assert t.paid_total == pytest.approx(120.0)
    assert t.balance_due == pytest.approx(30.0)


def test_cascade_updates_job_then_client(state):
    job = state.jobs[0]
    client = state.clients[0]
    new_steps = apply_payment(state.steps, 120)

    res = cascade(job, new_steps, client, state.jobs)

    assert res.job.paid_total == pytest.approx(120.0)
    assert res.job.balance_due == pytest.approx(30.0)
    # client debt is computed from the fresh job, not the stale one
    assert res.client.debt_total == pytest.approx(30.0)
    assert job.paid_total == 0.0 and client.debt_total == 150.0


def test_cascade_is_idempotent(state):
    new_steps = apply_payment(state.steps, 40)
    first = cascade(state.jobs[0], new_steps, state.clients[0], state.jobs)
    second = cascade(first.job, new_steps, first.client, [first.job])
    assert second.job is first.job
    assert second.client is first.client


def test_cascade_counts_all_client_jobs():
    other = make_job("J2", "C1", steps=[make_step("x", 1, 500.0, job_id="J2")])
    dropped = make_job("J3", "C1", steps=[make_step("y", 1, 70.0, job_id="J3")], status=JOB_CANCELLED)
    steps = [make_step("S1", 1, 100.0)]
    job = make_job("J1", "C1", steps=steps)
    client = Client(client_id="C1", name="Ana")

    res = cascade(job, apply_payment(steps, 100), client, [job, other, dropped])

    assert res.job.balance_due == 0.0
    assert res.client.debt_total == pytest.approx(500.0)


def test_cascade_ignores_other_jobs_steps():
    steps = [make_step("S1", 1, 100.0), make_step("Z", 1, 999.0, job_id="J9")]
    job = make_job("J1", "C1")
    res = cascade(job, steps, Client(client_id="C1", name="Ana"), [job])
    assert res.job.cost_final == pytest.approx(100.0)


def test_unapplied_credit_follows_payments(steps):
    job = make_job("J1", "C1", steps=steps)
    pays = [
        Payment(payment_id="P1", job_id="J1", amount=200.0, date=FIXED_NOW, unapplied=50.0),
        Payment(payment_id="P2", job_id="J2", amount=10.0, date=FIXED_NOW, unapplied=10.0),
    ]
    updated = apply_job_totals(job, steps, pays)
    assert updated.unapplied_credit == pytest.approx(50.0)
    # without payments the credit is left alone
    assert apply_job_totals(updated, steps) is updated


def test_recompute_client_debt_excludes_cancelled():
    jobs = [
        make_job("J1", steps=[make_step("a", 1, 10.0)]),
        make_job("J2", steps=[make_step("b", 1, 5.0, job_id="J2")], status=JOB_CANCELLED),
    ]
    assert recompute_client_debt(jobs) == pytest.approx(10.0)
