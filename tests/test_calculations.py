# tests/test_calculations.py
import pytest

from lexnotar.modules.ledger import Payment, client_debt, job_progress, job_totals, step_balance
from lexnotar.modules.ledger.calculations import (
    all_steps_completed,
    can_delete_client,
    can_delete_step,
    steps_with_balance,
)
from lexnotar.modules.ledger.status import JOB_CANCELLED, JOB_DRAFT, JOB_IN_PROGRESS, STEP_COMPLETED

from conftest import FIXED_NOW, make_job, make_step


def test_step_balance_is_not_clamped():
    s = make_step("S1", 1, cost=50.0, paid=80.0)
    assert step_balance(s) == pytest.approx(-30.0)
    # the derived field agrees with the function
    assert s.balance == pytest.approx(-30.0)


def test_job_totals_of_no_steps_is_zero():
    t = job_totals([])
    assert (t.cost_final, t.paid_total, t.balance_due) == (0.0, 0.0, 0.0)


def test_job_totals_sums_cost_and_paid():
    t = job_totals([make_step("S1", 1, 100.0, 40.0), make_step("S2", 2, 60.5, 60.5)])
    assert t.cost_final == pytest.approx(160.5)
    assert t.paid_total == pytest.approx(100.5)
    assert t.balance_due == pytest.approx(60.0)


def test_job_totals_has_no_float_drift():
    # 0.1 + 0.2 must not come out as 0.30000000000000004
    t = job_totals([make_step("S1", 1, 0.1, 0.1), make_step("S2", 2, 0.2, 0.2)])
    assert t.cost_final == 0.3
    assert t.balance_due == 0.0


def test_client_debt_skips_draft_and_cancelled_jobs():
    jobs = [
        make_job("J1", "C1", steps=[make_step("a", 1, 100.0, job_id="J1")]),
        make_job("J2", "C1", steps=[make_step("b", 1, 70.0, job_id="J2")], status=JOB_DRAFT),
        make_job("J3", "C1", steps=[make_step("c", 1, 30.0, job_id="J3")], status=JOB_CANCELLED),
        make_job("J4", "C2", steps=[make_step("d", 1, 999.0, job_id="J4")]),
    ]
    assert client_debt("C1", jobs) == pytest.approx(100.0)
    assert client_debt("C2", jobs) == pytest.approx(999.0)
    assert client_debt("nobody", jobs) == 0.0


def test_client_debt_can_go_negative_when_overpaid():
    jobs = [make_job("J1", "C1", steps=[make_step("a", 1, 50.0, 80.0)])]
    assert client_debt("C1", jobs) == pytest.approx(-30.0)


def test_progress_and_completion_helpers():
    done = make_step("S1", 1, 10.0, 10.0, status=STEP_COMPLETED, completion_date=FIXED_NOW)
    open_ = make_step("S2", 2, 10.0)
    assert job_progress([]) == 0
    assert job_progress([done, open_]) == 50
    assert all_steps_completed([done])
    assert not all_steps_completed([done, open_])
    assert not all_steps_completed([])
    assert steps_with_balance([done, open_]) == [open_]


def test_can_delete_step_checks_targets_and_allocations():
    direct = Payment(payment_id="P1", job_id="J1", amount=10.0, date=FIXED_NOW, step_id="S1",
                     allocations={"S1": 10.0})
    general = Payment(payment_id="P2", job_id="J1", amount=10.0, date=FIXED_NOW,
                      allocations={"S2": 10.0})
    assert not can_delete_step("S1", [direct])
    assert not can_delete_step("S2", [direct, general])
    assert can_delete_step("S3", [direct, general])


def test_can_delete_client_only_without_active_jobs():
    jobs = [make_job("J1", "C1", status=JOB_IN_PROGRESS), make_job("J2", "C2", status=JOB_CANCELLED)]
    assert not can_delete_client("C1", jobs)
    assert can_delete_client("C2", jobs)
