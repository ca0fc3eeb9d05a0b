# tests/test_lifecycle.py
import pytest

from lexnotar.modules.ledger import InvalidTransitionError, transition_job_status, transition_step_status
from lexnotar.modules.ledger.lifecycle import allowed_job_transitions
from lexnotar.modules.ledger.status import (
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_DRAFT,
    JOB_IN_PROGRESS,
    JOB_PENDING,
    STEP_COMPLETED,
    STEP_IN_PROGRESS,
    STEP_PENDING,
)

from conftest import FIXED_NOW, make_job, make_step


# ---------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------
@pytest.mark.parametrize("current,target", [
    (JOB_DRAFT, JOB_PENDING),
    (JOB_PENDING, JOB_IN_PROGRESS),
    (JOB_PENDING, JOB_CANCELLED),
    (JOB_IN_PROGRESS, JOB_CANCELLED),
    (JOB_CANCELLED, JOB_COMPLETED),
])
def test_defined_job_transitions_succeed(current, target):
    job = make_job(status=current)
    tr = transition_job_status(job, [], target, now=FIXED_NOW)
    assert tr.entity.status == target
    assert tr.entity.updated_at == FIXED_NOW


@pytest.mark.parametrize("current,target", [
    (JOB_COMPLETED, JOB_PENDING),
    (JOB_COMPLETED, JOB_CANCELLED),
    (JOB_IN_PROGRESS, JOB_PENDING),
    (JOB_DRAFT, JOB_IN_PROGRESS),
    (JOB_CANCELLED, JOB_PENDING),
])
def test_undefined_job_transitions_raise(current, target):
    job = make_job(status=current)
    with pytest.raises(InvalidTransitionError) as exc:
        transition_job_status(job, [], target)
    assert exc.value.current == current
    assert exc.value.requested == target


def test_unknown_job_status_raises():
    with pytest.raises(InvalidTransitionError):
        transition_job_status(make_job(), [], "Archivado")


def test_job_status_input_is_normalized():
    tr = transition_job_status(make_job(), [], "  en PROCESO ")
    assert tr.entity.status == JOB_IN_PROGRESS


def test_completing_with_open_balance_warns_but_succeeds():
    steps = [make_step("S1", 1, 500.0)]
    job = make_job(status=JOB_IN_PROGRESS, steps=steps)
    tr = transition_job_status(job, steps, JOB_COMPLETED, now=FIXED_NOW)

    assert tr.entity.status == JOB_COMPLETED
    assert tr.entity.completion_date == FIXED_NOW
    assert any("500.00" in w for w in tr.warnings)
    assert any("not completed" in w for w in tr.warnings)


def test_completing_a_settled_job_has_no_warnings():
    steps = [make_step("S1", 1, 100.0, 100.0, status=STEP_COMPLETED)]
    job = make_job(status=JOB_IN_PROGRESS, steps=steps)
    tr = transition_job_status(job, steps, JOB_COMPLETED)
    assert tr.warnings == []


def test_completed_jobs_offer_no_transitions():
    assert allowed_job_transitions(JOB_COMPLETED) == frozenset()
    assert JOB_COMPLETED in allowed_job_transitions(JOB_DRAFT)


# ---------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------
def test_step_moves_forward_and_may_skip_columns():
    s = make_step("S1", 1, 10.0)
    tr = transition_step_status(s, "Mesa salida", now=FIXED_NOW)
    assert tr.entity.status == "Mesa salida"
    assert tr.entity.completion_date is None


def test_step_cannot_move_backwards():
    s = make_step("S1", 1, 10.0, status="Mesa entrada")
    with pytest.raises(InvalidTransitionError):
        transition_step_status(s, STEP_IN_PROGRESS)
    with pytest.raises(InvalidTransitionError):
        transition_step_status(s, "Mesa entrada")


def test_completing_step_with_balance_warns_and_stamps_date():
    s = make_step("S1", 1, 80.0, 30.0, status=STEP_IN_PROGRESS)
    tr = transition_step_status(s, STEP_COMPLETED, now=FIXED_NOW)
    assert tr.entity.status == STEP_COMPLETED
    assert tr.entity.completion_date == FIXED_NOW
    assert tr.warnings and "50.00" in tr.warnings[0]


def test_completed_step_is_final():
    s = make_step("S1", 1, 10.0, 10.0, status=STEP_COMPLETED)
    with pytest.raises(InvalidTransitionError):
        transition_step_status(s, STEP_PENDING)


def test_custom_board_columns():
    s = make_step("S1", 1, 10.0)
    tr = transition_step_status(s, "Firma", custom_states=["Firma", "Registro"])
    assert tr.entity.status == "Firma"
    with pytest.raises(InvalidTransitionError):
        # not a column of this board
        transition_step_status(s, "Mesa entrada", custom_states=["Firma", "Registro"])


def test_step_in_removed_column_can_still_progress():
    s = make_step("S1", 1, 10.0, status="Columna vieja")
    tr = transition_step_status(s, STEP_PENDING)
    assert tr.entity.status == STEP_PENDING
