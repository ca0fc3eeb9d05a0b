from pathlib import Path
import logging
import sqlite3
import sys

_log = logging.getLogger(__name__)

SQL = r"""
PRAGMA foreign_keys = ON;

/* ======================== CORE TABLES ======================== */

/* -------- clients -------- */
CREATE TABLE IF NOT EXISTS clients (
    client_id     TEXT PRIMARY KEY,
    name          TEXT NOT NULL,
    document_id   TEXT NOT NULL DEFAULT '',
    phone         TEXT NOT NULL DEFAULT '',
    email         TEXT NOT NULL DEFAULT '',
    address       TEXT NOT NULL DEFAULT '',
    notes         TEXT NOT NULL DEFAULT '',
    status        TEXT NOT NULL DEFAULT 'activo' CHECK (status IN ('activo','inactivo')),
    /* derived: written by the reconciliation cascade only */
    debt_total    NUMERIC NOT NULL DEFAULT 0,
    registered_at TIMESTAMP,
    updated_at    TIMESTAMP
);

/* -------- job type templates -------- */
CREATE TABLE IF NOT EXISTS job_types (
    job_type_id     TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    description     TEXT NOT NULL DEFAULT '',
    suggested_price NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(suggested_price AS REAL) >= 0)
);

CREATE TABLE IF NOT EXISTS job_type_steps (
    job_type_id    TEXT NOT NULL,
    number         INTEGER NOT NULL CHECK (number >= 1),
    name           TEXT NOT NULL,
    description    TEXT NOT NULL DEFAULT '',
    initial_status TEXT NOT NULL DEFAULT 'Pendiente',
    estimated_days INTEGER NOT NULL DEFAULT 0,
    estimated_cost NUMERIC NOT NULL DEFAULT 0,
    optional       INTEGER NOT NULL DEFAULT 0 CHECK (optional IN (0,1)),
    PRIMARY KEY (job_type_id, number),
    FOREIGN KEY (job_type_id) REFERENCES job_types(job_type_id) ON DELETE CASCADE
);

/* -------- jobs ("trabajos") -------- */
CREATE TABLE IF NOT EXISTS jobs (
    job_id             TEXT PRIMARY KEY,
    client_id          TEXT NOT NULL,
    job_type_id        TEXT,
    name               TEXT NOT NULL,
    description        TEXT NOT NULL DEFAULT '',
    status             TEXT NOT NULL DEFAULT 'Pendiente'
                       CHECK (status IN ('Borrador','Pendiente','En proceso','Completado','Cancelado')),
    budget_initial     NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(budget_initial AS REAL) >= 0),
    cost_final         NUMERIC NOT NULL DEFAULT 0,
    paid_total         NUMERIC NOT NULL DEFAULT 0,
    balance_due        NUMERIC NOT NULL DEFAULT 0,
    unapplied_credit   NUMERIC NOT NULL DEFAULT 0,
    start_date         TIMESTAMP,
    estimated_end_date TIMESTAMP,
    completion_date    TIMESTAMP,
    created_at         TIMESTAMP,
    updated_at         TIMESTAMP,
    FOREIGN KEY (client_id)   REFERENCES clients(client_id),
    FOREIGN KEY (job_type_id) REFERENCES job_types(job_type_id) ON DELETE SET NULL
);
CREATE INDEX IF NOT EXISTS idx_jobs_client ON jobs(client_id);

/* -------- steps ("items") -------- */
CREATE TABLE IF NOT EXISTS steps (
    step_id         TEXT PRIMARY KEY,
    job_id          TEXT NOT NULL,
    step_number     INTEGER NOT NULL CHECK (step_number >= 1),
    name            TEXT NOT NULL,
    description     TEXT NOT NULL DEFAULT '',
    status          TEXT NOT NULL DEFAULT 'Pendiente',
    cost            NUMERIC NOT NULL DEFAULT 0 CHECK (CAST(cost AS REAL) >= 0),
    paid            NUMERIC NOT NULL DEFAULT 0,
    balance         NUMERIC NOT NULL DEFAULT 0,
    estimated_days  INTEGER NOT NULL DEFAULT 0,
    completion_date TIMESTAMP,
    updated_at      TIMESTAMP,
    FOREIGN KEY (job_id) REFERENCES jobs(job_id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_steps_job ON steps(job_id);

/* -------- payments ("pagos") -------- */
CREATE TABLE IF NOT EXISTS payments (
    payment_id    TEXT PRIMARY KEY,
    job_id        TEXT NOT NULL,
    step_id       TEXT,
    amount        NUMERIC NOT NULL CHECK (CAST(amount AS REAL) > 0),
    date          TIMESTAMP NOT NULL,
    method        TEXT NOT NULL CHECK (method IN ('Efectivo','Transferencia','Tarjeta','Cheque')),
    reference     TEXT NOT NULL DEFAULT '',
    notes         TEXT NOT NULL DEFAULT '',
    unapplied     NUMERIC NOT NULL DEFAULT 0,
    registered_at TIMESTAMP,
    FOREIGN KEY (job_id)  REFERENCES jobs(job_id),
    FOREIGN KEY (step_id) REFERENCES steps(step_id)
);
CREATE INDEX IF NOT EXISTS idx_payments_job ON payments(job_id);

/* one row per step a payment was applied to */
CREATE TABLE IF NOT EXISTS payment_allocations (
    payment_id TEXT NOT NULL,
    step_id    TEXT NOT NULL,
    amount     NUMERIC NOT NULL,
    seq        INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (payment_id, step_id),
    FOREIGN KEY (payment_id) REFERENCES payments(payment_id) ON DELETE CASCADE,
    FOREIGN KEY (step_id)    REFERENCES steps(step_id)
);

/* -------- budget versions ("presupuestos") -------- */
CREATE TABLE IF NOT EXISTS budget_versions (
    budget_id        TEXT PRIMARY KEY,
    job_id           TEXT NOT NULL,
    version          INTEGER NOT NULL CHECK (version >= 1),
    status           TEXT NOT NULL DEFAULT 'borrador'
                     CHECK (status IN ('borrador','enviado','aprobado','rechazado')),
    subtotal         NUMERIC NOT NULL DEFAULT 0,
    discount         NUMERIC NOT NULL DEFAULT 0,
    extra_charges    NUMERIC NOT NULL DEFAULT 0,
    tax              NUMERIC NOT NULL DEFAULT 0,
    total            NUMERIC NOT NULL DEFAULT 0,
    terms            TEXT,
    rejection_reason TEXT,
    created_at       TIMESTAMP,
    sent_at          TIMESTAMP,
    approved_at      TIMESTAMP,
    rejected_at      TIMESTAMP,
    UNIQUE (job_id, version),
    FOREIGN KEY (job_id) REFERENCES jobs(job_id) ON DELETE CASCADE
);

/* highest version ever issued per job; never decremented */
CREATE TABLE IF NOT EXISTS budget_version_counters (
    job_id       TEXT PRIMARY KEY,
    last_version INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (job_id) REFERENCES jobs(job_id) ON DELETE CASCADE
);

/* ======================== TRIGGERS ======================== */

/* approved budget versions are frozen */
DROP TRIGGER IF EXISTS trg_budget_versions_approved_no_update;
CREATE TRIGGER trg_budget_versions_approved_no_update
BEFORE UPDATE ON budget_versions
FOR EACH ROW
WHEN OLD.status = 'aprobado'
BEGIN
    SELECT RAISE(ABORT, 'approved budget versions are immutable');
END;

DROP TRIGGER IF EXISTS trg_budget_versions_approved_no_delete;
CREATE TRIGGER trg_budget_versions_approved_no_delete
BEFORE DELETE ON budget_versions
FOR EACH ROW
WHEN OLD.status = 'aprobado'
BEGIN
    SELECT RAISE(ABORT, 'approved budget versions cannot be deleted');
END;
"""


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply the (idempotent) schema on an open connection."""
    conn.executescript(SQL)


def init_schema(db_path: Path | str = "lexnotar.db") -> None:
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        apply_schema(conn)
        conn.commit()
    _log.info("Schema applied to %s", db_path)


if __name__ == "__main__":
    target = sys.argv[1] if len(sys.argv) > 1 else Path(__file__).resolve().parents[1] / "data" / "lexnotar.db"
    init_schema(target)
