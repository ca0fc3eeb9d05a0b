from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Optional

from ...modules.ledger.entities import (
    BudgetVersion,
    Client,
    Job,
    JobType,
    Payment,
    Step,
    StepTemplate,
)
from ...modules.ledger.errors import DomainError
from ...modules.ledger.service import LedgerService, LedgerState

_log = logging.getLogger(__name__)


class ConstraintViolationError(DomainError):
    """Database refused the write; wraps the original SQLite error."""
    def __init__(self, message: str, *, original: BaseException | None = None):
        super().__init__(message)
        self.original = original


# ---- value conversion ---------------------------------------------------------

def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dt(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _money(value) -> float:
    return float(value or 0.0)


class LedgerRepo:
    """
    Loads the whole ledger into a LedgerState and writes a new state back.

    save_state() is the single commit point for a reconciled state: every
    table is synced inside one IMMEDIATE transaction (or a savepoint when the
    caller already holds a transaction), so readers never see a job whose
    client debt has not caught up yet.
    """

    def __init__(self, conn: sqlite3.Connection):
        # ensure rows behave like dicts/tuples
        conn.row_factory = sqlite3.Row
        self.conn = conn

    # ---------------------------- TX helper ----------------------------

    @contextmanager
    def _immediate_tx(self):
        """
        Start an IMMEDIATE transaction, commit on success, rollback on error.
        Nested inside a caller's transaction a savepoint is used instead.
        """
        cur = self.conn.cursor()
        nested = self.conn.in_transaction
        try:
            cur.execute("SAVEPOINT ledger_save" if nested else "BEGIN IMMEDIATE")
            yield cur
            if nested:
                cur.execute("RELEASE SAVEPOINT ledger_save")
            else:
                self.conn.commit()
        except Exception:
            if nested:
                cur.execute("ROLLBACK TO SAVEPOINT ledger_save")
                cur.execute("RELEASE SAVEPOINT ledger_save")
            else:
                self.conn.rollback()
            raise
        finally:
            cur.close()

    # ---------------------------- Reads ----------------------------

    def list_clients(self) -> list[Client]:
        rows = self.conn.execute(
            "SELECT client_id, name, document_id, phone, email, address, notes, status, "
            "debt_total, registered_at, updated_at FROM clients ORDER BY name"
        ).fetchall()
        return [
            Client(
                client_id=r["client_id"],
                name=r["name"],
                document_id=r["document_id"],
                phone=r["phone"],
                email=r["email"],
                address=r["address"],
                notes=r["notes"],
                status=r["status"],
                debt_total=_money(r["debt_total"]),
                registered_at=_dt(r["registered_at"]),
                updated_at=_dt(r["updated_at"]),
            )
            for r in rows
        ]

    def list_job_types(self) -> list[JobType]:
        types = self.conn.execute(
            "SELECT job_type_id, name, description, suggested_price FROM job_types ORDER BY job_type_id"
        ).fetchall()
        steps = self.conn.execute(
            "SELECT job_type_id, number, name, description, initial_status, estimated_days, "
            "estimated_cost, optional FROM job_type_steps ORDER BY job_type_id, number"
        ).fetchall()
        by_type: dict[str, list[StepTemplate]] = {}
        for s in steps:
            by_type.setdefault(s["job_type_id"], []).append(StepTemplate(
                number=int(s["number"]),
                name=s["name"],
                description=s["description"],
                initial_status=s["initial_status"],
                estimated_days=int(s["estimated_days"]),
                estimated_cost=_money(s["estimated_cost"]),
                optional=bool(s["optional"]),
            ))
        return [
            JobType(
                job_type_id=t["job_type_id"],
                name=t["name"],
                description=t["description"],
                suggested_price=_money(t["suggested_price"]),
                steps=by_type.get(t["job_type_id"], []),
            )
            for t in types
        ]

    def list_jobs(self) -> list[Job]:
        rows = self.conn.execute(
            "SELECT job_id, client_id, job_type_id, name, description, status, budget_initial, "
            "cost_final, paid_total, unapplied_credit, start_date, estimated_end_date, "
            "completion_date, created_at, updated_at FROM jobs ORDER BY created_at, job_id"
        ).fetchall()
        return [
            Job(
                job_id=r["job_id"],
                client_id=r["client_id"],
                job_type_id=r["job_type_id"],
                name=r["name"],
                description=r["description"],
                status=r["status"],
                budget_initial=_money(r["budget_initial"]),
                cost_final=_money(r["cost_final"]),
                paid_total=_money(r["paid_total"]),
                unapplied_credit=_money(r["unapplied_credit"]),
                start_date=_dt(r["start_date"]),
                estimated_end_date=_dt(r["estimated_end_date"]),
                completion_date=_dt(r["completion_date"]),
                created_at=_dt(r["created_at"]),
                updated_at=_dt(r["updated_at"]),
            )
            for r in rows
        ]

    def list_steps(self) -> list[Step]:
        rows = self.conn.execute(
            "SELECT step_id, job_id, step_number, name, description, status, cost, paid, "
            "estimated_days, completion_date, updated_at FROM steps ORDER BY job_id, step_number"
        ).fetchall()
        return [
            Step(
                step_id=r["step_id"],
                job_id=r["job_id"],
                step_number=int(r["step_number"]),
                name=r["name"],
                description=r["description"],
                status=r["status"],
                cost=_money(r["cost"]),
                paid=_money(r["paid"]),
                estimated_days=int(r["estimated_days"]),
                completion_date=_dt(r["completion_date"]),
                updated_at=_dt(r["updated_at"]),
            )
            for r in rows
        ]

    def list_payments(self) -> list[Payment]:
        rows = self.conn.execute(
            "SELECT payment_id, job_id, step_id, amount, date, method, reference, notes, "
            "unapplied, registered_at FROM payments ORDER BY date, payment_id"
        ).fetchall()
        allocs: dict[str, dict[str, float]] = {}
        for a in self.conn.execute(
            "SELECT payment_id, step_id, amount FROM payment_allocations ORDER BY payment_id, seq"
        ).fetchall():
            allocs.setdefault(a["payment_id"], {})[a["step_id"]] = _money(a["amount"])
        return [
            Payment(
                payment_id=r["payment_id"],
                job_id=r["job_id"],
                step_id=r["step_id"],
                amount=_money(r["amount"]),
                date=_dt(r["date"]),
                method=r["method"],
                reference=r["reference"],
                notes=r["notes"],
                allocations=allocs.get(r["payment_id"], {}),
                unapplied=_money(r["unapplied"]),
                registered_at=_dt(r["registered_at"]),
            )
            for r in rows
        ]

    def list_budget_versions(self) -> list[BudgetVersion]:
        rows = self.conn.execute(
            "SELECT budget_id, job_id, version, status, subtotal, discount, extra_charges, tax, total, "
            "terms, rejection_reason, created_at, sent_at, approved_at, rejected_at "
            "FROM budget_versions ORDER BY job_id, version"
        ).fetchall()
        return [
            BudgetVersion(
                budget_id=r["budget_id"],
                job_id=r["job_id"],
                version=int(r["version"]),
                status=r["status"],
                subtotal=_money(r["subtotal"]),
                discount=_money(r["discount"]),
                extra_charges=_money(r["extra_charges"]),
                tax=_money(r["tax"]),
                total=_money(r["total"]),
                terms=r["terms"],
                rejection_reason=r["rejection_reason"],
                created_at=_dt(r["created_at"]),
                sent_at=_dt(r["sent_at"]),
                approved_at=_dt(r["approved_at"]),
                rejected_at=_dt(r["rejected_at"]),
            )
            for r in rows
        ]

    def budget_high_water(self, job_id: str) -> int:
        row = self.conn.execute(
            """
            SELECT MAX(
                COALESCE((SELECT last_version FROM budget_version_counters WHERE job_id=:j), 0),
                COALESCE((SELECT MAX(version) FROM budget_versions WHERE job_id=:j), 0)
            ) AS hw
            """,
            {"j": job_id},
        ).fetchone()
        return int(row["hw"])

    def load_state(self) -> LedgerState:
        budgets = self.list_budget_versions()
        counters = {
            r["job_id"]: int(r["last_version"])
            for r in self.conn.execute("SELECT job_id, last_version FROM budget_version_counters").fetchall()
        }
        # stored versions also count, in case a counter row is missing
        for b in budgets:
            counters[b.job_id] = max(counters.get(b.job_id, 0), b.version)
        return LedgerState(
            clients=tuple(self.list_clients()),
            jobs=tuple(self.list_jobs()),
            steps=tuple(self.list_steps()),
            payments=tuple(self.list_payments()),
            budgets=tuple(budgets),
            job_types=tuple(self.list_job_types()),
            budget_counters=counters,
        )

    # ---------------------------- Writes ----------------------------

    def _delete_missing(self, cur: sqlite3.Cursor, table: str, key: str, keep: Iterable[str]) -> None:
        keep = set(keep)
        existing = {r[0] for r in cur.execute(f"SELECT {key} FROM {table}").fetchall()}
        gone = existing - keep
        if gone:
            cur.executemany(f"DELETE FROM {table} WHERE {key}=?", [(k,) for k in gone])

    def save_state(self, state: LedgerState) -> None:
        """
        Make the database match `state` exactly, in one transaction.

        Payments are immutable once stored; approved budget versions are never
        rewritten (the DB triggers would refuse it anyway).
        """
        try:
            with self._immediate_tx() as cur:
                # children first so foreign keys never dangle
                self._delete_missing(cur, "payments", "payment_id", (p.payment_id for p in state.payments))
                self._delete_missing(cur, "budget_versions", "budget_id", (b.budget_id for b in state.budgets))
                self._delete_missing(cur, "steps", "step_id", (s.step_id for s in state.steps))
                self._delete_missing(cur, "budget_version_counters", "job_id", (j.job_id for j in state.jobs))
                self._delete_missing(cur, "jobs", "job_id", (j.job_id for j in state.jobs))
                self._delete_missing(cur, "clients", "client_id", (c.client_id for c in state.clients))

                self._save_job_types(cur, state.job_types)
                self._save_clients(cur, state.clients)
                self._save_jobs(cur, state.jobs)
                self._save_steps(cur, state.steps)
                self._save_payments(cur, state.payments)
                self._save_budgets(cur, state.budgets, state.budget_counters)
        except sqlite3.IntegrityError as e:
            _log.error("Ledger save refused by the database: %s", e)
            raise ConstraintViolationError(f"Could not save ledger: {e}", original=e) from e
        _log.debug(
            "Ledger saved: %d clients, %d jobs, %d steps, %d payments, %d budget versions",
            len(state.clients), len(state.jobs), len(state.steps), len(state.payments), len(state.budgets),
        )

    def _save_job_types(self, cur: sqlite3.Cursor, job_types: Iterable[JobType]) -> None:
        for t in job_types:
            cur.execute(
                """
                INSERT INTO job_types(job_type_id, name, description, suggested_price)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(job_type_id) DO UPDATE SET
                    name=excluded.name,
                    description=excluded.description,
                    suggested_price=excluded.suggested_price
                """,
                (t.job_type_id, t.name, t.description, t.suggested_price),
            )
            cur.execute("DELETE FROM job_type_steps WHERE job_type_id=?", (t.job_type_id,))
            cur.executemany(
                """
                INSERT INTO job_type_steps(job_type_id, number, name, description, initial_status,
                                           estimated_days, estimated_cost, optional)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (t.job_type_id, s.number, s.name, s.description, s.initial_status,
                     s.estimated_days, s.estimated_cost, 1 if s.optional else 0)
                    for s in t.steps
                ],
            )

    def _save_clients(self, cur: sqlite3.Cursor, clients: Iterable[Client]) -> None:
        cur.executemany(
            """
            INSERT INTO clients(client_id, name, document_id, phone, email, address, notes, status,
                                debt_total, registered_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(client_id) DO UPDATE SET
                name=excluded.name,
                document_id=excluded.document_id,
                phone=excluded.phone,
                email=excluded.email,
                address=excluded.address,
                notes=excluded.notes,
                status=excluded.status,
                debt_total=excluded.debt_total,
                updated_at=excluded.updated_at
            """,
            [
                (c.client_id, c.name, c.document_id, c.phone, c.email, c.address, c.notes, c.status,
                 c.debt_total, _ts(c.registered_at), _ts(c.updated_at))
                for c in clients
            ],
        )

    def _save_jobs(self, cur: sqlite3.Cursor, jobs: Iterable[Job]) -> None:
        cur.executemany(
            """
            INSERT INTO jobs(job_id, client_id, job_type_id, name, description, status, budget_initial,
                             cost_final, paid_total, balance_due, unapplied_credit, start_date,
                             estimated_end_date, completion_date, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(job_id) DO UPDATE SET
                client_id=excluded.client_id,
                job_type_id=excluded.job_type_id,
                name=excluded.name,
                description=excluded.description,
                status=excluded.status,
                budget_initial=excluded.budget_initial,
                cost_final=excluded.cost_final,
                paid_total=excluded.paid_total,
                balance_due=excluded.balance_due,
                unapplied_credit=excluded.unapplied_credit,
                start_date=excluded.start_date,
                estimated_end_date=excluded.estimated_end_date,
                completion_date=excluded.completion_date,
                updated_at=excluded.updated_at
            """,
            [
                (j.job_id, j.client_id, j.job_type_id, j.name, j.description, j.status, j.budget_initial,
                 j.cost_final, j.paid_total, j.balance_due, j.unapplied_credit, _ts(j.start_date),
                 _ts(j.estimated_end_date), _ts(j.completion_date), _ts(j.created_at), _ts(j.updated_at))
                for j in jobs
            ],
        )

    def _save_steps(self, cur: sqlite3.Cursor, steps: Iterable[Step]) -> None:
        cur.executemany(
            """
            INSERT INTO steps(step_id, job_id, step_number, name, description, status, cost, paid,
                              balance, estimated_days, completion_date, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(step_id) DO UPDATE SET
                step_number=excluded.step_number,
                name=excluded.name,
                description=excluded.description,
                status=excluded.status,
                cost=excluded.cost,
                paid=excluded.paid,
                balance=excluded.balance,
                estimated_days=excluded.estimated_days,
                completion_date=excluded.completion_date,
                updated_at=excluded.updated_at
            """,
            [
                (s.step_id, s.job_id, s.step_number, s.name, s.description, s.status, s.cost, s.paid,
                 s.balance, s.estimated_days, _ts(s.completion_date), _ts(s.updated_at))
                for s in steps
            ],
        )

    def _save_payments(self, cur: sqlite3.Cursor, payments: Iterable[Payment]) -> None:
        for p in payments:
            cur.execute(
                """
                INSERT INTO payments(payment_id, job_id, step_id, amount, date, method, reference,
                                     notes, unapplied, registered_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(payment_id) DO NOTHING
                """,
                (p.payment_id, p.job_id, p.step_id, p.amount, _ts(p.date), p.method, p.reference,
                 p.notes, p.unapplied, _ts(p.registered_at)),
            )
            if cur.rowcount:
                cur.executemany(
                    "INSERT INTO payment_allocations(payment_id, step_id, amount, seq) VALUES (?, ?, ?, ?)",
                    [(p.payment_id, sid, amt, i) for i, (sid, amt) in enumerate(p.allocations.items())],
                )

    def _save_budgets(self, cur: sqlite3.Cursor, budgets: Iterable[BudgetVersion], counters) -> None:
        cur.executemany(
            """
            INSERT INTO budget_versions(budget_id, job_id, version, status, subtotal, discount,
                                        extra_charges, tax, total, terms, rejection_reason,
                                        created_at, sent_at, approved_at, rejected_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(budget_id) DO UPDATE SET
                status=excluded.status,
                rejection_reason=excluded.rejection_reason,
                sent_at=excluded.sent_at,
                approved_at=excluded.approved_at,
                rejected_at=excluded.rejected_at
            WHERE budget_versions.status <> 'aprobado'
            """,
            [
                (b.budget_id, b.job_id, b.version, b.status, b.subtotal, b.discount, b.extra_charges,
                 b.tax, b.total, b.terms, b.rejection_reason, _ts(b.created_at), _ts(b.sent_at),
                 _ts(b.approved_at), _ts(b.rejected_at))
                for b in budgets
            ],
        )
        cur.executemany(
            """
            INSERT INTO budget_version_counters(job_id, last_version) VALUES (?, ?)
            ON CONFLICT(job_id) DO UPDATE SET
                last_version=MAX(budget_version_counters.last_version, excluded.last_version)
            """,
            list(counters.items()),
        )


def open_ledger_service(conn: sqlite3.Connection, **kwargs) -> LedgerService:
    """LedgerService over the DB's current contents that persists every mutation."""
    repo = LedgerRepo(conn)
    return LedgerService(repo.load_state(), on_commit=repo.save_state, **kwargs)
