"""SQLite persistence for the allotment service.

Every write goes through ``transaction()``, which opens ``BEGIN IMMEDIATE``
so concurrent writers serialise on the database lock. Any exception inside
the block rolls the whole block back. Nested ``transaction()`` calls join
the outer one.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator

from allotment_core.models import Allocation, Preference, Subject
from allotment_core.rounds import RoundState, parse_state
from allotment_core.snapshot import Snapshot

logger = logging.getLogger(__name__)

PREFERENCE_KINDS = ("theory", "lab")

SCHEMA = """
CREATE TABLE IF NOT EXISTS faculty (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'faculty',
    seniority INTEGER,
    max_load INTEGER NOT NULL DEFAULT 2,
    lab_load INTEGER NOT NULL DEFAULT 3,
    email TEXT,
    designation TEXT
);

CREATE TABLE IF NOT EXISTS subjects (
    id TEXT PRIMARY KEY,
    code TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    semester INTEGER NOT NULL,
    type TEXT NOT NULL,
    credits INTEGER NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    sections INTEGER NOT NULL DEFAULT 1,
    is_lab INTEGER NOT NULL DEFAULT 0,
    related_theory_id TEXT REFERENCES subjects(id) DEFERRABLE INITIALLY DEFERRED,
    category TEXT
);

CREATE TABLE IF NOT EXISTS preferences (
    faculty_id TEXT NOT NULL REFERENCES faculty(id) ON DELETE CASCADE,
    subject_id TEXT NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
    kind TEXT NOT NULL CHECK (kind IN ('theory', 'lab')),
    rank INTEGER NOT NULL CHECK (rank >= 1),
    PRIMARY KEY (faculty_id, subject_id, kind)
);

CREATE TABLE IF NOT EXISTS allocations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    faculty_id TEXT NOT NULL REFERENCES faculty(id) ON DELETE CASCADE,
    subject_id TEXT NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
    section INTEGER NOT NULL DEFAULT 1,
    role TEXT NOT NULL CHECK (role IN ('theory', 'coordinator', 'co_teacher')),
    round_number INTEGER,
    created_at TEXT NOT NULL,
    UNIQUE (faculty_id, subject_id, section)
);

CREATE TABLE IF NOT EXISTS subject_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    faculty_id TEXT NOT NULL REFERENCES faculty(id) ON DELETE CASCADE,
    code TEXT NOT NULL,
    name TEXT NOT NULL DEFAULT '',
    term TEXT NOT NULL,
    credits_theory INTEGER NOT NULL DEFAULT 0,
    credits_lab INTEGER NOT NULL DEFAULT 0,
    subject_type TEXT NOT NULL DEFAULT 'Theory',
    category TEXT NOT NULL DEFAULT 'Other'
);

CREATE TABLE IF NOT EXISTS load_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    faculty_id TEXT NOT NULL REFERENCES faculty(id) ON DELETE CASCADE,
    term TEXT NOT NULL,
    total_credits INTEGER NOT NULL,
    number_of_subjects INTEGER NOT NULL DEFAULT 0,
    primary_specialization TEXT
);

CREATE TABLE IF NOT EXISTS round_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    state TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS settings (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    min_preferences INTEGER NOT NULL,
    updated_at TEXT NOT NULL
);
"""

_DATA_TABLES = ("allocations", "preferences", "subject_history", "load_history", "subjects", "faculty")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _allocation_params(a: Allocation, created_at: str) -> tuple:
    return (a.faculty_id, a.subject_id, a.section, a.role, a.round_number, created_at)


class AllotmentStore:
    """Connection wrapper owning the allotment schema."""

    def __init__(self, db_path: str | Path, *, default_min_preferences: int = 3):
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._depth = 0
        self._default_min_preferences = default_min_preferences
        self._conn.executescript(SCHEMA)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> AllotmentStore:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        if self._depth:
            self._depth += 1
            try:
                yield self._conn
            finally:
                self._depth -= 1
            return

        self._conn.execute("BEGIN IMMEDIATE")
        self._depth = 1
        try:
            yield self._conn
        except BaseException:
            self._conn.execute("ROLLBACK")
            logger.warning("transaction rolled back on %s", self.db_path)
            raise
        else:
            self._conn.execute("COMMIT")
        finally:
            self._depth = 0

    def _query(self, sql: str, params: Iterable[Any] = ()) -> list[dict[str, Any]]:
        return [dict(row) for row in self._conn.execute(sql, tuple(params)).fetchall()]

    # ------------------------------------------------------------------
    # Snapshot read / bulk load
    # ------------------------------------------------------------------

    def read_payload(self) -> dict[str, Any]:
        """Read every table into the payload shape ``build_snapshot`` accepts."""
        subjects = self._query("SELECT * FROM subjects ORDER BY code")
        for row in subjects:
            row["is_lab"] = bool(row["is_lab"])
        allocations = self._query(
            "SELECT id, faculty_id, subject_id, section, role, round_number FROM allocations ORDER BY id"
        )
        for row in allocations:
            row["id"] = str(row["id"])
        prefs = self._query("SELECT faculty_id, subject_id, kind, rank FROM preferences ORDER BY faculty_id, kind, rank")
        return {
            "faculty": self._query("SELECT * FROM faculty ORDER BY id"),
            "subjects": subjects,
            "preferences": [
                {k: p[k] for k in ("faculty_id", "subject_id", "rank")} for p in prefs if p["kind"] == "theory"
            ],
            "lab_preferences": [
                {k: p[k] for k in ("faculty_id", "subject_id", "rank")} for p in prefs if p["kind"] == "lab"
            ],
            "allocations": allocations,
            "history": self._query(
                "SELECT faculty_id, code, name, term, credits_theory, credits_lab, subject_type, category "
                "FROM subject_history ORDER BY id"
            ),
            "load_history": self._query(
                "SELECT faculty_id, term, total_credits, number_of_subjects, primary_specialization "
                "FROM load_history ORDER BY id"
            ),
            "metadata": {"source": str(self.db_path)},
        }

    def load_payload(self, snapshot: Snapshot) -> dict[str, int]:
        """Replace all roster, catalogue, preference, allocation and history rows."""
        created_at = _now()
        with self.transaction() as conn:
            for table in _DATA_TABLES:
                conn.execute(f"DELETE FROM {table}")
            conn.executemany(
                "INSERT INTO faculty (id, username, name, role, seniority, max_load, lab_load, email, designation) "
                "VALUES (:id, :username, :name, :role, :seniority, :max_load, :lab_load, :email, :designation)",
                [f.to_row() for f in snapshot.faculty],
            )
            conn.executemany(
                "INSERT INTO subjects (id, code, name, semester, type, credits, description, sections, is_lab, "
                "related_theory_id, category) VALUES (:id, :code, :name, :semester, :type, :credits, "
                ":description, :sections, :is_lab, :related_theory_id, :category)",
                [{**s.to_row(), "is_lab": int(s.is_lab)} for s in snapshot.subjects],
            )
            conn.executemany(
                "INSERT INTO preferences (faculty_id, subject_id, kind, rank) VALUES (?, ?, ?, ?)",
                [(p.faculty_id, p.subject_id, "theory", p.rank) for p in snapshot.preferences]
                + [(p.faculty_id, p.subject_id, "lab", p.rank) for p in snapshot.lab_preferences],
            )
            conn.executemany(
                "INSERT INTO allocations (faculty_id, subject_id, section, role, round_number, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                [_allocation_params(a, created_at) for a in snapshot.allocations],
            )
            conn.executemany(
                "INSERT INTO subject_history (faculty_id, code, name, term, credits_theory, credits_lab, "
                "subject_type, category) VALUES (:faculty_id, :code, :name, :term, :credits_theory, "
                ":credits_lab, :subject_type, :category)",
                [h.to_row() for h in snapshot.history],
            )
            conn.executemany(
                "INSERT INTO load_history (faculty_id, term, total_credits, number_of_subjects, "
                "primary_specialization) VALUES (:faculty_id, :term, :total_credits, :number_of_subjects, "
                ":primary_specialization)",
                [h.to_row() for h in snapshot.load_history],
            )
        counts = {
            "faculty": len(snapshot.faculty),
            "subjects": len(snapshot.subjects),
            "preferences": len(snapshot.preferences),
            "lab_preferences": len(snapshot.lab_preferences),
            "allocations": len(snapshot.allocations),
            "history": len(snapshot.history),
            "load_history": len(snapshot.load_history),
        }
        logger.debug("loaded payload into %s: %s", self.db_path, counts)
        return counts

    # ------------------------------------------------------------------
    # Allocations
    # ------------------------------------------------------------------

    def insert_allocations(self, allocations: Iterable[Allocation]) -> int:
        rows = [_allocation_params(a, _now()) for a in allocations]
        with self.transaction() as conn:
            conn.executemany(
                "INSERT INTO allocations (faculty_id, subject_id, section, role, round_number, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                rows,
            )
        return len(rows)

    def delete_allocations_by_role(self, roles: Iterable[str]) -> int:
        roles = list(roles)
        if not roles:
            return 0
        placeholders = ", ".join("?" for _ in roles)
        with self.transaction() as conn:
            cur = conn.execute(f"DELETE FROM allocations WHERE role IN ({placeholders})", roles)
        return cur.rowcount

    def delete_allocations_by_round(self, round_number: int) -> int:
        with self.transaction() as conn:
            cur = conn.execute("DELETE FROM allocations WHERE round_number = ?", (round_number,))
        return cur.rowcount

    def create_allocation(self, allocation: Allocation) -> str:
        with self.transaction() as conn:
            cur = conn.execute(
                "INSERT INTO allocations (faculty_id, subject_id, section, role, round_number, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                _allocation_params(allocation, _now()),
            )
        return str(cur.lastrowid)

    def delete_allocation(self, allocation_id: str | int) -> bool:
        try:
            row_id = int(allocation_id)
        except (TypeError, ValueError):
            return False
        with self.transaction() as conn:
            cur = conn.execute("DELETE FROM allocations WHERE id = ?", (row_id,))
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Preferences, roster and catalogue updates
    # ------------------------------------------------------------------

    def save_preferences(self, faculty_id: str, preferences: Iterable[Preference], *, kind: str = "theory") -> int:
        """Replace one faculty member's list of the given kind."""
        if kind not in PREFERENCE_KINDS:
            raise ValueError(f"unknown preference kind: {kind!r}")
        rows = [(faculty_id, p.subject_id, kind, p.rank) for p in preferences]
        with self.transaction() as conn:
            conn.execute("DELETE FROM preferences WHERE faculty_id = ? AND kind = ?", (faculty_id, kind))
            conn.executemany(
                "INSERT INTO preferences (faculty_id, subject_id, kind, rank) VALUES (?, ?, ?, ?)", rows
            )
        return len(rows)

    def update_seniority(self, seniority: dict[str, int]) -> int:
        with self.transaction() as conn:
            for faculty_id, value in seniority.items():
                cur = conn.execute("UPDATE faculty SET seniority = ? WHERE id = ?", (value, faculty_id))
                if cur.rowcount == 0:
                    raise KeyError(f"unknown faculty: {faculty_id}")
        return len(seniority)

    def update_subject_categories(self, subjects: Iterable[Subject]) -> int:
        rows = [(s.category, s.id) for s in subjects]
        with self.transaction() as conn:
            conn.executemany("UPDATE subjects SET category = ? WHERE id = ?", rows)
        return len(rows)

    # ------------------------------------------------------------------
    # Round state and settings singletons
    # ------------------------------------------------------------------

    def get_round_state(self) -> RoundState:
        row = self._conn.execute("SELECT state FROM round_state WHERE id = 1").fetchone()
        return parse_state(row["state"] if row else None)

    def set_round_state(self, state: RoundState) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO round_state (id, state, updated_at) VALUES (1, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET state = excluded.state, updated_at = excluded.updated_at",
                (RoundState(state).value, _now()),
            )

    def get_settings(self) -> dict[str, Any]:
        row = self._conn.execute("SELECT min_preferences, updated_at FROM settings WHERE id = 1").fetchone()
        if row is None:
            return {"min_preferences": self._default_min_preferences, "updated_at": None}
        return dict(row)

    def update_settings(self, *, min_preferences: int) -> dict[str, Any]:
        if min_preferences < 1:
            raise ValueError(f"min_preferences must be >= 1, got {min_preferences}")
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO settings (id, min_preferences, updated_at) VALUES (1, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET min_preferences = excluded.min_preferences, "
                "updated_at = excluded.updated_at",
                (min_preferences, _now()),
            )
        return self.get_settings()

    def reset_all(self, *, clear_preferences: bool = True) -> dict[str, int]:
        """Delete every allocation (and optionally every preference); round back to start."""
        with self.transaction() as conn:
            allocations = conn.execute("DELETE FROM allocations").rowcount
            preferences = conn.execute("DELETE FROM preferences").rowcount if clear_preferences else 0
            self.set_round_state(RoundState.NOT_STARTED)
        return {"allocations": allocations, "preferences": preferences}
