"""Allotment service: runs the engines against the SQLite store.

Each engine run reads the snapshot, computes, validates and commits inside
one store transaction, so a failed run leaves the prior allocation set
untouched.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable

from allotment_core.affinity import score_subjects_for as _score_subjects_for
from allotment_core.categories import backfill_categories as _backfill_categories
from allotment_core.constraints import validate_allocations
from allotment_core.errors import (
    AllocationInvariantError,
    InvalidSnapshotError,
    PreferenceError,
    RoundStateError,
)
from allotment_core.io import load_input, render_xlsx, write_input
from allotment_core.lab import run_lab_allocation as _run_lab_allocation
from allotment_core.metrics import summarize_allocations
from allotment_core.models import (
    DEFAULT_MAX_CO_TEACHERS,
    LAB_ROLES,
    ROLE_THEORY,
    Allocation,
    Preference,
)
from allotment_core.rounds import (
    RoundState,
    complete_round,
    is_active,
    round_number,
    start_next_round,
)
from allotment_core.snapshot import Snapshot, build_snapshot, validate_preference_list
from allotment_core.theory import run_theory_round as _run_theory_round

from .artifacts import save_run
from .config import RuntimeConfig
from .store import PREFERENCE_KINDS, AllotmentStore

logger = logging.getLogger(__name__)

# Violations a manual override may not introduce. Load quotas stay
# overridable by an administrator.
_MANUAL_BLOCKING = frozenset({
    "unknown_faculty",
    "unknown_subject",
    "duplicate_assignment",
    "subject_capacity_exceeded",
})


def _violation_key(v: dict[str, Any]) -> tuple:
    return (v["faculty_id"], v["subject_id"], v["section"], v["violation"])


def _new_violations(
    snap: Snapshot,
    base: list[Allocation],
    added: list[Allocation],
    *,
    max_co_teachers: int,
) -> list[dict[str, Any]]:
    """Violations present in ``base + added`` that ``base`` alone did not have."""
    before = {_violation_key(v) for v in validate_allocations(snap, base, max_co_teachers=max_co_teachers)}
    after = validate_allocations(snap, base + added, max_co_teachers=max_co_teachers)
    return [v for v in after if _violation_key(v) not in before]


def _state_from_allocations(snap: Snapshot) -> RoundState:
    rounds = {a.round_number for a in snap.theory_allocations() if a.round_number}
    if 2 in rounds:
        return RoundState.ROUND2_DONE
    if 1 in rounds:
        return RoundState.ROUND1_DONE
    return RoundState.NOT_STARTED


class AllotmentService:
    def __init__(
        self,
        store: AllotmentStore,
        *,
        artifact_root: Path | None = None,
        max_co_teachers: int = DEFAULT_MAX_CO_TEACHERS,
    ):
        self.store = store
        self.artifact_root = Path(artifact_root) if artifact_root else None
        self.max_co_teachers = max_co_teachers

    @classmethod
    def from_config(cls, cfg: RuntimeConfig) -> AllotmentService:
        store = AllotmentStore(cfg.db_path, default_min_preferences=cfg.min_preferences)
        return cls(store, artifact_root=cfg.artifact_root, max_co_teachers=cfg.max_co_teachers)

    def snapshot(self) -> Snapshot:
        return build_snapshot(self.store.read_payload())

    def _save_run(self, kind: str, result: dict[str, Any]) -> str | None:
        if self.artifact_root is None:
            return None
        run_id, _ = save_run(self.artifact_root, kind, result)
        return run_id

    # ------------------------------------------------------------------
    # Engine runs
    # ------------------------------------------------------------------

    def run_theory_round(self) -> dict[str, Any]:
        """Run the current counselling round and mark it done.

        From ``not_started`` or ``round1_done`` the next round is started
        first. After round 2 the system has to be reset.
        """
        with self.store.transaction():
            state = self.store.get_round_state()
            if not is_active(state):
                try:
                    state = start_next_round(state)
                except RoundStateError:
                    logger.warning("theory run rejected: round state is %s", state.value)
                    raise
            number = round_number(state)

            snap = self.snapshot()
            result = _run_theory_round(snap, round_number=number)
            new = [Allocation.from_row(row) for row in result["allocations"]]

            violations = _new_violations(
                snap, list(snap.allocations), new, max_co_teachers=self.max_co_teachers
            )
            if violations:
                logger.warning("theory round %d rejected: %d invariant violations", number, len(violations))
                raise AllocationInvariantError(
                    f"theory round {number} result breaks {len(violations)} limits", violations
                )

            self.store.insert_allocations(new)
            done = complete_round(state)
            self.store.set_round_state(done)

        run_id = self._save_run("theory", result)
        logger.info(
            "theory round %d committed: %d new allocations, %d unfulfilled",
            number,
            result["new_allocation_count"],
            len(result["unfulfilled"]),
        )
        return {
            "round_number": number,
            "new_allocation_count": result["new_allocation_count"],
            "round_state": done.value,
            "run_id": run_id,
            "allocations": result["allocations"],
            "unfulfilled": result["unfulfilled"],
        }

    def run_lab_allocation(self) -> dict[str, Any]:
        """Replace every lab role with a fresh three-phase allocation."""
        with self.store.transaction():
            snap = self.snapshot()
            result = _run_lab_allocation(snap, max_co_teachers=self.max_co_teachers)
            new = [Allocation.from_row(row) for row in result["allocations"]]

            violations = _new_violations(
                snap, snap.theory_allocations(), new, max_co_teachers=self.max_co_teachers
            )
            if violations:
                logger.warning("lab allocation rejected: %d invariant violations", len(violations))
                raise AllocationInvariantError(
                    f"lab allocation result breaks {len(violations)} limits", violations
                )

            removed = self.store.delete_allocations_by_role(LAB_ROLES)
            self.store.insert_allocations(new)

        run_id = self._save_run("lab", result)
        logger.info(
            "lab allocation committed: %d roles (replaced %d), %d rejected attempts",
            result["allocated_count"],
            removed,
            result["rejections"],
        )
        return {
            "allocated_count": result["allocated_count"],
            "replaced_count": removed,
            "phase_counts": result["phase_counts"],
            "trace": result["trace"],
            "run_id": run_id,
        }

    def score_subjects_for(self, faculty_id: str) -> list[dict[str, Any]]:
        return _score_subjects_for(self.snapshot(), faculty_id)

    # ------------------------------------------------------------------
    # Round control
    # ------------------------------------------------------------------

    def round_status(self) -> dict[str, Any]:
        state = self.store.get_round_state()
        return {"round_state": state.value, "round_number": round_number(state), "active": is_active(state)}

    def start_round(self) -> dict[str, Any]:
        with self.store.transaction():
            state = start_next_round(self.store.get_round_state())
            self.store.set_round_state(state)
        logger.info("started counselling round %d", round_number(state))
        return self.round_status()

    def reset_system(self, *, clear_preferences: bool = True) -> dict[str, Any]:
        removed = self.store.reset_all(clear_preferences=clear_preferences)
        logger.info(
            "system reset: %d allocations, %d preferences removed",
            removed["allocations"],
            removed["preferences"],
        )
        return {**removed, **self.round_status()}

    # ------------------------------------------------------------------
    # Preferences and settings
    # ------------------------------------------------------------------

    def get_settings(self) -> dict[str, Any]:
        return self.store.get_settings()

    def update_settings(self, *, min_preferences: int) -> dict[str, Any]:
        settings = self.store.update_settings(min_preferences=min_preferences)
        logger.info("min_preferences set to %d", min_preferences)
        return settings

    def save_preferences(
        self,
        faculty_id: str,
        preferences: Iterable[dict[str, Any]],
        *,
        kind: str = "theory",
    ) -> dict[str, Any]:
        """Replace one faculty member's theory or lab preference list.

        Theory lists must hold at least ``min_preferences`` entries (capped at
        the number of theory subjects on offer); lab lists at least one.
        """
        if kind not in PREFERENCE_KINDS:
            raise PreferenceError(f"unknown preference kind: {kind!r}")
        snap = self.snapshot()
        if faculty_id not in snap.faculty_by_id():
            raise PreferenceError(f"unknown faculty: {faculty_id}")
        subjects = snap.subject_by_id()
        want_lab = kind == "lab"

        try:
            prefs = [
                Preference.from_row({**row, "faculty_id": faculty_id})
                for row in preferences
            ]
            validate_preference_list(prefs, faculty_id=faculty_id, label=f"{kind} preference")
        except InvalidSnapshotError as exc:
            logger.warning("preferences rejected for %s: %s", faculty_id, exc)
            raise PreferenceError(str(exc)) from exc

        for p in prefs:
            subject = subjects.get(p.subject_id)
            if subject is None:
                raise PreferenceError(f"unknown subject: {p.subject_id}")
            if subject.is_lab != want_lab:
                raise PreferenceError(
                    f"{subject.code} is {'a lab' if subject.is_lab else 'a theory'} subject; "
                    f"not allowed in a {kind} preference list"
                )

        if want_lab:
            required = 1
        else:
            offered = sum(1 for s in snap.subjects if not s.is_lab)
            required = min(self.store.get_settings()["min_preferences"], offered)
        if len(prefs) < required:
            logger.warning("preferences rejected for %s: %d < %d", faculty_id, len(prefs), required)
            raise PreferenceError(f"at least {required} {kind} preferences are required, got {len(prefs)}")

        saved = self.store.save_preferences(faculty_id, prefs, kind=kind)
        logger.info("saved %d %s preferences for %s", saved, kind, faculty_id)
        return {"faculty_id": faculty_id, "kind": kind, "saved": saved}

    # ------------------------------------------------------------------
    # Manual edits
    # ------------------------------------------------------------------

    def manual_allot(self, faculty_id: str, subject_id: str, section: int | None = None) -> dict[str, Any]:
        """Insert one theory allocation outside the matcher."""
        with self.store.transaction():
            snap = self.snapshot()
            member = snap.faculty_by_id().get(faculty_id)
            if member is not None and not member.is_faculty:
                raise AllocationInvariantError(f"{faculty_id} is not a teaching faculty member (role {member.role})")
            subject = snap.subject_by_id().get(subject_id)
            if subject is not None and subject.is_lab:
                raise AllocationInvariantError(f"{subject.code} is a lab; lab roles come from run_lab_allocation")
            if subject is not None:
                current = snap.theory_allocations()
                if any(a.faculty_id == faculty_id and a.subject_id == subject_id for a in current):
                    raise AllocationInvariantError(f"{faculty_id} already teaches {subject.code}")
                if section is None:
                    taken = {a.section for a in current if a.subject_id == subject_id}
                    section = next((n for n in range(1, subject.sections + 1) if n not in taken), 1)
                elif not 1 <= section <= subject.sections:
                    raise AllocationInvariantError(
                        f"{subject.code} has {subject.sections} sections; section {section} is out of range"
                    )
            section = section or 1

            allocation = Allocation(faculty_id=faculty_id, subject_id=subject_id, section=section, role=ROLE_THEORY)
            violations = _new_violations(
                snap, list(snap.allocations), [allocation], max_co_teachers=self.max_co_teachers
            )
            blocking = [v for v in violations if v["violation"] in _MANUAL_BLOCKING]
            if blocking:
                logger.warning("manual allotment rejected: %s", blocking[0]["detail"])
                raise AllocationInvariantError(blocking[0]["detail"], blocking)
            for v in violations:
                logger.warning("manual allotment override: %s", v["detail"])

            allocation_id = self.store.create_allocation(allocation)

        logger.info("manual allotment %s -> %s section %d", faculty_id, subject.code, section)
        return {**allocation.to_row(), "id": allocation_id, "overrides": [v["violation"] for v in violations]}

    def delete_allocation(self, allocation_id: str) -> dict[str, Any]:
        deleted = self.store.delete_allocation(allocation_id)
        if not deleted:
            raise KeyError(f"allocation not found: {allocation_id}")
        logger.info("deleted allocation %s", allocation_id)
        return {"id": str(allocation_id), "deleted": True}

    def reorder_seniority(self, ordered_ids: list[str]) -> dict[str, Any]:
        """Set seniority 1..N following ``ordered_ids`` (most senior first).

        The list must name every teaching faculty member exactly once.
        """
        expected = {f.id for f in self.snapshot().teaching_faculty()}
        if len(set(ordered_ids)) != len(ordered_ids):
            raise ValueError("seniority order names a faculty member twice")
        if set(ordered_ids) != expected:
            missing = sorted(expected - set(ordered_ids))
            unknown = sorted(set(ordered_ids) - expected)
            raise ValueError(f"seniority order must list every faculty member (missing={missing}, unknown={unknown})")
        updated = self.store.update_seniority({fid: i for i, fid in enumerate(ordered_ids, 1)})
        logger.info("seniority reordered for %d faculty", updated)
        return {"updated": updated, "order": list(ordered_ids)}

    def backfill_categories(self, *, overwrite: bool = False) -> dict[str, Any]:
        changed = _backfill_categories(self.snapshot().subjects, overwrite=overwrite)
        self.store.update_subject_categories(changed)
        logger.info("backfilled categories for %d subjects", len(changed))
        return {"updated": len(changed), "subjects": [{"code": s.code, "category": s.category} for s in changed]}

    # ------------------------------------------------------------------
    # Reporting and data exchange
    # ------------------------------------------------------------------

    def analytics(self) -> dict[str, Any]:
        return {**summarize_allocations(self.snapshot()), **self.round_status()}

    def import_snapshot(self, directory: str | Path) -> dict[str, Any]:
        """Replace the store contents with a CSV input directory.

        The round state is derived from the round numbers of the imported
        theory allocations.
        """
        snap = build_snapshot(load_input(Path(directory)))
        state = _state_from_allocations(snap)
        with self.store.transaction():
            counts = self.store.load_payload(snap)
            self.store.set_round_state(state)
        logger.info("imported snapshot from %s: %s", directory, counts)
        return {"counts": counts, "round_state": state.value}

    def export_snapshot(self, directory: str | Path) -> dict[str, str]:
        paths = write_input(self.store.read_payload(), Path(directory))
        logger.info("exported snapshot to %s", directory)
        return {name: str(path) for name, path in paths.items()}

    def export_xlsx(self, path: str | Path | None = None, *, trace: list[str] | None = None) -> str:
        if path is None:
            if self.artifact_root is None:
                raise ValueError("export path required when no artifact root is configured")
            path = self.artifact_root / "exports" / "allotment.xlsx"
        target = render_xlsx(self.snapshot(), Path(path), trace=trace)
        logger.info("exported workbook to %s", target)
        return str(target)
