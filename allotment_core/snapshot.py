"""Build and validate the read-once snapshot every engine call works from."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable

from .errors import InvalidSnapshotError
from .models import (
    ROLE_THEORY,
    Allocation,
    Faculty,
    LoadHistory,
    Preference,
    Subject,
    SubjectHistory,
    seniority_key,
)


@dataclass(frozen=True)
class Snapshot:
    faculty: tuple[Faculty, ...]
    subjects: tuple[Subject, ...]
    preferences: tuple[Preference, ...] = ()
    lab_preferences: tuple[Preference, ...] = ()
    allocations: tuple[Allocation, ...] = ()
    history: tuple[SubjectHistory, ...] = ()
    load_history: tuple[LoadHistory, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    def faculty_by_id(self) -> dict[str, Faculty]:
        return {f.id: f for f in self.faculty}

    def subject_by_id(self) -> dict[str, Subject]:
        return {s.id: s for s in self.subjects}

    def teaching_faculty(self) -> list[Faculty]:
        """Faculty-role members, most senior first."""
        return sorted((f for f in self.faculty if f.is_faculty), key=seniority_key)

    def preferences_for(self, faculty_id: str, *, lab: bool = False) -> list[Preference]:
        rows = self.lab_preferences if lab else self.preferences
        return sorted((p for p in rows if p.faculty_id == faculty_id), key=lambda p: p.rank)

    def theory_allocations(self) -> list[Allocation]:
        return [a for a in self.allocations if a.role == ROLE_THEORY]

def _build_rows(rows: Iterable[dict[str, Any]] | None, factory) -> tuple:
    return tuple(factory(row) for row in (rows or []))


def _check_unique(values: Iterable[str], what: str) -> None:
    seen: set[str] = set()
    for value in values:
        if value in seen:
            raise InvalidSnapshotError(f"duplicate {what}: {value!r}")
        seen.add(value)


def validate_preference_list(prefs: list[Preference], *, faculty_id: str, label: str) -> None:
    """Ranks must be dense 1..N and each subject may appear once."""
    ranks = sorted(p.rank for p in prefs)
    if ranks != list(range(1, len(prefs) + 1)):
        raise InvalidSnapshotError(
            f"{label} ranks for faculty {faculty_id} must be dense 1..{len(prefs)}, got {ranks}"
        )
    subjects = [p.subject_id for p in prefs]
    if len(set(subjects)) != len(subjects):
        raise InvalidSnapshotError(f"{label} list for faculty {faculty_id} names a subject twice")


def _validate_preferences(
    prefs: tuple[Preference, ...],
    *,
    label: str,
    faculty_ids: set[str],
    subject_ids: set[str],
) -> None:
    by_faculty: dict[str, list[Preference]] = defaultdict(list)
    for p in prefs:
        if p.faculty_id not in faculty_ids:
            raise InvalidSnapshotError(f"{label} references unknown faculty {p.faculty_id!r}")
        if p.subject_id not in subject_ids:
            raise InvalidSnapshotError(f"{label} references unknown subject {p.subject_id!r}")
        by_faculty[p.faculty_id].append(p)
    for fid, rows in by_faculty.items():
        validate_preference_list(rows, faculty_id=fid, label=label)


def build_snapshot(payload: dict[str, Any]) -> Snapshot:
    """Turn a payload of plain rows into a validated ``Snapshot``.

    Expected keys: ``faculty``, ``subjects``, ``preferences``,
    ``lab_preferences``, ``allocations``, ``history``, ``load_history``.
    Only ``faculty`` and ``subjects`` are required.
    """
    if "faculty" not in payload or "subjects" not in payload:
        raise InvalidSnapshotError("snapshot payload needs 'faculty' and 'subjects'")

    faculty = _build_rows(payload.get("faculty"), Faculty.from_row)
    subjects = _build_rows(payload.get("subjects"), Subject.from_row)
    preferences = _build_rows(payload.get("preferences"), Preference.from_row)
    lab_preferences = _build_rows(payload.get("lab_preferences"), Preference.from_row)
    allocations = _build_rows(payload.get("allocations"), Allocation.from_row)
    history = _build_rows(payload.get("history"), SubjectHistory.from_row)
    load_history = _build_rows(payload.get("load_history"), LoadHistory.from_row)

    _check_unique((f.id for f in faculty), "faculty id")
    _check_unique((f.username for f in faculty), "faculty username")
    _check_unique((s.id for s in subjects), "subject id")
    _check_unique((s.code for s in subjects), "subject code")

    faculty_ids = {f.id for f in faculty}
    subject_ids = {s.id for s in subjects}

    for s in subjects:
        if s.related_theory_id and s.related_theory_id not in subject_ids:
            raise InvalidSnapshotError(
                f"lab {s.code} links to unknown theory subject {s.related_theory_id!r}"
            )

    _validate_preferences(preferences, label="preference", faculty_ids=faculty_ids, subject_ids=subject_ids)
    _validate_preferences(lab_preferences, label="lab preference", faculty_ids=faculty_ids, subject_ids=subject_ids)

    triples: set[tuple[str, str, int]] = set()
    for a in allocations:
        if a.faculty_id not in faculty_ids:
            raise InvalidSnapshotError(f"allocation references unknown faculty {a.faculty_id!r}")
        if a.subject_id not in subject_ids:
            raise InvalidSnapshotError(f"allocation references unknown subject {a.subject_id!r}")
        key = (a.faculty_id, a.subject_id, a.section)
        if key in triples:
            raise InvalidSnapshotError(f"duplicate allocation for faculty/subject/section {key}")
        triples.add(key)

    return Snapshot(
        faculty=faculty,
        subjects=subjects,
        preferences=preferences,
        lab_preferences=lab_preferences,
        allocations=allocations,
        history=history,
        load_history=load_history,
        metadata=dict(payload.get("metadata") or {}),
    )


def ensure_snapshot(value: Snapshot | dict[str, Any]) -> Snapshot:
    if isinstance(value, Snapshot):
        return value
    return build_snapshot(value)
