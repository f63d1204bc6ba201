"""Post-hoc validation of an allocation set against load, capacity and role limits.

Used by the service before committing an engine result, and by tests to
audit results independently of the engine's own bookkeeping.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from typing import Any, Iterable

from .models import (
    DEFAULT_MAX_CO_TEACHERS,
    ROLE_CO_TEACHER,
    ROLE_COORDINATOR,
    ROLE_THEORY,
    Allocation,
)
from .snapshot import Snapshot, ensure_snapshot

VIOLATIONS = frozenset({
    "unknown_faculty",
    "unknown_subject",
    "duplicate_assignment",
    "max_load_exceeded",
    "lab_load_exceeded",
    "subject_capacity_exceeded",
    "multiple_coordinators",
    "co_teacher_limit_exceeded",
    "multiple_coordinator_roles",
})


def _as_allocations(rows: Iterable[Allocation | dict[str, Any]]) -> list[Allocation]:
    return [r if isinstance(r, Allocation) else Allocation.from_row(r) for r in rows]


def _violation(faculty_id: str | None, subject_id: str | None, section: int | None, code: str, detail: str) -> dict[str, Any]:
    return {
        "faculty_id": faculty_id,
        "subject_id": subject_id,
        "section": section,
        "violation": code,
        "detail": detail,
    }


def validate_allocations(
    snapshot: Snapshot | dict[str, Any],
    allocations: Iterable[Allocation | dict[str, Any]],
    *,
    max_co_teachers: int = DEFAULT_MAX_CO_TEACHERS,
) -> list[dict[str, Any]]:
    """Return one violation dict per broken limit; empty when the set is clean.

    ``allocations`` is the complete set to check (theory and lab roles), not
    a delta against the snapshot.
    """
    snap = ensure_snapshot(snapshot)
    faculty = snap.faculty_by_id()
    subjects = snap.subject_by_id()
    rows = _as_allocations(allocations)
    violations: list[dict[str, Any]] = []

    known: list[Allocation] = []
    for a in rows:
        if a.faculty_id not in faculty:
            violations.append(_violation(a.faculty_id, a.subject_id, a.section, "unknown_faculty",
                                         f"faculty {a.faculty_id} not in roster"))
            continue
        if a.subject_id not in subjects:
            violations.append(_violation(a.faculty_id, a.subject_id, a.section, "unknown_subject",
                                         f"subject {a.subject_id} not in catalogue"))
            continue
        known.append(a)

    triples = Counter((a.faculty_id, a.subject_id, a.section) for a in known)
    for (fid, sid, section), count in sorted(triples.items()):
        if count > 1:
            violations.append(_violation(fid, sid, section, "duplicate_assignment",
                                         f"{subjects[sid].code} section {section} assigned {count} times"))

    theory_load = Counter(a.faculty_id for a in known if a.role == ROLE_THEORY)
    lab_load = Counter(a.faculty_id for a in known if a.is_lab_role)
    for fid in sorted(set(theory_load) | set(lab_load)):
        f = faculty[fid]
        if theory_load[fid] > f.max_load:
            violations.append(_violation(fid, None, None, "max_load_exceeded",
                                         f"{f.name} holds {theory_load[fid]} theory subjects > {f.max_load}"))
        if lab_load[fid] > f.lab_load:
            violations.append(_violation(fid, None, None, "lab_load_exceeded",
                                         f"{f.name} holds {lab_load[fid]} lab roles > {f.lab_load}"))

    theory_per_subject = Counter(a.subject_id for a in known if a.role == ROLE_THEORY)
    for sid, count in sorted(theory_per_subject.items()):
        if count > subjects[sid].sections:
            violations.append(_violation(None, sid, None, "subject_capacity_exceeded",
                                         f"{subjects[sid].code} has {count} allocations > {subjects[sid].sections} sections"))

    coordinators: dict[tuple[str, int], list[str]] = defaultdict(list)
    co_teachers: dict[tuple[str, int], list[str]] = defaultdict(list)
    roles_by_faculty: dict[str, list[tuple[str, int]]] = defaultdict(list)
    for a in known:
        if a.role == ROLE_COORDINATOR:
            coordinators[(a.subject_id, a.section)].append(a.faculty_id)
            roles_by_faculty[a.faculty_id].append((a.subject_id, a.section))
        elif a.role == ROLE_CO_TEACHER:
            co_teachers[(a.subject_id, a.section)].append(a.faculty_id)

    for (sid, section), fids in sorted(coordinators.items()):
        if len(fids) > 1:
            violations.append(_violation(None, sid, section, "multiple_coordinators",
                                         f"{subjects[sid].code} section {section} has {len(fids)} coordinators"))
    for (sid, section), fids in sorted(co_teachers.items()):
        if len(fids) > max_co_teachers:
            violations.append(_violation(None, sid, section, "co_teacher_limit_exceeded",
                                         f"{subjects[sid].code} section {section} has {len(fids)} co-teachers > {max_co_teachers}"))
    for fid, slots in sorted(roles_by_faculty.items()):
        if len(slots) > 1:
            violations.append(_violation(fid, None, None, "multiple_coordinator_roles",
                                         f"{faculty[fid].name} coordinates {len(slots)} lab sections"))

    return violations
