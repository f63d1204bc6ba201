"""Read-only allocation summary for the admin dashboard.

Unallocated subjects and unfulfilled faculty are reported here, never
raised by the matchers.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any

from .models import ROLE_THEORY
from .snapshot import Snapshot, ensure_snapshot


def _gini(values: list[float]) -> float:
    """Gini coefficient: 0 = perfect equality, 1 = total concentration."""
    if not values or all(v == 0 for v in values):
        return 0.0
    s = sorted(values)
    n = len(s)
    total = sum(s)
    if total == 0:
        return 0.0
    cum = sum((i + 1) * v for i, v in enumerate(s))
    return round((2 * cum) / (n * total) - (n + 1) / n, 4)


def summarize_allocations(snapshot: Snapshot | dict[str, Any]) -> dict[str, Any]:
    snap = ensure_snapshot(snapshot)
    faculty = snap.faculty_by_id()
    subjects = snap.subject_by_id()
    teaching = snap.teaching_faculty()

    per_faculty: dict[str, dict[str, Any]] = {
        f.id: {
            "faculty_id": f.id,
            "name": f.name,
            "seniority": f.seniority,
            "max_load": f.max_load,
            "lab_load": f.lab_load,
            "theory_subjects": [],
            "lab_roles": [],
        }
        for f in teaching
    }
    per_subject: dict[str, dict[str, Any]] = {
        s.id: {
            "subject_id": s.id,
            "code": s.code,
            "name": s.name,
            "sections": s.sections,
            "is_lab": s.is_lab,
            "faculty": [],
        }
        for s in snap.subjects
    }

    theory_count: dict[str, int] = defaultdict(int)
    for a in snap.allocations:
        subject = subjects[a.subject_id]
        member = faculty[a.faculty_id]
        per_subject[a.subject_id]["faculty"].append(
            {"faculty_id": member.id, "name": member.name, "section": a.section, "role": a.role}
        )
        entry = per_faculty.get(a.faculty_id)
        if entry is None:
            continue
        if a.role == ROLE_THEORY:
            theory_count[a.faculty_id] += 1
            entry["theory_subjects"].append({"code": subject.code, "section": a.section, "round": a.round_number})
        else:
            entry["lab_roles"].append({"code": subject.code, "section": a.section, "role": a.role})

    for sid, row in per_subject.items():
        theory_taken = sum(1 for item in row["faculty"] if item["role"] == ROLE_THEORY)
        row["remaining_capacity"] = None if row["is_lab"] else max(subjects[sid].sections - theory_taken, 0)

    unallocated = [row["code"] for row in per_subject.values() if not row["faculty"]]
    unfulfilled = [
        {"faculty_id": f.id, "name": f.name, "theory_count": theory_count[f.id], "max_load": f.max_load}
        for f in teaching
        if theory_count[f.id] < f.max_load
    ]

    faculty_with_prefs = {p.faculty_id for p in snap.preferences} | {p.faculty_id for p in snap.lab_preferences}
    loads = [float(len(row["theory_subjects"]) + len(row["lab_roles"])) for row in per_faculty.values()]

    return {
        "total_subjects": len(snap.subjects),
        "total_faculty": len(teaching),
        "total_allocations": len(snap.allocations),
        "total_preferences": len(snap.preferences) + len(snap.lab_preferences),
        "faculty_with_preferences": len(faculty_with_prefs),
        "unallocated_subjects": len(unallocated),
        "unallocated_subject_codes": sorted(unallocated),
        "unfulfilled_faculty": unfulfilled,
        "load_gini": _gini(loads),
        "faculty_allocations": list(per_faculty.values()),
        "subject_allocations": sorted(per_subject.values(), key=lambda row: row["code"]),
    }
