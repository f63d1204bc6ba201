"""Seniority-ordered theory subject matching.

One call is one counselling round: each faculty member below their
``max_load`` receives at most one new theory subject, the first entry of
their ranked list that still has a free section and that they do not
already teach.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from typing import Any

from .models import ROLE_THEORY, Allocation
from .snapshot import Snapshot, ensure_snapshot

logger = logging.getLogger(__name__)


def _free_sections(subject_sections: int, used: set[int]) -> list[int]:
    return [n for n in range(1, subject_sections + 1) if n not in used]


def run_theory_round(snapshot: Snapshot | dict[str, Any], *, round_number: int = 1) -> dict[str, Any]:
    """Compute the new theory allocations for one round.

    Existing allocations are never modified; the result lists only the rows
    to insert. Faculty who receive nothing are reported in ``unfulfilled``
    with a reason, which is not an error.
    """
    snap = ensure_snapshot(snapshot)
    subjects = snap.subject_by_id()
    existing = snap.theory_allocations()

    used_sections: dict[str, set[int]] = defaultdict(set)
    held_by_faculty: dict[str, set[str]] = defaultdict(set)
    for a in existing:
        used_sections[a.subject_id].add(a.section)
        held_by_faculty[a.faculty_id].add(a.subject_id)

    existing_count = Counter(a.subject_id for a in existing)
    remaining = {sid: max(s.sections - existing_count[sid], 0) for sid, s in subjects.items()}
    load = Counter(a.faculty_id for a in existing)

    new_rows: list[dict[str, Any]] = []
    unfulfilled: list[dict[str, Any]] = []
    trace: list[str] = []

    for faculty in snap.teaching_faculty():
        if load[faculty.id] >= faculty.max_load:
            trace.append(f"skip {faculty.name}: already at max load {faculty.max_load}")
            continue

        prefs = snap.preferences_for(faculty.id)
        if not prefs:
            unfulfilled.append({"faculty_id": faculty.id, "faculty_name": faculty.name, "reason": "no_preferences"})
            trace.append(f"skip {faculty.name}: no saved preferences")
            continue

        chosen = None
        for pref in prefs:
            subject = subjects[pref.subject_id]
            if subject.is_lab:
                continue
            if remaining[subject.id] <= 0:
                trace.append(f"{faculty.name}: rank {pref.rank} {subject.code} has no free section")
                continue
            if subject.id in held_by_faculty[faculty.id]:
                continue
            chosen = (pref, subject)
            break

        if chosen is None:
            unfulfilled.append(
                {"faculty_id": faculty.id, "faculty_name": faculty.name, "reason": "all_preferences_unavailable"}
            )
            trace.append(f"{faculty.name}: no preferred subject available")
            continue

        pref, subject = chosen
        free = _free_sections(subject.sections, used_sections[subject.id])
        # Remaining capacity > 0 guarantees a free section number unless
        # legacy rows used section numbers beyond the catalogue count.
        section = free[0] if free else max(used_sections[subject.id], default=0) + 1

        allocation = Allocation(
            faculty_id=faculty.id,
            subject_id=subject.id,
            section=section,
            role=ROLE_THEORY,
            round_number=round_number,
        )
        new_rows.append(
            {
                **allocation.to_row(),
                "faculty_name": faculty.name,
                "subject_code": subject.code,
                "preference_rank": pref.rank,
            }
        )
        remaining[subject.id] -= 1
        used_sections[subject.id].add(section)
        held_by_faculty[faculty.id].add(subject.id)
        load[faculty.id] += 1
        trace.append(f"{faculty.name} -> {subject.code} section {section} (rank {pref.rank})")

    logger.debug(
        "theory round %s: %d new allocations, %d faculty unfulfilled",
        round_number,
        len(new_rows),
        len(unfulfilled),
    )

    return {
        "round_number": round_number,
        "new_allocation_count": len(new_rows),
        "allocations": new_rows,
        "unfulfilled": unfulfilled,
        "remaining_capacity": {subjects[sid].code: cap for sid, cap in sorted(remaining.items())},
        "trace": trace,
    }
