"""Three-phase laboratory role allocation.

Phases:
1) mandatory linkage: whoever teaches a theory subject takes section 1 of
   its companion lab,
2) same-subject expansion: fill remaining lab quota with further sections
   of labs the faculty already holds,
3) preference fill: walk the ranked lab preferences.

Every phase goes through ``LabLedger.assign`` so coordinator, co-teacher
and quota limits hold after each step. The result replaces all previous
coordinator/co_teacher rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .models import (
    DEFAULT_MAX_CO_TEACHERS,
    ROLE_CO_TEACHER,
    ROLE_COORDINATOR,
    Allocation,
    Faculty,
    Subject,
)
from .snapshot import Snapshot, ensure_snapshot

logger = logging.getLogger(__name__)


@dataclass
class SectionUsage:
    coordinator: str | None = None
    co_teachers: list[str] = field(default_factory=list)

    def members(self) -> set[str]:
        out = set(self.co_teachers)
        if self.coordinator:
            out.add(self.coordinator)
        return out


@dataclass
class FacultyWorkload:
    total_labs: int = 0
    coordinator_of: tuple[str, int] | None = None
    subjects: list[str] = field(default_factory=list)

    @property
    def has_coordinator_role(self) -> bool:
        return self.coordinator_of is not None


@dataclass
class LabLedger:
    """Scratch state for one lab allocation run."""

    faculty: dict[str, Faculty]
    subjects: dict[str, Subject]
    max_co_teachers: int = DEFAULT_MAX_CO_TEACHERS
    sections: dict[tuple[str, int], SectionUsage] = field(default_factory=dict)
    workload: dict[str, FacultyWorkload] = field(default_factory=dict)
    allocations: list[Allocation] = field(default_factory=list)
    trace: list[str] = field(default_factory=list)
    rejections: int = 0

    def usage(self, subject_id: str, section: int) -> SectionUsage:
        return self.sections.setdefault((subject_id, section), SectionUsage())

    def load(self, faculty_id: str) -> FacultyWorkload:
        return self.workload.setdefault(faculty_id, FacultyWorkload())

    def under_quota(self, faculty_id: str) -> bool:
        return self.load(faculty_id).total_labs < self.faculty[faculty_id].lab_load

    def rejection_reason(self, faculty_id: str, subject_id: str, section: int, role: str) -> str | None:
        subject = self.subjects[subject_id]
        if section < 1 or section > subject.sections:
            return "section_out_of_range"
        work = self.load(faculty_id)
        if work.total_labs >= self.faculty[faculty_id].lab_load:
            return "lab_load_reached"
        slot = self.usage(subject_id, section)
        if faculty_id in slot.members():
            return "already_in_section"
        if role == ROLE_COORDINATOR:
            if slot.coordinator is not None:
                return "coordinator_taken"
            if work.has_coordinator_role:
                return "already_coordinator"
        elif len(slot.co_teachers) >= self.max_co_teachers:
            return "co_teachers_full"
        return None

    def assign(self, faculty_id: str, subject_id: str, section: int, role: str, *, phase: int) -> bool:
        """Record one role if every limit allows it; returns whether it was taken."""
        faculty = self.faculty[faculty_id]
        subject = self.subjects[subject_id]
        reason = self.rejection_reason(faculty_id, subject_id, section, role)
        if reason is not None:
            self.rejections += 1
            self.trace.append(
                f"phase {phase}: rejected {faculty.name} as {role} of {subject.code} section {section} ({reason})"
            )
            return False

        slot = self.usage(subject_id, section)
        work = self.load(faculty_id)
        if role == ROLE_COORDINATOR:
            slot.coordinator = faculty_id
            work.coordinator_of = (subject_id, section)
        else:
            slot.co_teachers.append(faculty_id)
        work.total_labs += 1
        if subject_id not in work.subjects:
            work.subjects.append(subject_id)

        self.allocations.append(
            Allocation(faculty_id=faculty_id, subject_id=subject_id, section=section, role=role)
        )
        self.trace.append(f"phase {phase}: {faculty.name} -> {subject.code} section {section} as {role}")
        return True

    def preferred_role(self, faculty_id: str, subject_id: str, section: int) -> str:
        """Coordinator when the faculty coordinates nothing yet and the slot is free."""
        if not self.load(faculty_id).has_coordinator_role and self.usage(subject_id, section).coordinator is None:
            return ROLE_COORDINATOR
        return ROLE_CO_TEACHER


def _phase_linkage(ledger: LabLedger, snap: Snapshot, ordered: list[Faculty]) -> None:
    labs_by_theory: dict[str, Subject] = {}
    for subject in sorted(snap.subjects, key=lambda s: s.code):
        if subject.is_lab and subject.related_theory_id and subject.related_theory_id not in labs_by_theory:
            labs_by_theory[subject.related_theory_id] = subject

    rank = {f.id: i for i, f in enumerate(ordered)}
    theory = [a for a in snap.theory_allocations() if a.faculty_id in rank]
    theory.sort(key=lambda a: (rank[a.faculty_id], ledger.subjects[a.subject_id].code, a.section))

    for allocation in theory:
        lab = labs_by_theory.get(allocation.subject_id)
        if lab is None:
            continue
        role = ledger.preferred_role(allocation.faculty_id, lab.id, 1)
        ledger.assign(allocation.faculty_id, lab.id, 1, role, phase=1)


def _phase_expansion(ledger: LabLedger, ordered: list[Faculty]) -> None:
    for faculty in ordered:
        for subject_id in list(ledger.load(faculty.id).subjects):
            subject = ledger.subjects[subject_id]
            for section in range(2, subject.sections + 1):
                if not ledger.under_quota(faculty.id):
                    break
                if faculty.id in ledger.usage(subject_id, section).members():
                    continue
                ledger.assign(faculty.id, subject_id, section, ROLE_CO_TEACHER, phase=2)


def _phase_preferences(ledger: LabLedger, snap: Snapshot, ordered: list[Faculty]) -> None:
    for faculty in ordered:
        for pref in snap.preferences_for(faculty.id, lab=True):
            if not ledger.under_quota(faculty.id):
                break
            subject = ledger.subjects[pref.subject_id]
            if not subject.is_lab:
                continue
            for section in range(1, subject.sections + 1):
                if not ledger.under_quota(faculty.id):
                    break
                if faculty.id in ledger.usage(subject.id, section).members():
                    continue
                role = ledger.preferred_role(faculty.id, subject.id, section)
                ledger.assign(faculty.id, subject.id, section, role, phase=3)


def run_lab_allocation(
    snapshot: Snapshot | dict[str, Any],
    *,
    max_co_teachers: int = DEFAULT_MAX_CO_TEACHERS,
) -> dict[str, Any]:
    """Recompute every lab role from scratch.

    Prior coordinator/co_teacher rows in the snapshot are ignored; the
    returned ``allocations`` are the complete replacement set.
    """
    snap = ensure_snapshot(snapshot)
    ordered = snap.teaching_faculty()
    ledger = LabLedger(
        faculty={f.id: f for f in ordered},
        subjects=snap.subject_by_id(),
        max_co_teachers=max_co_teachers,
    )

    _phase_linkage(ledger, snap, ordered)
    after_phase1 = len(ledger.allocations)
    _phase_expansion(ledger, ordered)
    after_phase2 = len(ledger.allocations)
    _phase_preferences(ledger, snap, ordered)

    logger.debug(
        "lab allocation: phase1=%d phase2=%d phase3=%d rejected=%d",
        after_phase1,
        after_phase2 - after_phase1,
        len(ledger.allocations) - after_phase2,
        ledger.rejections,
    )

    faculty = ledger.faculty
    subjects = ledger.subjects
    rows = [
        {
            **a.to_row(),
            "faculty_name": faculty[a.faculty_id].name,
            "subject_code": subjects[a.subject_id].code,
        }
        for a in ledger.allocations
    ]

    return {
        "allocated_count": len(rows),
        "allocations": rows,
        "phase_counts": {
            "linkage": after_phase1,
            "expansion": after_phase2 - after_phase1,
            "preferences": len(rows) - after_phase2,
        },
        "rejections": ledger.rejections,
        "trace": ledger.trace,
        "sections": [
            {
                "subject_id": subject_id,
                "subject_code": subjects[subject_id].code,
                "section": section,
                "coordinator": usage.coordinator,
                "co_teachers": list(usage.co_teachers),
            }
            for (subject_id, section), usage in sorted(
                ledger.sections.items(), key=lambda kv: (subjects[kv[0][0]].code, kv[0][1])
            )
            if usage.coordinator or usage.co_teachers
        ],
    }
