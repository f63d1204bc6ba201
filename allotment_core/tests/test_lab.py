"""Lab role allocation: phase behaviour, section/role limits and idempotence."""

from __future__ import annotations

from collections import Counter
from pathlib import Path

import pytest

from allotment_core.constraints import validate_allocations
from allotment_core.io.reader import load_input
from allotment_core.lab import LabLedger, run_lab_allocation
from allotment_core.snapshot import build_snapshot

FIXTURES_DIR = Path(__file__).resolve().parents[1] / "io" / "tests" / "fixtures" / "minimal"

# Theory allocations after both counselling rounds on the minimal fixture.
FIXTURE_THEORY = [
    ("f1", "s1", 1, 1),
    ("f2", "s3", 1, 1),
    ("f3", "s4", 1, 1),
    ("f1", "s6", 1, 2),
    ("f2", "s1", 2, 2),
]


def _faculty(fid, seniority, lab_load=3):
    return {"id": fid, "username": fid, "name": fid.upper(), "seniority": seniority, "lab_load": lab_load}


def _theory(fid, sid, section=1):
    return {"faculty_id": fid, "subject_id": sid, "section": section, "role": "theory", "round_number": 1}


def _cs501_payload(**overrides):
    payload = {
        "faculty": [_faculty("a", 1), _faculty("b", 2)],
        "subjects": [
            {"id": "t", "code": "CS501", "name": "Computer Networks", "semester": 5, "type": "Core",
             "credits": 4, "sections": 2},
            {"id": "l", "code": "CS501L", "name": "Computer Networks Lab", "semester": 5, "type": "Lab",
             "credits": 2, "sections": 2, "is_lab": True, "related_theory_id": "t"},
        ],
        "allocations": [_theory("a", "t", 1), _theory("b", "t", 2)],
    }
    payload.update(overrides)
    return payload


def _roles(result):
    return {(r["faculty_id"], r["subject_code"], r["section"], r["role"]) for r in result["allocations"]}


@pytest.fixture
def fixture_payload():
    payload = load_input(FIXTURES_DIR)
    payload["allocations"] = [
        {"faculty_id": f, "subject_id": s, "section": sec, "role": "theory", "round_number": rnd}
        for f, s, sec, rnd in FIXTURE_THEORY
    ]
    return payload


class TestLinkage:
    def test_theory_teacher_coordinates_section_one(self):
        result = run_lab_allocation(_cs501_payload())
        assert ("a", "CS501L", 1, "coordinator") in _roles(result)

    def test_second_theory_teacher_becomes_co_teacher(self):
        result = run_lab_allocation(_cs501_payload())
        assert ("b", "CS501L", 1, "co_teacher") in _roles(result)
        section_one = next(s for s in result["sections"] if s["section"] == 1)
        assert section_one["coordinator"] == "a"
        assert section_one["co_teachers"] == ["b"]

    def test_existing_coordinator_links_as_co_teacher(self):
        payload = _cs501_payload(faculty=[_faculty("a", 1)], allocations=[_theory("a", "t")])
        payload["subjects"].append(
            {"id": "u", "code": "CS502", "name": "Compilers", "semester": 5, "type": "Core", "credits": 4}
        )
        payload["subjects"].append(
            {"id": "ul", "code": "CS502L", "name": "Compilers Lab", "semester": 5, "type": "Lab", "credits": 2,
             "is_lab": True, "related_theory_id": "u"}
        )
        payload["allocations"].append(_theory("a", "u"))
        result = run_lab_allocation(payload)
        roles = {(r["subject_code"], r["section"]): r["role"] for r in result["allocations"]}
        assert roles[("CS501L", 1)] == "coordinator"
        assert roles[("CS502L", 1)] == "co_teacher"


class TestExpansionAndPreferences:
    def test_expansion_adds_further_sections_as_co_teacher(self):
        result = run_lab_allocation(_cs501_payload())
        assert ("a", "CS501L", 2, "co_teacher") in _roles(result)
        assert result["phase_counts"] == {"linkage": 2, "expansion": 2, "preferences": 0}

    def test_preferences_claim_free_coordinator_slot(self):
        payload = _cs501_payload(
            faculty=[_faculty("a", 1), _faculty("c", 3)],
            allocations=[_theory("a", "t")],
            lab_preferences=[{"faculty_id": "c", "subject_id": "l", "rank": 1}],
        )
        result = run_lab_allocation(payload)
        roles = _roles(result)
        assert ("c", "CS501L", 1, "co_teacher") in roles
        assert ("a", "CS501L", 2, "co_teacher") in roles
        assert ("c", "CS501L", 2, "coordinator") in roles

    def test_lab_load_caps_roles(self):
        payload = _cs501_payload(faculty=[_faculty("a", 1, lab_load=1), _faculty("b", 2, lab_load=1)])
        result = run_lab_allocation(payload)
        load = Counter(r["faculty_id"] for r in result["allocations"])
        assert load == {"a": 1, "b": 1}

    def test_zero_lab_load_gets_nothing(self):
        payload = _cs501_payload(faculty=[_faculty("a", 1, lab_load=0), _faculty("b", 2)])
        result = run_lab_allocation(payload)
        assert all(r["faculty_id"] != "a" for r in result["allocations"])
        assert result["rejections"] >= 1

    def test_fixture_full_run(self, fixture_payload):
        result = run_lab_allocation(fixture_payload)
        assert result["allocated_count"] == 8
        assert result["phase_counts"] == {"linkage": 3, "expansion": 2, "preferences": 3}
        sections = {(s["subject_code"], s["section"]): (s["coordinator"], s["co_teachers"]) for s in result["sections"]}
        assert sections == {
            ("CS501L", 1): ("f1", ["f2", "f4"]),
            ("CS501L", 2): ("f4", ["f1", "f2"]),
            ("CS503L", 1): ("f3", ["f4"]),
        }


class TestLimits:
    def test_co_teacher_limit(self):
        faculty = [_faculty(f"p{i}", i) for i in range(1, 7)]
        payload = {
            "faculty": faculty,
            "subjects": [
                {"id": "l", "code": "CS600L", "name": "Lab", "semester": 6, "type": "Lab", "credits": 2,
                 "sections": 1, "is_lab": True},
            ],
            "lab_preferences": [{"faculty_id": f["id"], "subject_id": "l", "rank": 1} for f in faculty],
        }
        result = run_lab_allocation(payload, max_co_teachers=3)
        section = result["sections"][0]
        assert section["coordinator"] == "p1"
        assert section["co_teachers"] == ["p2", "p3", "p4"]
        assert result["allocated_count"] == 4
        assert any("co_teachers_full" in line for line in result["trace"])

    def test_result_passes_invariant_audit(self, fixture_payload):
        snap = build_snapshot(fixture_payload)
        result = run_lab_allocation(snap)
        audit = [a for a in snap.theory_allocations()] + [
            {k: r[k] for k in ("faculty_id", "subject_id", "section", "role")} for r in result["allocations"]
        ]
        assert validate_allocations(snap, audit) == []

    def test_single_coordinator_role_per_faculty(self, fixture_payload):
        result = run_lab_allocation(fixture_payload)
        coordinators = Counter(r["faculty_id"] for r in result["allocations"] if r["role"] == "coordinator")
        assert max(coordinators.values()) == 1


class TestIdempotence:
    def test_rerun_yields_identical_set(self, fixture_payload):
        first = run_lab_allocation(fixture_payload)
        again = {**fixture_payload, "allocations": fixture_payload["allocations"] + [
            {k: r[k] for k in ("faculty_id", "subject_id", "section", "role")} for r in first["allocations"]
        ]}
        second = run_lab_allocation(again)
        assert _roles(first) == _roles(second)
        assert first["trace"] == second["trace"]


class TestLedger:
    def test_rejection_reasons(self):
        snap = build_snapshot(_cs501_payload())
        ledger = LabLedger(faculty=snap.faculty_by_id(), subjects=snap.subject_by_id())
        assert ledger.rejection_reason("a", "l", 3, "coordinator") == "section_out_of_range"
        assert ledger.assign("a", "l", 1, "coordinator", phase=1)
        assert ledger.rejection_reason("b", "l", 1, "coordinator") == "coordinator_taken"
        assert ledger.rejection_reason("a", "l", 2, "coordinator") == "already_coordinator"
        assert ledger.rejection_reason("a", "l", 1, "co_teacher") == "already_in_section"
        assert ledger.preferred_role("b", "l", 1) == "co_teacher"
        assert ledger.preferred_role("b", "l", 2) == "coordinator"
