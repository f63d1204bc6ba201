"""Theory matcher: seniority priority, load and capacity bounds, round behaviour."""

from __future__ import annotations

from pathlib import Path

import pytest

from allotment_core.constraints import validate_allocations
from allotment_core.io.reader import load_input
from allotment_core.snapshot import build_snapshot
from allotment_core.theory import run_theory_round

FIXTURES_DIR = Path(__file__).resolve().parents[1] / "io" / "tests" / "fixtures" / "minimal"


def _faculty(fid, seniority, max_load=2):
    return {"id": fid, "username": fid, "name": fid.upper(), "seniority": seniority, "max_load": max_load}


def _subject(sid, code, sections=1, **extra):
    return {"id": sid, "code": code, "name": code, "semester": 5, "type": "Core", "credits": 4,
            "sections": sections, **extra}


def _prefs(fid, *subject_ids):
    return [{"faculty_id": fid, "subject_id": sid, "rank": i} for i, sid in enumerate(subject_ids, 1)]


def _with_committed(payload, result):
    """Payload with the round's new allocations appended."""
    rows = list(payload.get("allocations", [])) + [
        {k: row[k] for k in ("faculty_id", "subject_id", "section", "role", "round_number")}
        for row in result["allocations"]
    ]
    return {**payload, "allocations": rows}


@pytest.fixture
def minimal_payload():
    return load_input(FIXTURES_DIR)


class TestSeniorityPriority:
    def test_senior_faculty_wins_contested_subject(self):
        payload = {
            "faculty": [_faculty("b", 2), _faculty("a", 1)],
            "subjects": [_subject("x", "CS100")],
            "preferences": _prefs("a", "x") + _prefs("b", "x"),
        }
        result = run_theory_round(payload)
        assert [(r["faculty_id"], r["subject_id"]) for r in result["allocations"]] == [("a", "x")]
        assert result["unfulfilled"] == [
            {"faculty_id": "b", "faculty_name": "B", "reason": "all_preferences_unavailable"}
        ]

    def test_missing_seniority_sorts_last(self):
        payload = {
            "faculty": [_faculty("late", None), _faculty("early", 5)],
            "subjects": [_subject("x", "CS100")],
            "preferences": _prefs("late", "x") + _prefs("early", "x"),
        }
        result = run_theory_round(payload)
        assert result["allocations"][0]["faculty_id"] == "early"

    def test_ties_broken_by_username(self):
        payload = {
            "faculty": [_faculty("zed", 1), _faculty("amy", 1)],
            "subjects": [_subject("x", "CS100")],
            "preferences": _prefs("zed", "x") + _prefs("amy", "x"),
        }
        assert run_theory_round(payload)["allocations"][0]["faculty_id"] == "amy"


class TestLoadAndCapacity:
    def test_faculty_at_max_load_is_skipped(self):
        payload = {
            "faculty": [_faculty("a", 1, max_load=2)],
            "subjects": [_subject("x", "CS100"), _subject("y", "CS101"), _subject("z", "CS102")],
            "preferences": _prefs("a", "x", "y", "z"),
            "allocations": [
                {"faculty_id": "a", "subject_id": "x", "section": 1, "role": "theory", "round_number": 1},
                {"faculty_id": "a", "subject_id": "y", "section": 1, "role": "theory", "round_number": 1},
            ],
        }
        result = run_theory_round(payload, round_number=2)
        assert result["new_allocation_count"] == 0
        assert result["unfulfilled"] == []
        assert any("already at max load" in line for line in result["trace"])

    def test_one_subject_per_faculty_per_round(self):
        payload = {
            "faculty": [_faculty("a", 1, max_load=3)],
            "subjects": [_subject("x", "CS100"), _subject("y", "CS101")],
            "preferences": _prefs("a", "x", "y"),
        }
        result = run_theory_round(payload)
        assert result["new_allocation_count"] == 1
        assert result["allocations"][0]["subject_id"] == "x"

    def test_multi_section_subject_fills_sections_in_order(self):
        payload = {
            "faculty": [_faculty("a", 1), _faculty("b", 2), _faculty("c", 3)],
            "subjects": [_subject("x", "CS100", sections=2), _subject("y", "CS101")],
            "preferences": _prefs("a", "x") + _prefs("b", "x") + _prefs("c", "x", "y"),
        }
        result = run_theory_round(payload)
        got = {(r["faculty_id"], r["subject_id"], r["section"]) for r in result["allocations"]}
        assert got == {("a", "x", 1), ("b", "x", 2), ("c", "y", 1)}
        assert result["remaining_capacity"] == {"CS100": 0, "CS101": 0}

    def test_lab_subjects_are_ignored(self):
        payload = {
            "faculty": [_faculty("a", 1)],
            "subjects": [_subject("l", "CS100L", type="Lab", is_lab=True), _subject("x", "CS100")],
            "preferences": _prefs("a", "l", "x"),
        }
        result = run_theory_round(payload)
        assert result["allocations"][0]["subject_id"] == "x"

    def test_no_preferences_is_reported_not_raised(self):
        payload = {"faculty": [_faculty("a", 1)], "subjects": [_subject("x", "CS100")]}
        result = run_theory_round(payload)
        assert result["new_allocation_count"] == 0
        assert result["unfulfilled"][0]["reason"] == "no_preferences"

    def test_non_faculty_roles_are_not_matched(self):
        payload = {
            "faculty": [{**_faculty("adm", 1), "role": "admin"}],
            "subjects": [_subject("x", "CS100")],
            "preferences": _prefs("adm", "x"),
        }
        assert run_theory_round(payload)["allocations"] == []


class TestRoundsOnFixture:
    def test_round_one(self, minimal_payload):
        result = run_theory_round(minimal_payload, round_number=1)
        got = [(r["faculty_id"], r["subject_code"], r["section"], r["preference_rank"]) for r in result["allocations"]]
        assert got == [
            ("f1", "CS501", 1, 1),
            ("f2", "CS502", 1, 1),
            ("f3", "CS503", 1, 2),
        ]
        assert all(r["round_number"] == 1 for r in result["allocations"])
        assert [u["faculty_id"] for u in result["unfulfilled"]] == ["f4"]

    def test_round_two_builds_on_round_one(self, minimal_payload):
        first = run_theory_round(minimal_payload, round_number=1)
        payload = _with_committed(minimal_payload, first)
        second = run_theory_round(payload, round_number=2)

        got = [(r["faculty_id"], r["subject_code"], r["section"]) for r in second["allocations"]]
        assert got == [("f1", "CS300", 1), ("f2", "CS501", 2)]
        reasons = {u["faculty_id"]: u["reason"] for u in second["unfulfilled"]}
        assert reasons == {"f3": "all_preferences_unavailable", "f4": "no_preferences"}

        final = _with_committed(payload, second)
        assert validate_allocations(final, build_snapshot(final).allocations) == []

    def test_input_snapshot_is_not_modified(self, minimal_payload):
        snap = build_snapshot(minimal_payload)
        run_theory_round(snap)
        assert snap.allocations == ()
