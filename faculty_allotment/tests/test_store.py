"""SQLite store: payload load/read, transactions and singletons."""

from __future__ import annotations

import sqlite3
from dataclasses import replace
from pathlib import Path

import pytest

from allotment_core.io.reader import load_input
from allotment_core.models import LAB_ROLES, Allocation, Preference
from allotment_core.rounds import RoundState
from allotment_core.snapshot import build_snapshot
from faculty_allotment.store import AllotmentStore

FIXTURES_DIR = Path(__file__).resolve().parents[2] / "allotment_core" / "io" / "tests" / "fixtures" / "minimal"


@pytest.fixture
def store(tmp_path):
    s = AllotmentStore(tmp_path / "allotment.db")
    s.load_payload(build_snapshot(load_input(FIXTURES_DIR)))
    yield s
    s.close()


class TestPayload:
    def test_roundtrip(self, store):
        snap = build_snapshot(store.read_payload())
        original = build_snapshot(load_input(FIXTURES_DIR))
        assert sorted(snap.faculty, key=lambda f: f.id) == sorted(original.faculty, key=lambda f: f.id)
        assert sorted(snap.subjects, key=lambda s: s.id) == sorted(original.subjects, key=lambda s: s.id)
        assert len(snap.preferences) == 9
        assert len(snap.lab_preferences) == 3
        assert len(snap.history) == 5

    def test_load_replaces_everything(self, store):
        store.insert_allocations([Allocation("f1", "s1", 1, "theory", 1)])
        store.load_payload(build_snapshot(load_input(FIXTURES_DIR)))
        assert store.read_payload()["allocations"] == []


class TestAllocations:
    def test_insert_and_delete_by_role(self, store):
        store.insert_allocations([
            Allocation("f1", "s1", 1, "theory", 1),
            Allocation("f1", "s2", 1, "coordinator"),
            Allocation("f2", "s2", 1, "co_teacher"),
        ])
        assert store.delete_allocations_by_role(LAB_ROLES) == 2
        rows = store.read_payload()["allocations"]
        assert [(r["faculty_id"], r["role"]) for r in rows] == [("f1", "theory")]

    def test_delete_by_round(self, store):
        store.insert_allocations([
            Allocation("f1", "s1", 1, "theory", 1),
            Allocation("f2", "s3", 1, "theory", 2),
        ])
        assert store.delete_allocations_by_round(2) == 1

    def test_create_and_delete_single(self, store):
        allocation_id = store.create_allocation(Allocation("f1", "s1", 1, "theory"))
        assert store.read_payload()["allocations"][0]["id"] == allocation_id
        assert store.delete_allocation(allocation_id) is True
        assert store.delete_allocation(allocation_id) is False
        assert store.delete_allocation("abc") is False

    def test_unique_triple(self, store):
        store.create_allocation(Allocation("f1", "s1", 1, "theory"))
        with pytest.raises(sqlite3.IntegrityError):
            store.create_allocation(Allocation("f1", "s1", 1, "theory"))


class TestTransactions:
    def test_failure_rolls_back_whole_block(self, store):
        store.insert_allocations([Allocation("f1", "s2", 1, "coordinator")])
        with pytest.raises(sqlite3.IntegrityError):
            with store.transaction():
                store.delete_allocations_by_role(LAB_ROLES)
                store.insert_allocations([
                    Allocation("f2", "s2", 1, "coordinator"),
                    Allocation("f2", "s2", 1, "co_teacher"),
                ])
        rows = store.read_payload()["allocations"]
        assert [(r["faculty_id"], r["role"]) for r in rows] == [("f1", "coordinator")]

    def test_exception_inside_block_rolls_back(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.set_round_state(RoundState.ROUND1_ACTIVE)
                raise RuntimeError("boom")
        assert store.get_round_state() is RoundState.NOT_STARTED

    def test_unknown_faculty_rejected_by_foreign_key(self, store):
        with pytest.raises(sqlite3.IntegrityError):
            store.insert_allocations([Allocation("nobody", "s1", 1, "theory")])


class TestPreferencesAndUpdates:
    def test_save_preferences_replaces_one_kind(self, store):
        store.save_preferences("f3", [Preference("f3", "s2", 1)], kind="lab")
        payload = store.read_payload()
        assert [p["subject_id"] for p in payload["lab_preferences"] if p["faculty_id"] == "f3"] == ["s2"]
        assert len([p for p in payload["preferences"] if p["faculty_id"] == "f3"]) == 3

    def test_save_preferences_bad_kind(self, store):
        with pytest.raises(ValueError):
            store.save_preferences("f3", [], kind="seminar")

    def test_update_seniority(self, store):
        store.update_seniority({"f4": 0})
        snap = build_snapshot(store.read_payload())
        assert snap.teaching_faculty()[0].id == "f4"
        with pytest.raises(KeyError):
            store.update_seniority({"ghost": 1})

    def test_update_subject_categories(self, store):
        snap = build_snapshot(store.read_payload())
        subject = snap.subject_by_id()["s4"]
        store.update_subject_categories([replace(subject, category="Databases")])
        assert build_snapshot(store.read_payload()).subject_by_id()["s4"].category == "Databases"


class TestSingletons:
    def test_round_state_default_and_update(self, store):
        assert store.get_round_state() is RoundState.NOT_STARTED
        store.set_round_state(RoundState.ROUND1_ACTIVE)
        assert store.get_round_state() is RoundState.ROUND1_ACTIVE

    def test_settings(self, tmp_path):
        with AllotmentStore(tmp_path / "s.db", default_min_preferences=5) as s:
            assert s.get_settings()["min_preferences"] == 5
            assert s.update_settings(min_preferences=7)["min_preferences"] == 7
            with pytest.raises(ValueError):
                s.update_settings(min_preferences=0)

    def test_reset_all(self, store):
        store.insert_allocations([Allocation("f1", "s1", 1, "theory", 1)])
        store.set_round_state(RoundState.ROUND1_DONE)
        removed = store.reset_all(clear_preferences=False)
        assert removed == {"allocations": 1, "preferences": 0}
        assert store.get_round_state() is RoundState.NOT_STARTED
        assert len(store.read_payload()["preferences"]) == 9

        assert store.reset_all()["preferences"] == 12
