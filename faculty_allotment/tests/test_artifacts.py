from __future__ import annotations

import pytest

from faculty_allotment.artifacts import list_runs, load_run, save_run


class TestRunArtifacts:
    def test_save_and_load_latest(self, tmp_path):
        run_id, target = save_run(tmp_path, "theory", {"round_number": 1, "allocations": [{"faculty_id": "f1"}]})
        assert run_id.startswith("theory-")
        assert (target / "manifest.json").exists()
        loaded = load_run(tmp_path)
        assert loaded["run_id"] == run_id
        assert loaded["allocations"] == [{"faculty_id": "f1"}]

    def test_list_filters_by_kind(self, tmp_path):
        save_run(tmp_path, "theory", {"allocations": []})
        lab_id, _ = save_run(tmp_path, "lab", {"allocations": [], "rejections": 2})
        labs = list_runs(tmp_path, kind="lab")
        assert [m["run_id"] for m in labs] == [lab_id]
        assert labs[0]["counts"]["rejections"] == 2
        assert len(list_runs(tmp_path)) == 2

    def test_unreadable_manifest_is_skipped(self, tmp_path):
        save_run(tmp_path, "theory", {"allocations": []})
        broken = tmp_path / "runs" / "broken"
        broken.mkdir()
        (broken / "manifest.json").write_text("{not json", encoding="utf-8")
        assert len(list_runs(tmp_path)) == 1

    def test_missing_run(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_run(tmp_path, "theory-missing")
