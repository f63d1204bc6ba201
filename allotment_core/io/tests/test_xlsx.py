"""Workbook export via openpyxl."""

from __future__ import annotations

from pathlib import Path

import pytest

from allotment_core.io import render_xlsx
from allotment_core.io.reader import load_input
from allotment_core.lab import run_lab_allocation
from allotment_core.theory import run_theory_round

openpyxl = pytest.importorskip("openpyxl")

FIXTURES_DIR = Path(__file__).parent / "fixtures" / "minimal"


@pytest.fixture
def allotted_payload():
    payload = load_input(FIXTURES_DIR)
    theory = run_theory_round(payload, round_number=1)
    payload = {**payload, "allocations": theory["allocations"]}
    lab = run_lab_allocation(payload)
    return {**payload, "allocations": theory["allocations"] + lab["allocations"]}, lab["trace"]


class TestRenderXlsx:
    def test_sheets(self, allotted_payload, tmp_path):
        payload, trace = allotted_payload
        path = render_xlsx(payload, tmp_path / "exports" / "allotment.xlsx", trace=trace)
        assert path.exists()
        wb = openpyxl.load_workbook(path)
        assert wb.sheetnames == ["Summary", "Allocations", "Lab Sections", "Unfulfilled", "Trace"]

    def test_allocation_rows(self, allotted_payload, tmp_path):
        payload, _ = allotted_payload
        wb = openpyxl.load_workbook(render_xlsx(payload, tmp_path / "a.xlsx"))
        ws = wb["Allocations"]
        rows = list(ws.iter_rows(min_row=2, values_only=True))
        assert len(rows) == len(payload["allocations"])
        assert rows[0][0] == "Dr. M. Chawla"
        assert "Trace" not in wb.sheetnames

    def test_lab_sections_sheet(self, allotted_payload, tmp_path):
        payload, _ = allotted_payload
        wb = openpyxl.load_workbook(render_xlsx(payload, tmp_path / "a.xlsx"))
        rows = list(wb["Lab Sections"].iter_rows(min_row=2, values_only=True))
        first = next(r for r in rows if r[0] == "CS501L" and r[2] == 1)
        assert first[3] == "Dr. M. Chawla"

    def test_header_styled(self, allotted_payload, tmp_path):
        payload, _ = allotted_payload
        wb = openpyxl.load_workbook(render_xlsx(payload, tmp_path / "a.xlsx"))
        assert wb["Summary"]["A1"].font.bold
