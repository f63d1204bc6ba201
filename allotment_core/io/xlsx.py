"""XLSX workbook rendering for allocation results (openpyxl)."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from allotment_core.metrics import summarize_allocations
from allotment_core.models import ROLE_CO_TEACHER, ROLE_COORDINATOR, ROLE_THEORY
from allotment_core.snapshot import Snapshot, ensure_snapshot

_ROLE_LABELS = {
    ROLE_THEORY: "Theory",
    ROLE_COORDINATOR: "Coordinator",
    ROLE_CO_TEACHER: "Co-teacher",
}


def _get_openpyxl():
    try:
        from openpyxl import Workbook
        from openpyxl.styles import Font, PatternFill
        return Workbook, Font, PatternFill
    except ImportError as exc:
        raise ImportError("openpyxl is required for XLSX export: pip install openpyxl") from exc


def _style_headers(worksheets):
    """Apply bold + blue fill to header row of each worksheet."""
    _, Font, PatternFill = _get_openpyxl()
    header_font = Font(bold=True)
    header_fill = PatternFill(start_color="D9E1F2", end_color="D9E1F2", fill_type="solid")
    for ws in worksheets:
        for cell in ws[1]:
            cell.font = header_font
            cell.fill = header_fill


def _autosize(ws) -> None:
    for column in ws.columns:
        width = max(len(str(cell.value or "")) for cell in column)
        ws.column_dimensions[column[0].column_letter].width = min(max(width + 2, 8), 60)


def _allocation_rows(snap: Snapshot) -> list[list[Any]]:
    faculty = snap.faculty_by_id()
    subjects = snap.subject_by_id()
    rows = []
    for a in snap.allocations:
        f = faculty[a.faculty_id]
        s = subjects[a.subject_id]
        rows.append([
            f.name,
            f.seniority,
            s.code,
            s.name,
            a.section,
            _ROLE_LABELS.get(a.role, a.role),
            a.round_number if a.round_number is not None else "",
        ])
    rows.sort(key=lambda r: (r[1], r[0], r[2], r[4]))
    return rows


def render_xlsx(
    snapshot: Snapshot | dict[str, Any],
    path: Path,
    *,
    trace: list[str] | None = None,
) -> Path:
    """Render the current allocation state to a multi-sheet workbook.

    Sheets: Summary, Allocations, Lab Sections, Unfulfilled, and Trace when
    a run trace is given.
    """
    Workbook, Font, _ = _get_openpyxl()
    snap = ensure_snapshot(snapshot)
    summary = summarize_allocations(snap)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    wb = Workbook()
    ws_summary = wb.active
    ws_summary.title = "Summary"
    ws_summary.append(["Metric", "Value"])
    for key in (
        "total_subjects",
        "total_faculty",
        "total_allocations",
        "total_preferences",
        "faculty_with_preferences",
        "unallocated_subjects",
        "load_gini",
    ):
        ws_summary.append([key, summary[key]])
    ws_summary.append(["unfulfilled_faculty", len(summary["unfulfilled_faculty"])])

    ws_alloc = wb.create_sheet("Allocations")
    ws_alloc.append(["Faculty", "Seniority", "Code", "Subject", "Section", "Role", "Round"])
    for row in _allocation_rows(snap):
        ws_alloc.append(row)

    ws_lab = wb.create_sheet("Lab Sections")
    ws_lab.append(["Code", "Subject", "Section", "Coordinator", "Co-teachers"])
    for entry in summary["subject_allocations"]:
        if not entry["is_lab"]:
            continue
        by_section: dict[int, dict[str, list[str]]] = {}
        for item in entry["faculty"]:
            by_section.setdefault(item["section"], {}).setdefault(item["role"], []).append(item["name"])
        for section in range(1, entry["sections"] + 1):
            slot = by_section.get(section, {})
            ws_lab.append([
                entry["code"],
                entry["name"],
                section,
                ", ".join(slot.get(ROLE_COORDINATOR, [])),
                ", ".join(slot.get(ROLE_CO_TEACHER, [])),
            ])

    ws_unfulfilled = wb.create_sheet("Unfulfilled")
    ws_unfulfilled.append(["Faculty", "Theory subjects", "Max load"])
    for item in summary["unfulfilled_faculty"]:
        ws_unfulfilled.append([item["name"], item["theory_count"], item["max_load"]])

    sheets = [ws_summary, ws_alloc, ws_lab, ws_unfulfilled]
    if trace:
        ws_trace = wb.create_sheet("Trace")
        ws_trace.append(["#", "Decision"])
        for i, line in enumerate(trace, 1):
            ws_trace.append([i, line])
        sheets.append(ws_trace)

    _style_headers(sheets)
    for ws in sheets:
        _autosize(ws)
    ws_summary["A1"].font = Font(bold=True)

    wb.save(path)
    return path
