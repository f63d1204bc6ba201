"""Write engine results and snapshot payloads back to CSV/JSON files."""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any

from .schemas import (
    ALLOCATIONS_COLS,
    FACULTY_COLS,
    HISTORY_COLS,
    LOAD_HISTORY_COLS,
    LAB_SECTIONS_COLS,
    PREFERENCES_COLS,
    RESULT_ALLOCATIONS_COLS,
    SUBJECTS_COLS,
    fmt_bool,
    pipe_join,
)

_INPUT_FILES = (
    ("faculty.csv", "faculty", FACULTY_COLS),
    ("subjects.csv", "subjects", SUBJECTS_COLS),
    ("preferences.csv", "preferences", PREFERENCES_COLS),
    ("lab_preferences.csv", "lab_preferences", PREFERENCES_COLS),
    ("allocations.csv", "allocations", ALLOCATIONS_COLS),
    ("history.csv", "history", HISTORY_COLS),
    ("load_history.csv", "load_history", LOAD_HISTORY_COLS),
)


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return fmt_bool(value)
    return value


def _write_csv(path: Path, columns: list[str], rows: list[dict[str, Any]]) -> Path:
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=columns, extrasaction="ignore")
        writer.writeheader()
        writer.writerows({c: _cell(row.get(c)) for c in columns} for row in rows)
    return path


def write_output(result: dict[str, Any], directory: Path) -> dict[str, Path]:
    """Write a theory or lab run result as ``allocations.csv`` + ``summary.json``.

    Lab results also get ``lab_sections.csv`` with pipe-joined co-teachers.

    The summary keeps every top-level key except the allocation rows, so the
    trace and counts stay readable without the CSV.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    paths = {
        "allocations.csv": _write_csv(
            directory / "allocations.csv", RESULT_ALLOCATIONS_COLS, result.get("allocations", [])
        )
    }

    if result.get("sections"):
        paths["lab_sections.csv"] = _write_csv(
            directory / "lab_sections.csv",
            LAB_SECTIONS_COLS,
            [{**row, "co_teachers": pipe_join(row.get("co_teachers"))} for row in result["sections"]],
        )

    summary = {k: v for k, v in result.items() if k != "allocations"}
    summary_path = directory / "summary.json"
    summary_path.write_text(
        json.dumps(summary, indent=2, ensure_ascii=False, default=str) + "\n",
        encoding="utf-8",
    )
    paths["summary.json"] = summary_path
    return paths


def write_input(payload: dict[str, Any], directory: Path) -> dict[str, Path]:
    """Write a snapshot payload to the CSV layout ``load_input`` reads."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    result: dict[str, Path] = {}
    for filename, key, columns in _INPUT_FILES:
        result[filename] = _write_csv(directory / filename, columns, payload.get(key) or [])
    return result
