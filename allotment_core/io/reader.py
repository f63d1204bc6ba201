"""Read a CSV input directory into the snapshot payload the engines expect."""

from __future__ import annotations

import csv
import json
from datetime import datetime, timezone
from pathlib import Path

from .schemas import blank_to_none, pipe_split, to_bool

REQUIRED_FILES = ("faculty.csv", "subjects.csv")
OPTIONAL_FILES = (
    "preferences.csv",
    "lab_preferences.csv",
    "allocations.csv",
    "history.csv",
    "load_history.csv",
)


def load_input(directory: Path) -> dict:
    """Read CSV input dir -> snapshot payload dict.

    ``faculty.csv`` and ``subjects.csv`` are required; the remaining files
    default to empty lists. Rows are passed through with blank cells mapped
    to None; type checks happen in ``build_snapshot``.

    Raises FileNotFoundError if required files are missing.
    """
    d = Path(directory)

    faculty = [blank_to_none(row) for row in _read_csv(d / "faculty.csv")]

    subjects = []
    for row in _read_csv(d / "subjects.csv"):
        clean = blank_to_none(row)
        clean["is_lab"] = to_bool(row.get("is_lab"))
        subjects.append(clean)

    payload = {
        "faculty": faculty,
        "subjects": subjects,
        "preferences": _read_optional(d / "preferences.csv"),
        "lab_preferences": _read_optional(d / "lab_preferences.csv"),
        "allocations": _read_optional(d / "allocations.csv"),
        "history": _read_optional(d / "history.csv"),
        "load_history": _read_optional(d / "load_history.csv"),
    }

    meta = _read_json(d / "meta.json") if (d / "meta.json").exists() else {}
    payload["metadata"] = {
        **meta,
        "source": str(d.resolve()),
        "loaded_at": datetime.now(timezone.utc).isoformat(),
        "counts": {key: len(rows) for key, rows in payload.items() if isinstance(rows, list)},
    }
    return payload


def load_lab_sections(directory: Path) -> list[dict]:
    """Read ``lab_sections.csv`` written by ``write_output`` back into rows."""
    rows = []
    for row in _read_csv(Path(directory) / "lab_sections.csv"):
        clean = blank_to_none(row)
        clean["section"] = int(row["section"])
        clean["co_teachers"] = pipe_split(row.get("co_teachers"))
        rows.append(clean)
    return rows


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _read_json(path: Path) -> dict:
    """Read and parse a JSON file."""
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _read_csv(path: Path) -> list[dict[str, str]]:
    """Read a CSV file into a list of dicts via csv.DictReader."""
    if not path.exists():
        raise FileNotFoundError(f"Required file not found: {path}")
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


def _read_optional(path: Path) -> list[dict[str, str | None]]:
    if not path.exists():
        return []
    return [blank_to_none(row) for row in _read_csv(path)]
