"""faculty-allotment MCP server.

Exposes tools for counselling rounds (theory matching), lab role
allocation, affinity scoring, preference capture, manual overrides,
analytics, and CSV/XLSX data exchange.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
from typing import Any

from mcp.server.fastmcp import FastMCP

from .artifacts import list_runs as _list_runs
from .artifacts import load_run as _load_run
from .config import load_env, runtime_config
from .service import AllotmentService

mcp = FastMCP(
    "faculty-allotment",
    instructions=(
        "Faculty subject allotment engine. "
        "Runs seniority-ordered theory counselling rounds, allocates lab "
        "coordinator and co-teacher roles, scores subjects by historical "
        "affinity, and reports unallocated subjects and unfulfilled faculty."
    ),
)

_ENV_FILE: str | None = None
_SERVICE: AllotmentService | None = None


def _service() -> AllotmentService:
    global _SERVICE
    if _SERVICE is None:
        load_env(_ENV_FILE or os.getenv("ALLOTMENT_ENV_FILE"))
        _SERVICE = AllotmentService.from_config(runtime_config())
    return _SERVICE


def _artifact_root():
    return _service().artifact_root


# -- Engine runs --

@mcp.tool()
def run_theory_round() -> dict[str, Any]:
    """Run the next theory counselling round and commit its allocations.

    Starts round 1 or round 2 automatically; fails after round 2 until reset.
    """
    return _service().run_theory_round()


@mcp.tool()
def run_lab_allocation() -> dict[str, Any]:
    """Recompute every lab coordinator/co-teacher role from scratch."""
    return _service().run_lab_allocation()


@mcp.tool()
def score_subjects(faculty_id: str, limit: int | None = None) -> list[dict[str, Any]]:
    """Score every subject for a faculty member by historical affinity, best first."""
    rows = _service().score_subjects_for(faculty_id)
    return rows[:limit] if limit else rows


# -- Round control --

@mcp.tool()
def round_status() -> dict[str, Any]:
    """Current counselling round state."""
    return _service().round_status()


@mcp.tool()
def start_round() -> dict[str, Any]:
    """Open the next counselling round without running the matcher."""
    return _service().start_round()


@mcp.tool()
def reset_system(clear_preferences: bool = True) -> dict[str, Any]:
    """Delete all allocations (and preferences unless told otherwise); round back to not_started."""
    return _service().reset_system(clear_preferences=clear_preferences)


# -- Preferences and settings --

@mcp.tool()
def save_preferences(faculty_id: str, preferences_json: str, kind: str = "theory") -> dict[str, Any]:
    """Replace a faculty member's ranked preference list.

    Accepts a JSON array of {"subject_id": ..., "rank": ...} objects.
    kind is "theory" or "lab".
    """
    preferences = json.loads(preferences_json)
    if not isinstance(preferences, list):
        raise ValueError("preferences_json must be a JSON array")
    return _service().save_preferences(faculty_id, preferences, kind=kind)


@mcp.tool()
def get_settings() -> dict[str, Any]:
    """Read system settings (min_preferences)."""
    return _service().get_settings()


@mcp.tool()
def update_settings(min_preferences: int) -> dict[str, Any]:
    """Set the minimum number of theory preferences a faculty member must submit."""
    return _service().update_settings(min_preferences=min_preferences)


# -- Manual edits --

@mcp.tool()
def manual_allot(faculty_id: str, subject_id: str, section: int | None = None) -> dict[str, Any]:
    """Assign a theory subject to a faculty member outside the matcher."""
    return _service().manual_allot(faculty_id, subject_id, section)


@mcp.tool()
def delete_allocation(allocation_id: str) -> dict[str, Any]:
    """Delete one allocation row by id."""
    return _service().delete_allocation(allocation_id)


@mcp.tool()
def reorder_seniority(ordered_ids: list[str]) -> dict[str, Any]:
    """Set seniority from a full ordering of faculty ids, most senior first."""
    return _service().reorder_seniority(ordered_ids)


@mcp.tool()
def backfill_categories(overwrite: bool = False) -> dict[str, Any]:
    """Fill missing subject categories from subject names."""
    return _service().backfill_categories(overwrite=overwrite)


# -- Reporting and data exchange --

@mcp.tool()
def analytics() -> dict[str, Any]:
    """Allocation summary: unallocated subjects, unfulfilled faculty, per-faculty and per-subject views."""
    return _service().analytics()


@mcp.tool()
def import_snapshot(directory: str) -> dict[str, Any]:
    """Replace all data with a CSV input directory (faculty.csv, subjects.csv, ...)."""
    return _service().import_snapshot(directory)


@mcp.tool()
def export_snapshot(directory: str) -> dict[str, str]:
    """Write the current data as CSV files that import_snapshot can read back."""
    return _service().export_snapshot(directory)


@mcp.tool()
def export_xlsx(path: str | None = None) -> dict[str, Any]:
    """Render the current allotment to an XLSX workbook and return its path."""
    return {"path": _service().export_xlsx(path)}


@mcp.tool()
def list_runs(limit: int = 20, kind: str | None = None) -> list[dict[str, Any]]:
    """List stored run manifests (theory or lab), newest first."""
    return _list_runs(_artifact_root(), limit=limit, kind=kind)


@mcp.tool()
def load_run(run_id: str | None = None) -> dict[str, Any]:
    """Load a full run result by ID (or latest if omitted)."""
    return _load_run(_artifact_root(), run_id=run_id)


# -- Server entrypoint --

def main() -> None:
    global _ENV_FILE

    parser = argparse.ArgumentParser(description="Run faculty-allotment MCP server")
    parser.add_argument("--env-file", default=None, help="Path to .env file")
    parser.add_argument(
        "--transport",
        default="stdio",
        choices=["stdio", "sse"],
        help="MCP transport (default: stdio)",
    )
    args = parser.parse_args()
    _ENV_FILE = args.env_file

    load_env(_ENV_FILE or os.getenv("ALLOTMENT_ENV_FILE"))
    logging.basicConfig(
        level=runtime_config().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    mcp.run(transport=args.transport)


if __name__ == "__main__":
    main()
