"""Column constants, pipe helpers, and type coercion for CSV I/O."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Input CSV column names
# ---------------------------------------------------------------------------

FACULTY_COLS = [
    "id",
    "username",
    "name",
    "role",
    "seniority",
    "max_load",
    "lab_load",
    "email",
    "designation",
]

SUBJECTS_COLS = [
    "id",
    "code",
    "name",
    "semester",
    "type",
    "credits",
    "description",
    "sections",
    "is_lab",
    "related_theory_id",
    "category",
]

PREFERENCES_COLS = [
    "faculty_id",
    "subject_id",
    "rank",
]

ALLOCATIONS_COLS = [
    "id",
    "faculty_id",
    "subject_id",
    "section",
    "role",
    "round_number",
]

HISTORY_COLS = [
    "faculty_id",
    "code",
    "name",
    "term",
    "credits_theory",
    "credits_lab",
    "subject_type",
    "category",
]

LOAD_HISTORY_COLS = [
    "faculty_id",
    "term",
    "total_credits",
    "number_of_subjects",
    "primary_specialization",
]

# ---------------------------------------------------------------------------
# Output CSV column names
# ---------------------------------------------------------------------------

RESULT_ALLOCATIONS_COLS = [
    "faculty_id",
    "faculty_name",
    "subject_id",
    "subject_code",
    "section",
    "role",
    "round_number",
]

LAB_SECTIONS_COLS = [
    "subject_id",
    "subject_code",
    "section",
    "coordinator",
    "co_teachers",
]


# ---------------------------------------------------------------------------
# Pipe-separated field helpers
# ---------------------------------------------------------------------------

PIPE = "|"


def pipe_join(values: list | None) -> str:
    """Join a list into a pipe-separated string. Empty/None -> empty string."""
    if not values:
        return ""
    return PIPE.join(str(v) for v in values if v is not None and str(v).strip())


def pipe_split(value: str | None) -> list[str]:
    """Split a pipe-separated string into a list. Empty/None -> empty list."""
    if not value or not str(value).strip():
        return []
    return [v.strip() for v in str(value).split(PIPE) if v.strip()]


# ---------------------------------------------------------------------------
# Type coercion helpers for reading CSV values
# ---------------------------------------------------------------------------


def to_bool(value: str | None) -> bool:
    """Coerce a CSV string to bool. TRUE/true/1/True -> True, else False."""
    if value is None:
        return False
    return str(value).strip().upper() in ("TRUE", "1", "YES")


def fmt_bool(value: bool) -> str:
    """Format a bool for CSV output."""
    return "TRUE" if value else "FALSE"


def blank_to_none(row: dict[str, str]) -> dict[str, str | None]:
    """Map empty CSV cells to None so optional fields fall back to defaults."""
    return {k: (v if v is not None and str(v).strip() != "" else None) for k, v in row.items()}
