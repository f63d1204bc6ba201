"""Domain records shared by the scorer, the theory matcher and the lab engine.

Rows arrive as plain dicts (CSV rows, SQLite rows, MCP payloads). Each
record type builds itself with ``from_row`` and raises
``InvalidSnapshotError`` for missing or malformed required fields.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from .errors import InvalidSnapshotError

ROLE_THEORY = "theory"
ROLE_COORDINATOR = "coordinator"
ROLE_CO_TEACHER = "co_teacher"

LAB_ROLES = frozenset({ROLE_COORDINATOR, ROLE_CO_TEACHER})
ALLOCATION_ROLES = frozenset({ROLE_THEORY, *LAB_ROLES})

DEFAULT_SENIORITY = 999
DEFAULT_MAX_LOAD = 2
DEFAULT_LAB_LOAD = 3
DEFAULT_MAX_CO_TEACHERS = 3


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _required(row: dict[str, Any], key: str, kind: str) -> Any:
    value = row.get(key)
    if _blank(value):
        raise InvalidSnapshotError(f"{kind} row is missing required field '{key}': {row!r}")
    return value


def _as_int(value: Any, *, field: str, kind: str, default: int | None = None) -> int | None:
    if _blank(value):
        return default
    if isinstance(value, bool):
        raise InvalidSnapshotError(f"{kind} field '{field}' must be an integer, got {value!r}")
    try:
        return int(str(value).strip()) if isinstance(value, str) else int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidSnapshotError(f"{kind} field '{field}' must be an integer, got {value!r}") from exc


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().upper() in ("TRUE", "1", "YES")


def _as_str(value: Any) -> str | None:
    if _blank(value):
        return None
    return str(value).strip()


@dataclass(frozen=True)
class Faculty:
    id: str
    username: str
    name: str
    role: str = "faculty"
    seniority: int = DEFAULT_SENIORITY
    max_load: int = DEFAULT_MAX_LOAD
    lab_load: int = DEFAULT_LAB_LOAD
    email: str | None = None
    designation: str | None = None

    @property
    def is_faculty(self) -> bool:
        return self.role == "faculty"

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Faculty:
        fid = str(_required(row, "id", "faculty")).strip()
        seniority = _as_int(row.get("seniority"), field="seniority", kind="faculty")
        max_load = _as_int(row.get("max_load"), field="max_load", kind="faculty", default=DEFAULT_MAX_LOAD)
        lab_load = _as_int(row.get("lab_load"), field="lab_load", kind="faculty", default=DEFAULT_LAB_LOAD)
        if max_load < 0 or lab_load < 0:
            raise InvalidSnapshotError(f"faculty {fid} has a negative load quota")
        return cls(
            id=fid,
            username=_as_str(row.get("username")) or fid,
            name=str(_required(row, "name", "faculty")).strip(),
            role=_as_str(row.get("role")) or "faculty",
            seniority=DEFAULT_SENIORITY if seniority is None else seniority,
            max_load=max_load,
            lab_load=lab_load,
            email=_as_str(row.get("email")),
            designation=_as_str(row.get("designation")),
        )

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


def seniority_key(faculty: Faculty) -> tuple[int, str, str]:
    """Most senior first; username and id keep ties deterministic."""
    return (faculty.seniority, faculty.username, faculty.id)


@dataclass(frozen=True)
class Subject:
    id: str
    code: str
    name: str
    semester: int
    type: str
    credits: int
    description: str = ""
    sections: int = 1
    is_lab: bool = False
    related_theory_id: str | None = None
    category: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Subject:
        sid = str(_required(row, "id", "subject")).strip()
        subject_type = str(_required(row, "type", "subject")).strip()
        sections = _as_int(row.get("sections"), field="sections", kind="subject", default=1)
        if sections < 0:
            raise InvalidSnapshotError(f"subject {sid} has negative sections: {sections}")
        return cls(
            id=sid,
            code=str(_required(row, "code", "subject")).strip(),
            name=str(_required(row, "name", "subject")).strip(),
            semester=_as_int(_required(row, "semester", "subject"), field="semester", kind="subject"),
            type=subject_type,
            credits=_as_int(_required(row, "credits", "subject"), field="credits", kind="subject"),
            description=_as_str(row.get("description")) or "",
            sections=sections,
            is_lab=_as_bool(row.get("is_lab")) or subject_type == "Lab",
            related_theory_id=_as_str(row.get("related_theory_id")),
            category=_as_str(row.get("category")),
        )

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Preference:
    faculty_id: str
    subject_id: str
    rank: int

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Preference:
        rank = _as_int(_required(row, "rank", "preference"), field="rank", kind="preference")
        if rank < 1:
            raise InvalidSnapshotError(f"preference rank must be positive: {row!r}")
        return cls(
            faculty_id=str(_required(row, "faculty_id", "preference")).strip(),
            subject_id=str(_required(row, "subject_id", "preference")).strip(),
            rank=rank,
        )

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Allocation:
    faculty_id: str
    subject_id: str
    section: int
    role: str
    round_number: int | None = None
    id: str | None = None

    @property
    def is_lab_role(self) -> bool:
        return self.role in LAB_ROLES

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Allocation:
        role = _as_str(row.get("role")) or ROLE_THEORY
        if role not in ALLOCATION_ROLES:
            raise InvalidSnapshotError(f"unknown allocation role {role!r}: {row!r}")
        section = _as_int(row.get("section"), field="section", kind="allocation", default=1)
        if section < 1:
            raise InvalidSnapshotError(f"allocation section must be >= 1: {row!r}")
        return cls(
            faculty_id=str(_required(row, "faculty_id", "allocation")).strip(),
            subject_id=str(_required(row, "subject_id", "allocation")).strip(),
            section=section,
            role=role,
            round_number=_as_int(row.get("round_number"), field="round_number", kind="allocation"),
            id=_as_str(row.get("id")),
        )

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SubjectHistory:
    faculty_id: str
    code: str
    name: str
    term: str
    credits_theory: int = 0
    credits_lab: int = 0
    subject_type: str = "Theory"
    category: str = "Other"

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> SubjectHistory:
        return cls(
            faculty_id=str(_required(row, "faculty_id", "history")).strip(),
            code=str(_required(row, "code", "history")).strip(),
            name=_as_str(row.get("name")) or "",
            term=str(_required(row, "term", "history")).strip(),
            credits_theory=_as_int(row.get("credits_theory"), field="credits_theory", kind="history", default=0),
            credits_lab=_as_int(row.get("credits_lab"), field="credits_lab", kind="history", default=0),
            subject_type=_as_str(row.get("subject_type")) or "Theory",
            category=_as_str(row.get("category")) or "Other",
        )

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LoadHistory:
    faculty_id: str
    term: str
    total_credits: int
    number_of_subjects: int = 0
    primary_specialization: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> LoadHistory:
        return cls(
            faculty_id=str(_required(row, "faculty_id", "load history")).strip(),
            term=str(_required(row, "term", "load history")).strip(),
            total_credits=_as_int(
                _required(row, "total_credits", "load history"), field="total_credits", kind="load history"
            ),
            number_of_subjects=_as_int(
                row.get("number_of_subjects"), field="number_of_subjects", kind="load history", default=0
            ),
            primary_specialization=_as_str(row.get("primary_specialization")),
        )

    def to_row(self) -> dict[str, Any]:
        return asdict(self)
