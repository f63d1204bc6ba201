"""Faculty subject allotment engines: affinity scoring, theory rounds, lab roles."""

from .affinity import score_subjects_for
from .categories import backfill_categories, infer_category
from .constraints import validate_allocations
from .errors import (
    AllocationInvariantError,
    AllotmentError,
    InvalidSnapshotError,
    PreferenceError,
    RoundStateError,
)
from .lab import run_lab_allocation
from .metrics import summarize_allocations
from .models import Allocation, Faculty, LoadHistory, Preference, Subject, SubjectHistory
from .rounds import RoundState
from .snapshot import Snapshot, build_snapshot
from .theory import run_theory_round

# io re-exports; render_xlsx stays lazy in allotment_core.io
from .io import load_input, write_input, write_output

__all__ = [
    "AllocationInvariantError",
    "Allocation",
    "AllotmentError",
    "Faculty",
    "InvalidSnapshotError",
    "LoadHistory",
    "Preference",
    "PreferenceError",
    "RoundState",
    "RoundStateError",
    "Snapshot",
    "Subject",
    "SubjectHistory",
    "backfill_categories",
    "build_snapshot",
    "infer_category",
    "load_input",
    "run_lab_allocation",
    "run_theory_round",
    "score_subjects_for",
    "summarize_allocations",
    "validate_allocations",
    "write_input",
    "write_output",
]
