"""Exception types raised by the allotment engine and its service shell."""

from __future__ import annotations


class AllotmentError(Exception):
    """Base class for allotment failures."""


class InvalidSnapshotError(AllotmentError, ValueError):
    """Snapshot rows are missing required fields or reference unknown records."""


class PreferenceError(AllotmentError, ValueError):
    """A submitted preference list was rejected."""


class RoundStateError(AllotmentError):
    """An operation is not allowed in the current counselling round state."""


class AllocationInvariantError(AllotmentError):
    """An engine result broke a load, capacity or role invariant."""

    def __init__(self, message: str, violations: list[dict] | None = None):
        super().__init__(message)
        self.violations = violations or []
