"""Academic term label helpers used to find a faculty member's latest record."""

from __future__ import annotations

import re
from datetime import date

_HALF_LABEL = re.compile(r"^(jan|jul)[a-z]*\s*[-/ ]\s*(jun|dec)[a-z]*\s*[-/ ]?\s*(\d{4})$", re.IGNORECASE)
_YEAR = re.compile(r"(\d{4})")


def term_sort_key(term: str | None) -> tuple[int, int, str]:
    """Sort key for term labels, oldest first.

    Understands ``Jan-Jun-2025`` / ``Jul-Dec 2025`` half-year labels, ISO
    dates and bare years. Unparseable labels sort before everything else.
    """
    text = str(term or "").strip()
    m = _HALF_LABEL.match(text)
    if m:
        half = 1 if m.group(1).lower() == "jan" else 2
        return (int(m.group(3)), half, text)
    try:
        d = date.fromisoformat(text)
        return (d.year, 1 if d.month <= 6 else 2, text)
    except ValueError:
        pass
    m = _YEAR.search(text)
    if m:
        return (int(m.group(1)), 0, text)
    return (0, 0, text)


def latest(records, *, key=lambda r: r.term):
    """Return the record with the most recent term, or None."""
    rows = list(records)
    if not rows:
        return None
    return max(rows, key=lambda r: term_sort_key(key(r)))
