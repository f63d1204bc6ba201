"""Subject category constants and the name-based category backfill."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from .models import Subject

NETWORKS = "Networks"
ML = "ML"
DATABASES = "Databases"
SECURITY = "Security"
COMPILERS = "Compilers"
DATA_STRUCTURES = "DataStructures"
OTHER = "Other"

# Checked in order; the first matching keyword wins.
CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (NETWORKS, ("Network",)),
    (ML, ("Machine Learning", "ML", "AI")),
    (DATABASES, ("Database", "DBMS")),
    (SECURITY, ("Security", "Hacking")),
    (COMPILERS, ("Compiler",)),
    (DATA_STRUCTURES, ("Data Structure",)),
    (NETWORKS, ("Wireless",)),
)


def infer_category(name: str | None) -> str:
    """Guess a category from a subject name (case-sensitive substring match)."""
    text = str(name or "")
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return OTHER


def subject_category(subject: Subject) -> str:
    return subject.category or OTHER


def backfill_categories(subjects: Iterable[Subject], *, overwrite: bool = False) -> list[Subject]:
    """Return subjects whose category was filled in from their name.

    Only subjects that actually change are returned, so the caller can
    persist just those rows.
    """
    changed: list[Subject] = []
    for subject in subjects:
        if subject.category and not overwrite:
            continue
        inferred = infer_category(subject.name)
        if inferred != subject.category:
            changed.append(replace(subject, category=inferred))
    return changed
