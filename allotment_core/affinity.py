"""Historical-affinity probability scores for the preference screen.

Advisory only: nothing here reads or writes allocation state.
"""

from __future__ import annotations

from typing import Any

from .categories import subject_category
from .snapshot import Snapshot, ensure_snapshot
from .terms import latest

SCORING = {
    "frequency_repeat": 40,
    "frequency_once": 25,
    "contention_high": -20,
    "contention_low": -10,
    "load_light": 30,
    "load_moderate": 15,
    "load_unknown": 20,
    "specialization_match": 30,
    "category_history": 15,
}

LOW_RISK_THRESHOLD = 70
MEDIUM_RISK_THRESHOLD = 40


def risk_level(score: float) -> str:
    if score >= LOW_RISK_THRESHOLD:
        return "Low"
    if score >= MEDIUM_RISK_THRESHOLD:
        return "Medium"
    return "High"


def recommendation(score: float) -> str:
    if score >= LOW_RISK_THRESHOLD:
        return "Highly Likely"
    if score >= MEDIUM_RISK_THRESHOLD:
        return "Likely"
    return "Unlikely"


def _frequency_score(teaching_count: int) -> int:
    if teaching_count >= 2:
        return SCORING["frequency_repeat"]
    if teaching_count == 1:
        return SCORING["frequency_once"]
    return 0


def _contention_score(contested_by: int) -> int:
    if contested_by >= 3:
        return SCORING["contention_high"]
    if contested_by > 0:
        return SCORING["contention_low"]
    return 0


def _load_score(previous_credits: int | None) -> int:
    if previous_credits is None:
        return SCORING["load_unknown"]
    if previous_credits < 8:
        return SCORING["load_light"]
    if previous_credits < 12:
        return SCORING["load_moderate"]
    return 0


def score_subjects_for(snapshot: Snapshot | dict[str, Any], faculty_id: str) -> list[dict[str, Any]]:
    """Score every catalogue subject for one faculty member.

    Returns subject rows extended with ``probability_score``, ``risk_level``,
    ``recommendation``, ``score_detail`` and ``historical_data``, sorted by
    score (highest first) then subject code.
    """
    snap = ensure_snapshot(snapshot)
    if faculty_id not in snap.faculty_by_id():
        raise KeyError(f"faculty_id not found: {faculty_id}")

    own_history = [h for h in snap.history if h.faculty_id == faculty_id]
    previous_load = latest(l for l in snap.load_history if l.faculty_id == faculty_id)
    primary_spec = previous_load.primary_specialization if previous_load else None
    history_categories = {h.category for h in own_history}

    others_by_code: dict[str, set[str]] = {}
    for h in snap.history:
        if h.faculty_id != faculty_id:
            others_by_code.setdefault(h.code, set()).add(h.faculty_id)

    results: list[dict[str, Any]] = []
    for subject in snap.subjects:
        teaching_count = sum(1 for h in own_history if h.code == subject.code)
        contested_by = len(others_by_code.get(subject.code, ()))
        category = subject_category(subject)

        if primary_spec is not None and primary_spec == category:
            affinity = SCORING["specialization_match"]
        elif category in history_categories:
            affinity = SCORING["category_history"]
        else:
            affinity = 0

        score_detail = {
            "frequency": _frequency_score(teaching_count),
            "contention": _contention_score(contested_by),
            "load": _load_score(previous_load.total_credits if previous_load else None),
            "affinity": affinity,
        }
        score = min(100, max(0, sum(score_detail.values())))

        results.append(
            {
                **subject.to_row(),
                "category": category,
                "probability_score": score,
                "risk_level": risk_level(score),
                "recommendation": recommendation(score),
                "score_detail": score_detail,
                "historical_data": {
                    "teaching_count": teaching_count,
                    "contested_by": contested_by,
                    "last_taught_count": len(own_history),
                },
            }
        )

    results.sort(key=lambda row: (-row["probability_score"], row["code"]))
    return results
