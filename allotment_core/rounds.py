"""Counselling round state machine for theory allotment."""

from __future__ import annotations

from enum import Enum

from .errors import RoundStateError


class RoundState(str, Enum):
    NOT_STARTED = "not_started"
    ROUND1_ACTIVE = "round1_active"
    ROUND1_DONE = "round1_done"
    ROUND2_ACTIVE = "round2_active"
    ROUND2_DONE = "round2_done"


ACTIVE_STATES = frozenset({RoundState.ROUND1_ACTIVE, RoundState.ROUND2_ACTIVE})

_NEXT_ROUND = {
    RoundState.NOT_STARTED: RoundState.ROUND1_ACTIVE,
    RoundState.ROUND1_DONE: RoundState.ROUND2_ACTIVE,
}

_COMPLETE = {
    RoundState.ROUND1_ACTIVE: RoundState.ROUND1_DONE,
    RoundState.ROUND2_ACTIVE: RoundState.ROUND2_DONE,
}

_ROUND_NUMBER = {
    RoundState.NOT_STARTED: 0,
    RoundState.ROUND1_ACTIVE: 1,
    RoundState.ROUND1_DONE: 1,
    RoundState.ROUND2_ACTIVE: 2,
    RoundState.ROUND2_DONE: 2,
}


def parse_state(value: str | RoundState | None) -> RoundState:
    if value is None or value == "":
        return RoundState.NOT_STARTED
    try:
        return RoundState(value)
    except ValueError as exc:
        raise RoundStateError(f"unknown round state: {value!r}") from exc


def round_number(state: RoundState) -> int:
    """Number of the active (or last finished) round; 0 before round 1."""
    return _ROUND_NUMBER[state]


def is_active(state: RoundState) -> bool:
    return state in ACTIVE_STATES


def can_start(state: RoundState) -> bool:
    return state in _NEXT_ROUND


def start_next_round(state: RoundState) -> RoundState:
    if state not in _NEXT_ROUND:
        if state is RoundState.ROUND2_DONE:
            raise RoundStateError("all counselling rounds are completed; reset the system to start over")
        raise RoundStateError(f"cannot start a new round while in state {state.value}")
    return _NEXT_ROUND[state]


def complete_round(state: RoundState) -> RoundState:
    if state not in _COMPLETE:
        raise RoundStateError(f"no active round to complete (state {state.value})")
    return _COMPLETE[state]
