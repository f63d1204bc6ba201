from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from allotment_core.models import DEFAULT_MAX_CO_TEACHERS

DEFAULT_MIN_PREFERENCES = 3


@dataclass(frozen=True)
class RuntimeConfig:
    db_path: Path
    artifact_root: Path
    max_co_teachers: int
    min_preferences: int
    log_level: str


def load_env(dotenv_path: str | Path | None = None) -> None:
    path = Path(dotenv_path) if dotenv_path else None
    if path and path.exists():
        load_dotenv(path)
        return
    load_dotenv()


def _int_env(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def runtime_config() -> RuntimeConfig:
    artifact_root = Path(os.getenv("ALLOTMENT_ARTIFACT_DIR", "./artifacts")).expanduser().resolve()
    artifact_root.mkdir(parents=True, exist_ok=True)
    db_raw = os.getenv("ALLOTMENT_DB_PATH", "").strip()
    db_path = Path(db_raw).expanduser().resolve() if db_raw else artifact_root / "allotment.db"
    return RuntimeConfig(
        db_path=db_path,
        artifact_root=artifact_root,
        max_co_teachers=_int_env("ALLOTMENT_MAX_CO_TEACHERS", DEFAULT_MAX_CO_TEACHERS),
        min_preferences=_int_env("ALLOTMENT_MIN_PREFERENCES", DEFAULT_MIN_PREFERENCES, minimum=1),
        log_level=os.getenv("ALLOTMENT_LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )
