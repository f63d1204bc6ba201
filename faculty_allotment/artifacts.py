from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

logger = logging.getLogger(__name__)


def _json_dump(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False, default=str)


def _json_load(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def run_root(artifact_root: Path) -> Path:
    path = artifact_root / "runs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def new_run_id(kind: str) -> str:
    return f"{kind}-{uuid4().hex[:12]}"


def save_run(artifact_root: Path, kind: str, result: dict[str, Any]) -> tuple[str, Path]:
    """Persist one engine run (``theory`` or ``lab``) with a manifest.

    Returns ``(run_id, directory)``; ``latest.json`` points at this run.
    """
    root = run_root(artifact_root)
    rid = new_run_id(kind)
    target = root / rid
    target.mkdir(parents=True, exist_ok=True)
    generated_at = datetime.now(timezone.utc).isoformat()
    _json_dump(target / "result.json", {"run_id": rid, "kind": kind, "generated_at": generated_at, **result})

    manifest = {
        "run_id": rid,
        "kind": kind,
        "generated_at": generated_at,
        "round_number": result.get("round_number"),
        "counts": {
            "allocations": len(result.get("allocations", [])),
            "unfulfilled": len(result.get("unfulfilled", [])),
            "rejections": result.get("rejections", 0),
        },
        "path": str(target.resolve()),
    }
    _json_dump(target / "manifest.json", manifest)
    _json_dump(root / "latest.json", manifest)
    logger.debug("saved %s run %s to %s", kind, rid, target)
    return rid, target


def list_runs(artifact_root: Path, limit: int = 20, kind: str | None = None) -> list[dict[str, Any]]:
    root = run_root(artifact_root)
    manifests: list[dict[str, Any]] = []
    for child in root.iterdir():
        if not child.is_dir():
            continue
        manifest_file = child / "manifest.json"
        if not manifest_file.exists():
            continue
        try:
            manifest = _json_load(manifest_file)
        except (OSError, json.JSONDecodeError):
            logger.warning("skipping unreadable run manifest %s", manifest_file)
            continue
        if kind and manifest.get("kind") != kind:
            continue
        manifests.append(manifest)
    manifests.sort(key=lambda row: row.get("generated_at", ""), reverse=True)
    return manifests[:limit]


def load_run(artifact_root: Path, run_id: str | None = None) -> dict[str, Any]:
    root = run_root(artifact_root)
    if run_id:
        manifest_path = root / run_id / "manifest.json"
    else:
        manifest_path = root / "latest.json"
    if not manifest_path.exists():
        raise FileNotFoundError("run manifest not found")
    manifest = _json_load(manifest_path)
    rid = manifest["run_id"]
    path = root / rid / "result.json"
    if not path.exists():
        raise FileNotFoundError(f"run payload not found: {rid}")
    return _json_load(path)
