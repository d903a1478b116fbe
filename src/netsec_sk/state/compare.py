"""Change detection and persistence of entity snapshots."""
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .canonical import compute_state_sha256

logger = logging.getLogger(__name__)

SNAPSHOT_STAMP_FORMAT = "%Y%m%dT%H%M%SZ"


@dataclass
class PersistResult:
    unchanged: bool
    state_sha256: str
    snapshot_path: Optional[Path] = None


def read_snapshot(path: Path) -> Optional[dict[str, Any]]:
    """
    Load a stored snapshot.

    Returns:
        The snapshot, or None if the file does not exist

    Raises:
        ValueError: If the file is corrupt or does not hold a JSON object
    """
    path = Path(path)
    if not path.exists():
        return None
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"snapshot is not a JSON object: {path}")
    return data


def render_snapshot(snapshot: dict[str, Any]) -> str:
    return json.dumps(snapshot, indent=2, sort_keys=True) + "\n"


def is_state_unchanged(snapshot: dict[str, Any], latest_path: Path) -> tuple[bool, str]:
    """
    Compare a snapshot against the stored latest.json by content hash.

    Returns:
        (unchanged, hash of the given snapshot); a missing latest.json
        counts as changed
    """
    current = compute_state_sha256(snapshot)
    latest = read_snapshot(latest_path)
    if latest is None:
        return False, current
    return compute_state_sha256(latest) == current, current


def persist_if_changed(
    snapshot: dict[str, Any],
    latest_path: Path,
    snapshot_dir: Path,
    stamp: str,
) -> PersistResult:
    """
    Write latest.json and a history snapshot when content changed.

    The snapshot's state_sha256 is filled in before writing. History files
    are named "<stamp>_<hash>.json" and never removed.
    """
    unchanged, state_sha = is_state_unchanged(snapshot, latest_path)
    if unchanged:
        return PersistResult(unchanged=True, state_sha256=state_sha)

    snapshot["state_sha256"] = state_sha

    latest_path = Path(latest_path)
    snapshot_dir = Path(snapshot_dir)
    latest_path.parent.mkdir(parents=True, exist_ok=True)
    snapshot_dir.mkdir(parents=True, exist_ok=True)

    body = render_snapshot(snapshot)
    latest_path.write_text(body, encoding="utf-8")

    snapshot_path = snapshot_dir / f"{stamp}_{state_sha}.json"
    snapshot_path.write_text(body, encoding="utf-8")

    logger.debug(f"Persisted snapshot {snapshot_path.name}")
    return PersistResult(unchanged=False, state_sha256=state_sha, snapshot_path=snapshot_path)
