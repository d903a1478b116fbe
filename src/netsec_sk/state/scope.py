"""Describe what changed between two snapshots."""
from typing import Any, Optional

from ..repo.layout import entity_dir_name
from .canonical import VOLATILE_KEYS

SCOPE_ORDER = ("device", "feature", "route", "other")

_SCOPE_BY_ROOT = {
    "device": "device",
    "panorama_instance": "device",
    "ha": "feature",
    "network": "feature",
    "licenses": "feature",
    "panorama_ha": "feature",
    "panorama_config": "feature",
    "routing": "route",
}


def _diff_map(prev: dict, cur: dict, prefix: str, out: set[str]) -> None:
    for key in sorted(set(prev) | set(cur)):
        if prefix == "" and key in VOLATILE_KEYS:
            continue
        path = f"{prefix}.{key}" if prefix else key
        if key not in prev or key not in cur:
            out.add(path)
            continue
        _diff_value(prev[key], cur[key], path, out)


def _diff_value(prev: Any, cur: Any, path: str, out: set[str]) -> None:
    if isinstance(prev, dict):
        if not isinstance(cur, dict):
            out.add(path)
            return
        _diff_map(prev, cur, path, out)
    elif isinstance(prev, list):
        if not isinstance(cur, list):
            out.add(path)
            return
        if len(prev) != len(cur):
            out.add(path)
        for i in range(min(len(prev), len(cur))):
            _diff_value(prev[i], cur[i], f"{path}[{i}]", out)
    elif type(prev) is not type(cur) or prev != cur:
        out.add(path)


def changed_json_paths(
    previous: Optional[dict[str, Any]],
    current: Optional[dict[str, Any]],
) -> list[str]:
    """Sorted dot/index paths ("a.b[0].c") that differ between snapshots."""
    out: set[str] = set()
    _diff_map(previous or {}, current or {}, "", out)
    return sorted(out)


def scope_bucket(path: str) -> str:
    root = path.split(".", 1)[0].split("[", 1)[0]
    return _SCOPE_BY_ROOT.get(root, "other")


def changed_scope(
    previous: Optional[dict[str, Any]],
    current: Optional[dict[str, Any]],
) -> str:
    """
    Summarize a change as comma-joined buckets.

    Example: "device,route". No differences yield "other".
    """
    buckets = {scope_bucket(p) for p in changed_json_paths(previous, current)}
    ordered = [name for name in SCOPE_ORDER if name in buckets]
    return ",".join(ordered) if ordered else "other"


def build_changed_state_paths(
    env_id: str,
    entity_type: str,
    entity_id: str,
    snapshot_file: str,
) -> list[str]:
    """Repo-relative state files touched by one committed ingest."""
    base = f"envs/{env_id}/state"
    entity = f"{base}/{entity_dir_name(entity_type)}/{entity_id}"
    return sorted([
        f"{base}/commits.ndjson",
        f"{entity}/latest.json",
        f"{entity}/snapshots/{snapshot_file}",
    ])
