"""Canonical content hash of entity snapshots.

The hash covers logical state only: the top-level "source" provenance and
the "state_sha256" field itself are excluded, and list order is normalized
where it carries no meaning, so re-ingesting the same facts from a
renamed or re-captured archive yields the same digest.
"""
import hashlib
import json
from typing import Any

# Top-level keys that change on every ingest
VOLATILE_KEYS = ("source", "state_sha256")

# Lists of plain strings that are sets in practice
STRING_SET_KEYS = ("members_serials", "templates")


def _sort_list(items: list, parent_key: str) -> list:
    if not items:
        return items

    if parent_key in STRING_SET_KEYS:
        if all(isinstance(it, str) for it in items):
            return sorted(items)
        return items

    if all(isinstance(it, dict) and isinstance(it.get("name"), str) for it in items):
        return sorted(items, key=lambda it: it["name"])

    return items


def _normalize_value(value: Any, parent_key: str) -> Any:
    if isinstance(value, dict):
        return _normalize_map(value, parent_key)
    if isinstance(value, list):
        items = [_normalize_value(it, parent_key) for it in value]
        return _sort_list(items, parent_key)
    return value


def _normalize_map(data: dict, parent_key: str) -> dict:
    out = {}
    for key, value in data.items():
        if parent_key == "" and key in VOLATILE_KEYS:
            continue
        out[key] = _normalize_value(value, key)
    return out


def normalize_snapshot(snapshot: dict[str, Any]) -> dict[str, Any]:
    """Return the hash-relevant, order-normalized view of a snapshot."""
    return _normalize_map(snapshot, "")


def canonical_json(snapshot: dict[str, Any]) -> str:
    return json.dumps(normalize_snapshot(snapshot), sort_keys=True, separators=(",", ":"))


def compute_state_sha256(snapshot: dict[str, Any]) -> str:
    """SHA-256 hex digest of the canonical snapshot content."""
    return hashlib.sha256(canonical_json(snapshot).encode("utf-8")).hexdigest()
