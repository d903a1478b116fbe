"""Snapshot hashing, change detection and persistence."""
from .canonical import compute_state_sha256, normalize_snapshot
from .compare import (
    SNAPSHOT_STAMP_FORMAT,
    PersistResult,
    is_state_unchanged,
    persist_if_changed,
    read_snapshot,
)
from .scope import build_changed_state_paths, changed_json_paths, changed_scope

__all__ = [
    "compute_state_sha256",
    "normalize_snapshot",
    "SNAPSHOT_STAMP_FORMAT",
    "PersistResult",
    "is_state_unchanged",
    "persist_if_changed",
    "read_snapshot",
    "build_changed_state_paths",
    "changed_json_paths",
    "changed_scope",
]
