"""Ingest runs: locking, archive extraction and orchestration."""
from .extract import (
    UnsafeArchivePathError,
    UnsupportedArchiveError,
    extract_archive,
)
from .lock import (
    LockHeldError,
    ProcessInspector,
    acquire_lock,
    read_lock,
    release_lock,
)
from .orchestrator import (
    IngestOptions,
    IngestSummary,
    NoInputsError,
    run_ingest,
)

__all__ = [
    "UnsafeArchivePathError",
    "UnsupportedArchiveError",
    "extract_archive",
    "LockHeldError",
    "ProcessInspector",
    "acquire_lock",
    "read_lock",
    "release_lock",
    "IngestOptions",
    "IngestSummary",
    "NoInputsError",
    "run_ingest",
]
