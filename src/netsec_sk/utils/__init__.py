"""Utility modules for logging, audit records and retries."""
from .audit_log import (
    CommitLedgerEntry,
    IngestLogEntry,
    append_ndjson,
    is_duplicate_tsf,
    read_commit_ledger,
)
from .logging_config import setup_logging, timed, timed_section, perf_logger
from .retry import with_retry

__all__ = [
    "CommitLedgerEntry",
    "IngestLogEntry",
    "append_ndjson",
    "is_duplicate_tsf",
    "read_commit_ledger",
    "setup_logging",
    "timed",
    "timed_section",
    "perf_logger",
    "with_retry",
]
