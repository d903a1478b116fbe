"""Append-only audit records for ingest runs.

Two newline-delimited JSON files are maintained:
- .netsec-state/ingest.ndjson: one line per attempted archive, any result
- envs/<env>/state/commits.ndjson: one line per confirmed git commit

Both are opened in append mode for every write and are never rewritten.
"""
import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Union

audit_logger = logging.getLogger("netsec_sk.audit")

UNKNOWN_TSF_ID = "unknown"


def _compact(data: dict) -> dict:
    """Drop empty optional values so lines stay short."""
    return {k: v for k, v in data.items() if v not in ("", None, [])}


@dataclass
class IngestLogEntry:
    """Record of one attempted archive."""
    env_id: str
    attempted_at_utc: str = ""
    run_id: str = ""
    input_archive_path: str = ""
    tsf_id: str = ""
    entity_type: str = ""
    entity_id: str = ""
    result: str = ""
    git_commit: str = ""
    notes: str = ""
    error: str = ""

    def to_json(self) -> str:
        """Convert to JSON string."""
        data = _compact(asdict(self))
        data["env_id"] = self.env_id
        return json.dumps(data)

    @classmethod
    def from_json(cls, json_str: str) -> "IngestLogEntry":
        """Parse from JSON string, ignoring unknown keys."""
        data = json.loads(json_str)
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class CommitLedgerEntry:
    """Record of one commit produced by an ingest."""
    committed_at_utc: str
    tsf_id: str
    tsf_original_name: str
    entity_type: str
    entity_id: str
    state_sha256: str
    git_commit: str
    changed_scope: str = ""
    changed_paths: list[str] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, json_str: str) -> "CommitLedgerEntry":
        data = json.loads(json_str)
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def append_ndjson(path: Path, record: Union[IngestLogEntry, CommitLedgerEntry]) -> None:
    """Append a single record as one JSON line.

    Raises:
        OSError: If the file cannot be written. Callers treat this as fatal
            for the run since audit integrity cannot be guaranteed.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    line = record.to_json()
    with open(path, "a", encoding="utf-8") as f:
        f.write(line + "\n")
    audit_logger.debug(f"{path.name}: {line}")


def read_commit_ledger(path: Path) -> list[CommitLedgerEntry]:
    """Read the full commit ledger in append order."""
    path = Path(path)
    if not path.exists():
        return []

    entries = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                entries.append(CommitLedgerEntry.from_json(line))
    return entries


def is_duplicate_tsf(tsf_id: str, seen: set[str]) -> bool:
    """Check a fingerprint against a seen set; "unknown" never matches."""
    if not tsf_id or tsf_id == UNKNOWN_TSF_ID:
        return False
    return tsf_id in seen
