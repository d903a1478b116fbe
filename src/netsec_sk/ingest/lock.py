"""Cross-run ingest lock.

A single JSON file at <repo>/.netsec-state/lock marks a running ingest.
Locks left behind by dead or reused processes, or older than
LOCK_STALE_AFTER, are replaced with a warning.
"""
import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Protocol

from ..repo.layout import lock_path

logger = logging.getLogger(__name__)

LOCK_STALE_AFTER = timedelta(hours=8)

STALE_LOCK_WARNING = "stale_lock_removed"


class LockHeldError(Exception):
    """Raised when another live process holds the ingest lock."""
    pass


@dataclass
class LockFile:
    pid: int
    started_at_utc: str
    started_at_unix: int
    command: str

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, json_str: str) -> "LockFile":
        data = json.loads(json_str)
        if not isinstance(data, dict):
            raise ValueError("lock file is not a JSON object")
        return cls(
            pid=int(data.get("pid", 0)),
            started_at_utc=str(data.get("started_at_utc", "")),
            started_at_unix=int(data.get("started_at_unix", 0)),
            command=str(data.get("command", "")),
        )


class LockInspector(Protocol):
    def process_start_unix(self, pid: int) -> Optional[int]:
        """Start time of a running process in unix seconds, or None."""
        ...


class ProcessInspector:
    """Reads process start times from /proc."""

    def __init__(self, proc_root: Path = Path("/proc")):
        self.proc_root = Path(proc_root)

    def _boot_time(self) -> Optional[int]:
        try:
            with open(self.proc_root / "stat", "r") as f:
                for line in f:
                    if line.startswith("btime "):
                        return int(line.split()[1])
        except OSError:
            return None
        return None

    def process_start_unix(self, pid: int) -> Optional[int]:
        try:
            raw = (self.proc_root / str(pid) / "stat").read_text()
        except OSError:
            return None

        # comm may contain spaces; fields resume after the last ')'
        fields = raw[raw.rfind(")") + 2:].split()
        if len(fields) < 20:
            return None

        boot = self._boot_time()
        if boot is None:
            return None

        start_ticks = int(fields[19])
        return boot + start_ticks // os.sysconf("SC_CLK_TCK")


def _utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def is_stale_lock(
    lock: LockFile,
    now: datetime,
    inspector: Optional[LockInspector],
) -> bool:
    """
    Decide whether an existing lock may be replaced.

    A lock is stale when its fields are invalid, when it is older than
    LOCK_STALE_AFTER, or when its pid is not running or reports a start
    time other than the recorded one (pid reused).
    """
    if lock.pid <= 0 or lock.started_at_unix <= 0:
        return True

    now_unix = int(_utc(now).timestamp())
    if now_unix - lock.started_at_unix > LOCK_STALE_AFTER.total_seconds():
        return True

    if inspector is None:
        return True

    start = inspector.process_start_unix(lock.pid)
    if start is None:
        return True

    return start != lock.started_at_unix


def _write_atomic(path: Path, content: str) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=".lock-", dir=path.parent)
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def read_lock(repo_path: Path) -> LockFile:
    """
    Read the current lock.

    Raises:
        FileNotFoundError: If no lock exists
        ValueError: If the lock cannot be decoded
    """
    return LockFile.from_json(lock_path(repo_path).read_text())


def acquire_lock(
    repo_path: Path,
    now: datetime,
    pid: int,
    command: str,
    inspector: Optional[LockInspector],
) -> list[str]:
    """
    Acquire the ingest lock.

    Returns:
        Warnings; contains STALE_LOCK_WARNING if a stale lock was replaced

    Raises:
        LockHeldError: If a live process holds the lock
    """
    path = lock_path(repo_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    warnings: list[str] = []
    if path.exists():
        try:
            current = LockFile.from_json(path.read_text())
        except (ValueError, TypeError):
            current = None

        if current is not None and not is_stale_lock(current, now, inspector):
            raise LockHeldError(
                f"ingest lock is held by pid {current.pid} since {current.started_at_utc}"
            )

        path.unlink(missing_ok=True)
        warnings.append(STALE_LOCK_WARNING)
        logger.warning(f"Removed stale ingest lock at {path}")

    utc_now = _utc(now)
    # Record the holder's own start time so later liveness checks can match it
    started_unix = inspector.process_start_unix(pid) if inspector is not None else None
    if started_unix is None:
        started_unix = int(utc_now.timestamp())
    lock = LockFile(
        pid=pid,
        started_at_utc=utc_now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        started_at_unix=started_unix,
        command=command,
    )
    _write_atomic(path, lock.to_json())
    logger.debug(f"Acquired ingest lock for pid {pid}")
    return warnings


def release_lock(repo_path: Path) -> None:
    """Remove the lock; a missing lock is not an error."""
    lock_path(repo_path).unlink(missing_ok=True)

