"""Ingest orchestration.

One run processes its inputs strictly in sorted order:

    check working tree -> acquire lock -> prepare (env, inputs, scratch)
    per archive: extract -> identity -> parse -> persist -> export -> commit
    release lock

Every attempted archive ends in exactly one ingest log line. A failure in
one archive never stops the run; only lock, working tree, input resolution
and audit-log write failures abort it.
"""
import logging
import os
import shutil
import tarfile
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from ..commit.git_manager import (
    CommitMeta,
    GitError,
    NothingToCommitError,
    build_allowlist,
    build_commit_subject,
    commit_allowlisted,
)
from ..enrich.rdns import default_lookup, maybe_lookup
from ..export.pipeline import run_export
from ..parse import EntityType, ParseContext, ParseFatalError, parse_snapshot
from ..repo.environments import EnvironmentRegistry
from ..repo.git_check import check_safe_working_tree
from ..repo.layout import (
    UnsafeEntityIDError,
    commit_ledger_path,
    entity_paths,
    extract_root,
    ingest_log_path,
)
from ..state import (
    SNAPSHOT_STAMP_FORMAT,
    build_changed_state_paths,
    changed_scope,
    persist_if_changed,
    read_snapshot,
)
from ..tsf.identity import derive_identity
from ..utils.audit_log import (
    CommitLedgerEntry,
    IngestLogEntry,
    append_ndjson,
    is_duplicate_tsf,
)
from ..utils.logging_config import timed_section
from .extract import (
    UnsafeArchivePathError,
    UnsupportedArchiveError,
    extract_archive,
    is_supported_archive,
)
from .lock import ProcessInspector, acquire_lock, release_lock

logger = logging.getLogger(__name__)

EXTRACT_STALE_AFTER = timedelta(hours=24)

# Ingest results
RESULT_COMMITTED = "committed"
RESULT_DUPLICATE = "skipped_duplicate_tsf"
RESULT_UNCHANGED = "skipped_state_unchanged"
RESULT_PARTIAL = "parse_error_partial"
RESULT_FATAL = "parse_error_fatal"

# Replaceable collaborators
check_repo_safe = check_safe_working_tree
acquire_run_lock = acquire_lock
release_run_lock = release_lock
current_pid = os.getpid
process_inspector = ProcessInspector()
rdns_lookup = default_lookup
export_env = run_export
commit_changes = commit_allowlisted


class NoInputsError(ValueError):
    """Raised when an ingest run is started without input paths."""
    pass


@dataclass
class IngestOptions:
    repo_path: Path
    env_id: str
    inputs: list[str]
    enable_rdns: bool = False
    keep_extract: bool = False
    now: Optional[datetime] = None


@dataclass
class Issue:
    input_archive_path: str
    result: str
    notes: str = ""
    error: str = ""
    tsf_id: str = ""
    entity_type: str = ""
    entity_id: str = ""


@dataclass
class IngestSummary:
    attempted: int = 0
    committed: int = 0
    skipped_duplicate_tsf: int = 0
    skipped_state_unchanged: int = 0
    parse_error_partial: int = 0
    parse_error_fatal: int = 0
    issues: list[Issue] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def record(self, result: str) -> None:
        if result == RESULT_COMMITTED:
            self.committed += 1
        elif result == RESULT_DUPLICATE:
            self.skipped_duplicate_tsf += 1
        elif result == RESULT_UNCHANGED:
            self.skipped_state_unchanged += 1
        elif result == RESULT_PARTIAL:
            self.parse_error_partial += 1
        else:
            self.parse_error_fatal += 1

    def line(self) -> str:
        return (
            f"Ingest complete: attempted={self.attempted} committed={self.committed} "
            f"skipped_duplicate_tsf={self.skipped_duplicate_tsf} "
            f"skipped_state_unchanged={self.skipped_state_unchanged} "
            f"parse_error_partial={self.parse_error_partial} "
            f"parse_error_fatal={self.parse_error_fatal}"
        )


@dataclass
class PrepResult:
    env_id: str
    run_id: str
    ordered_inputs: list[str]
    run_extract_root: Path
    warnings: list[str] = field(default_factory=list)


class _ArchiveOutcome(Exception):
    """Terminal, non-committed outcome of one archive."""

    def __init__(self, result: str, notes: str = "", error: str = ""):
        super().__init__(notes or result)
        self.result = result
        self.notes = notes
        self.error = error


def _utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def _rfc3339(now: datetime) -> str:
    return now.strftime("%Y-%m-%dT%H:%M:%SZ")


def _unix_nanos(now: datetime) -> int:
    return int(now.timestamp()) * 1_000_000_000 + now.microsecond * 1000


def resolve_inputs(inputs: list[str]) -> list[str]:
    """
    Expand inputs to absolute file paths, walking directories, sorted.

    Raises:
        FileNotFoundError: If an input does not exist
    """
    paths = []
    for raw in inputs:
        path = os.path.normpath(os.path.abspath(raw))
        if not os.path.exists(path):
            raise FileNotFoundError(f"input not found: {raw}")
        if os.path.isdir(path):
            for dirpath, _, filenames in os.walk(path):
                paths.extend(os.path.normpath(os.path.join(dirpath, f)) for f in filenames)
        else:
            paths.append(path)
    return sorted(paths)


def _sanitize_path_part(value: str) -> str:
    for ch in ("/", "\\", " ", ":"):
        value = value.replace(ch, "_")
    return value


def begin_extract_dir(run_extract_root: Path, archive_path: str, index: int) -> Path:
    name = f"{index:03d}_{_sanitize_path_part(os.path.basename(archive_path))}"
    out = Path(run_extract_root) / name
    out.mkdir(parents=True, exist_ok=True)
    return out


def finish_extract_dir(extract_dir: Path, keep_extract: bool) -> None:
    if keep_extract:
        return
    shutil.rmtree(extract_dir, ignore_errors=True)


def cleanup_stale_extract_dirs(root: Path, now: datetime) -> list[str]:
    """Remove run scratch dirs older than EXTRACT_STALE_AFTER; return warnings."""
    root = Path(root)
    root.mkdir(parents=True, exist_ok=True)

    warnings = []
    cutoff = now.timestamp() - EXTRACT_STALE_AFTER.total_seconds()
    for entry in sorted(root.iterdir()):
        if not entry.is_dir():
            continue
        try:
            mtime = entry.stat().st_mtime
        except OSError:
            warnings.append(f"extract_cleanup_stat_failed:{entry.name}")
            continue
        if mtime >= cutoff:
            continue
        try:
            shutil.rmtree(entry)
            logger.debug(f"Removed stale extract dir {entry.name}")
        except OSError:
            warnings.append(f"extract_cleanup_remove_failed:{entry.name}")
    return warnings


def read_extracted_files(extract_dir: Path) -> tuple[dict[str, str], list[str]]:
    """Read every extracted file as text; return (contents by path, sorted paths)."""
    files = {}
    for dirpath, _, filenames in os.walk(extract_dir):
        for name in filenames:
            path = os.path.normpath(os.path.join(dirpath, name))
            with open(path, "rb") as f:
                files[path] = f.read().decode("utf-8", errors="replace")
    return files, sorted(files)


def prepare(repo_path: Path, env_id_raw: str, inputs: list[str], now: datetime) -> PrepResult:
    """
    Resolve the environment, inputs and run scratch directory.

    Raises:
        InvalidEnvIDError: If the environment id is invalid
        FileNotFoundError: If an input path does not exist
    """
    env_id, _ = EnvironmentRegistry(repo_path).create(env_id_raw)
    ordered = resolve_inputs(inputs)

    root = extract_root(repo_path)
    warnings = cleanup_stale_extract_dirs(root, now)

    run_id = f"run-{_unix_nanos(now)}"
    run_extract_root = root / run_id
    run_extract_root.mkdir(parents=True, exist_ok=True)

    return PrepResult(
        env_id=env_id,
        run_id=run_id,
        ordered_inputs=ordered,
        run_extract_root=run_extract_root,
        warnings=warnings,
    )


class _IngestRun:
    """Per-run state shared by every archive of one ingest."""

    def __init__(self, options: IngestOptions, prep: PrepResult, now: datetime):
        self.options = options
        self.repo_path = Path(options.repo_path)
        self.prep = prep
        self.now = now
        self.attempted_at = _rfc3339(now)
        self.stamp = now.strftime(SNAPSHOT_STAMP_FORMAT)
        self.ingest_log = ingest_log_path(self.repo_path)
        self.ledger = commit_ledger_path(self.repo_path, prep.env_id)
        self.seen_tsf_ids: set[str] = set()
        self.summary = IngestSummary(warnings=list(prep.warnings))

    def run(self) -> IngestSummary:
        for index, input_path in enumerate(self.prep.ordered_inputs, start=1):
            self.summary.attempted += 1
            entry = IngestLogEntry(
                env_id=self.prep.env_id,
                attempted_at_utc=self.attempted_at,
                run_id=self.prep.run_id,
                input_archive_path=input_path,
            )
            with timed_section("ingest_archive", entity_id=os.path.basename(input_path)):
                try:
                    self._process(index, input_path, entry)
                except _ArchiveOutcome as outcome:
                    entry.result = outcome.result
                    entry.notes = outcome.notes
                    entry.error = outcome.error

            self._finish(entry)
        return self.summary

    def _finish(self, entry: IngestLogEntry) -> None:
        self.summary.record(entry.result)
        if entry.result not in (RESULT_COMMITTED, RESULT_UNCHANGED):
            self.summary.issues.append(Issue(
                input_archive_path=entry.input_archive_path,
                result=entry.result,
                notes=entry.notes,
                error=entry.error,
                tsf_id=entry.tsf_id,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
            ))
        logger.info(
            f"{os.path.basename(entry.input_archive_path)}: {entry.result}"
            + (f" ({entry.notes})" if entry.notes else "")
        )
        append_ndjson(self.ingest_log, entry)

    def _extract(self, index: int, input_path: str) -> tuple[dict[str, str], list[str]]:
        if not is_supported_archive(input_path):
            raise _ArchiveOutcome(RESULT_FATAL, "unsupported_extension")

        try:
            extract_dir = begin_extract_dir(self.prep.run_extract_root, input_path, index)
        except OSError as e:
            raise _ArchiveOutcome(RESULT_FATAL, "extract_dir_create_failed", str(e))

        try:
            try:
                extract_archive(Path(input_path), extract_dir)
            except (
                UnsafeArchivePathError,
                UnsupportedArchiveError,
                tarfile.TarError,
                zlib.error,
                EOFError,
                OSError,
            ) as e:
                raise _ArchiveOutcome(RESULT_FATAL, "extract_failed", str(e))

            try:
                return read_extracted_files(extract_dir)
            except OSError as e:
                raise _ArchiveOutcome(RESULT_FATAL, "extract_read_failed", str(e))
        finally:
            finish_extract_dir(extract_dir, self.options.keep_extract)

    def _enrich_firewall(self, snapshot: dict[str, Any], latest_path: Path,
                         previous: Optional[dict[str, Any]]) -> None:
        device = snapshot["device"]
        is_new = not latest_path.exists()
        prev_device = previous.get("device") if previous is not None else None
        if not is_new and isinstance(prev_device, dict):
            existing = prev_device.get("dns")
            if isinstance(existing, dict):
                device["dns"] = existing

        rdns = maybe_lookup(
            self.options.enable_rdns,
            is_new,
            device.get("mgmt_ip", ""),
            self.now,
            rdns_lookup,
        )
        if rdns is not None:
            device["dns"] = {"reverse": rdns.to_dict()}

    def _process(self, index: int, input_path: str, entry: IngestLogEntry) -> None:
        files, paths = self._extract(index, input_path)

        identity = derive_identity(paths, lambda p: Path(p).read_bytes())
        entry.tsf_id = identity.tsf_id
        if is_duplicate_tsf(identity.tsf_id, self.seen_tsf_ids):
            raise _ArchiveOutcome(RESULT_DUPLICATE, "duplicate_tsf")
        self.seen_tsf_ids.add(identity.tsf_id)

        ctx = ParseContext(
            tsf_id=identity.tsf_id,
            tsf_original_name=identity.tsf_original_name,
            input_archive_name=os.path.basename(input_path),
            ingested_at_utc=self.attempted_at,
        )
        try:
            out = parse_snapshot(ctx, files)
        except ParseFatalError as e:
            raise _ArchiveOutcome(RESULT_FATAL, "parse_failed", str(e))
        entity_type = out.entity_type.value
        entry.entity_type = entity_type
        entry.entity_id = out.entity_id

        try:
            latest_path, snapshots_dir = entity_paths(
                self.repo_path, self.prep.env_id, entity_type, out.entity_id
            )
        except UnsafeEntityIDError as e:
            raise _ArchiveOutcome(RESULT_FATAL, "parse_failed", str(e))
        try:
            previous = read_snapshot(latest_path)
        except (OSError, ValueError):
            previous = None

        if out.entity_type is EntityType.FIREWALL:
            self._enrich_firewall(out.snapshot, latest_path, previous)

        try:
            with timed_section("persist", entity_id=out.entity_id):
                persisted = persist_if_changed(out.snapshot, latest_path, snapshots_dir, self.stamp)
        except (OSError, ValueError) as e:
            raise _ArchiveOutcome(RESULT_FATAL, "state_persist_failed", str(e))

        if out.is_partial:
            raise _ArchiveOutcome(RESULT_PARTIAL, "parse_partial")
        if persisted.unchanged:
            raise _ArchiveOutcome(RESULT_UNCHANGED)

        try:
            export_env(self.repo_path, self.prep.env_id, self.now)
        except (OSError, ValueError) as e:
            raise _ArchiveOutcome(RESULT_FATAL, "export_failed", str(e))

        snapshot_file = persisted.snapshot_path.name
        subject = build_commit_subject(CommitMeta(
            env_id=self.prep.env_id,
            entity_type=entity_type,
            entity_id=out.entity_id,
            state_sha256=persisted.state_sha256,
            tsf_id=identity.tsf_id,
        ))
        allowlist = build_allowlist(
            self.repo_path, self.prep.env_id, entity_type, out.entity_id, snapshot_file
        )
        try:
            with timed_section("commit", entity_id=out.entity_id):
                git_commit = commit_changes(self.repo_path, allowlist, subject)
        except NothingToCommitError as e:
            raise _ArchiveOutcome(RESULT_FATAL, "nothing_to_commit", str(e))
        except GitError as e:
            raise _ArchiveOutcome(RESULT_FATAL, "commit_failed", str(e))

        entry.result = RESULT_COMMITTED
        entry.git_commit = git_commit

        ledger_entry = CommitLedgerEntry(
            committed_at_utc=self.attempted_at,
            tsf_id=identity.tsf_id,
            tsf_original_name=identity.tsf_original_name,
            entity_type=entity_type,
            entity_id=out.entity_id,
            state_sha256=persisted.state_sha256,
            git_commit=git_commit,
            changed_scope=changed_scope(previous, out.snapshot),
            changed_paths=build_changed_state_paths(
                self.prep.env_id, entity_type, out.entity_id, snapshot_file
            ),
        )
        try:
            append_ndjson(self.ledger, ledger_entry)
        except OSError as e:
            entry.result = RESULT_FATAL
            entry.notes = "commit_ledger_append_failed"
            entry.error = str(e)
            self._finish(entry)
            raise


def run_ingest(options: IngestOptions) -> IngestSummary:
    """
    Run one ingest over the given inputs.

    Raises:
        NoInputsError: If no inputs were given
        RepoUnsafeError: If the working tree is unsafe
        LockHeldError: If another ingest is running
        InvalidEnvIDError: If the environment id is invalid
        OSError: On input resolution or audit log failures
    """
    if not options.inputs:
        raise NoInputsError("ingest requires at least one input path")

    now = _utc(options.now)
    repo_path = Path(options.repo_path)

    check_repo_safe(repo_path)

    warnings = acquire_run_lock(repo_path, now, current_pid(), "ingest", process_inspector)
    prep = None
    try:
        prep = prepare(repo_path, options.env_id, options.inputs, now)
        prep.warnings[:0] = warnings
        logger.info(
            f"Ingest {prep.run_id}: env={prep.env_id} inputs={len(prep.ordered_inputs)}"
        )
        return _IngestRun(options, prep, now).run()
    finally:
        if prep is not None and not options.keep_extract:
            shutil.rmtree(prep.run_extract_root, ignore_errors=True)
        release_run_lock(repo_path)
