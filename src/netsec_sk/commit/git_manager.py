"""Git integration for the state repository.

Provides:
- Repository initialization with a local commit identity
- Allowlisted commits: only the files an ingest produced are staged
- Commit subjects and history for ingest commits
"""
import logging
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..repo.layout import entity_paths

logger = logging.getLogger(__name__)

EXPORT_FILES = (
    "environment.json",
    "inventory.csv",
    "nodes.csv",
    "edges.csv",
    "topology.mmd",
    "agent_context.md",
)


class GitError(Exception):
    """Exception raised for git operation failures."""
    pass


class NothingToCommitError(GitError):
    """Raised when staging the allowlist produced no changes."""
    pass


@dataclass
class CommitMeta:
    env_id: str
    entity_type: str
    entity_id: str
    state_sha256: str
    tsf_id: str


@dataclass
class CommitInfo:
    """Information about a git commit."""
    hash: str
    short_hash: str
    date: datetime
    message: str


def build_commit_subject(meta: CommitMeta) -> str:
    """
    Example:
        ingest(prod): firewall/0123456789 4f1c2a9b7e10 0123456789|PA-440_ts.tgz
    """
    tsf = meta.tsf_id.replace(" ", "_")
    return (
        f"ingest({meta.env_id}): {meta.entity_type}/{meta.entity_id} "
        f"{meta.state_sha256[:12]} {tsf}"
    )


def build_allowlist(
    repo_path: Path,
    env_id: str,
    entity_type: str,
    entity_id: str,
    snapshot_file: str,
) -> list[Path]:
    """Absolute paths an ingest commit may touch, sorted.

    Raises:
        UnsafeEntityIDError: If the entity id is not a plain name
    """
    base = Path(repo_path) / "envs" / env_id
    latest, snapshots = entity_paths(repo_path, env_id, entity_type, entity_id)
    paths = [
        base / "state" / "commits.ndjson",
        latest,
        snapshots / snapshot_file,
    ]
    paths.extend(base / "exports" / name for name in EXPORT_FILES)
    return sorted(paths, key=str)


class GitManager:
    """
    Manages git operations for the state repository.

    The repository root holds envs/ and the ignored .netsec-state/ directory.
    """

    def __init__(self, repo_path: Path):
        """
        Initialize GitManager.

        Args:
            repo_path: Path to the state repository (git root)
        """
        self.repo_path = Path(repo_path)

    def _run_git(
        self,
        *args: str,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        """Run a git command in the repo directory."""
        cmd = ["git", "-C", str(self.repo_path)] + list(args)
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,  # We'll handle errors ourselves
            )
        except OSError as e:
            raise GitError(f"Cannot run git: {e}") from e

        if check and result.returncode != 0:
            logger.error(f"Git command failed: {result.stderr}")
            raise GitError(f"git {args[0]} failed: {result.stderr.strip()}")

        return result

    def is_initialized(self) -> bool:
        """Check if the git repo is initialized."""
        return (self.repo_path / ".git").exists()

    def init(self) -> bool:
        """
        Initialize git repo if not already done.

        No initial commit is made; the first ingest creates the root commit.

        Returns:
            True if newly initialized, False if already exists
        """
        if self.is_initialized():
            logger.debug("Git repo already initialized")
            return False

        self._run_git("init")

        # Configure identity only where none is inherited
        for key, value in (("user.name", "netsec-sk"), ("user.email", "netsec-sk@local")):
            current = self._run_git("config", key, check=False)
            if current.returncode != 0 or not current.stdout.strip():
                self._run_git("config", key, value)

        logger.info(f"Initialized git repo at {self.repo_path}")
        return True

    def commit_allowlisted(self, allowlist: list[Path], subject: str) -> str:
        """
        Stage the existing allowlisted paths and commit them.

        Args:
            allowlist: Absolute paths that may be staged
            subject: Commit message

        Returns:
            Full commit hash

        Raises:
            NothingToCommitError: If no path exists or nothing changed
            GitError: If any git command fails
        """
        stage = [str(p) for p in allowlist if Path(p).exists()]
        if not stage:
            raise NothingToCommitError("nothing to commit")

        self._run_git("add", "--", *stage)

        # Exit 0 means the index matches HEAD; 1 means staged changes
        result = self._run_git("diff", "--cached", "--quiet", check=False)
        if result.returncode == 0:
            raise NothingToCommitError("nothing to commit")
        if result.returncode != 1:
            raise GitError(f"git diff --cached --quiet failed: {result.stderr.strip()}")

        self._run_git("commit", "-m", subject)

        commit_hash = self._run_git("rev-parse", "HEAD").stdout.strip()
        logger.info(f"Committed: {commit_hash[:8]} - {subject}")
        return commit_hash

    def get_history(self, path: Optional[str] = None, limit: int = 20) -> list[CommitInfo]:
        """
        Get commit history, newest first.

        Args:
            path: Restrict to commits touching this repo-relative path
            limit: Maximum commits to return
        """
        if not self.is_initialized():
            return []

        # Format: hash|short|date|subject
        args = ["log", "--format=%H|%h|%aI|%s", f"-n{limit}"]
        if path:
            args.extend(["--", path])

        result = self._run_git(*args, check=False)
        if result.returncode != 0:
            # No commits yet
            return []

        commits = []
        for line in result.stdout.strip().split("\n"):
            if not line:
                continue
            parts = line.split("|", 3)
            if len(parts) < 4:
                continue
            try:
                commits.append(CommitInfo(
                    hash=parts[0],
                    short_hash=parts[1],
                    date=datetime.fromisoformat(parts[2]),
                    message=parts[3],
                ))
            except ValueError as e:
                logger.warning(f"Failed to parse commit: {e}")

        return commits

    def commit_count(self) -> int:
        result = self._run_git("rev-list", "--count", "HEAD", check=False)
        if result.returncode != 0:
            return 0
        return int(result.stdout.strip() or 0)


def commit_allowlisted(repo_path: Path, allowlist: list[Path], subject: str) -> str:
    """Module-level form of GitManager.commit_allowlisted."""
    return GitManager(repo_path).commit_allowlisted(allowlist, subject)
