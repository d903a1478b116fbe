"""Working tree safety checks run before every ingest."""
import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

# Paths written by ingest runs; changes under them are expected between runs
MANAGED_PREFIXES = ("envs/",)

UNSAFE_MARKERS = (
    "MERGE_HEAD",
    "CHERRY_PICK_HEAD",
    "rebase-apply",
    "rebase-merge",
)


class RepoUnsafeError(Exception):
    """Raised when the repository is in an unsafe state for ingest."""
    pass


def has_unsafe_git_operation(repo_path: Path) -> bool:
    git_dir = Path(repo_path) / ".git"
    return any((git_dir / marker).exists() for marker in UNSAFE_MARKERS)


def _porcelain_path(line: str) -> str:
    path = line[3:]
    if " -> " in path:
        path = path.split(" -> ", 1)[1]
    return path.strip().strip('"')


def check_safe_working_tree(repo_path: Path) -> None:
    """
    Ensure the working tree can take ingest commits.

    Untracked files are allowed. Tracked modifications are allowed only
    under the managed envs/ tree.

    Raises:
        RepoUnsafeError: On an in-progress merge/rebase/cherry-pick or an
            unexpected modification.
    """
    if has_unsafe_git_operation(repo_path):
        raise RepoUnsafeError("repository has an in-progress merge, rebase or cherry-pick")

    result = subprocess.run(
        ["git", "-C", str(repo_path), "status", "--porcelain"],
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        # Not a git repository; nothing to protect
        logger.debug(f"git status failed in {repo_path}: {result.stderr.strip()}")
        return

    for raw in result.stdout.splitlines():
        if len(raw) < 3:
            continue
        x, y = raw[0], raw[1]
        if x == "?" and y == "?":
            continue
        path = _porcelain_path(raw)
        if path.startswith(MANAGED_PREFIXES):
            continue
        raise RepoUnsafeError(f"repository has unexpected changes: {raw.strip()}")
