"""State repository layout and bootstrap.

Directory structure managed:
    <repo>/
    ├── .gitignore                 # always ignores .netsec-state/
    ├── .netsec-state/             # local runtime state, never committed
    │   ├── lock
    │   ├── ingest.ndjson
    │   └── extract/<run>/...
    └── envs/<env>/
        ├── state/
        │   ├── commits.ndjson
        │   ├── devices/<serial>/{latest.json,snapshots/}
        │   └── panorama/<serial>/{latest.json,snapshots/}
        ├── exports/
        └── overrides/
"""
import logging
import re
import shutil
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

STATE_DIR_NAME = ".netsec-state"
GITIGNORE_ENTRY = ".netsec-state/"

# Serials and other entity ids become directory names
ENTITY_ID_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]*")


class GitMissingError(Exception):
    """Raised when the git executable is not available on PATH."""
    pass


class UnsafeEntityIDError(ValueError):
    """Raised when an entity id cannot be used as a directory name."""
    pass


def state_dir(repo_path: Path) -> Path:
    return Path(repo_path) / STATE_DIR_NAME


def lock_path(repo_path: Path) -> Path:
    return state_dir(repo_path) / "lock"


def extract_root(repo_path: Path) -> Path:
    return state_dir(repo_path) / "extract"


def ingest_log_path(repo_path: Path) -> Path:
    return state_dir(repo_path) / "ingest.ndjson"


def env_dir(repo_path: Path, env_id: str) -> Path:
    return Path(repo_path) / "envs" / env_id


def commit_ledger_path(repo_path: Path, env_id: str) -> Path:
    return env_dir(repo_path, env_id) / "state" / "commits.ndjson"


def is_safe_entity_id(entity_id: str) -> bool:
    """Check that an id is a single, plain path component."""
    return bool(ENTITY_ID_PATTERN.fullmatch(entity_id or ""))


def entity_dir_name(entity_type: str) -> str:
    """Directory under state/ holding entities of a given type."""
    return "panorama" if entity_type == "panorama" else "devices"


def entity_paths(
    repo_path: Path,
    env_id: str,
    entity_type: str,
    entity_id: str,
) -> tuple[Path, Path]:
    """Return (latest.json path, snapshots dir) for an entity.

    Raises:
        UnsafeEntityIDError: If the id is not a plain name or the resulting
            directory would leave the environment state directory
    """
    if not is_safe_entity_id(entity_id):
        raise UnsafeEntityIDError(f"unsafe entity id: {entity_id!r}")

    parent = env_dir(repo_path, env_id) / "state" / entity_dir_name(entity_type)
    base = parent / entity_id
    if base.resolve().parent != parent.resolve():
        raise UnsafeEntityIDError(f"entity path escapes {parent}: {entity_id!r}")
    return base / "latest.json", base / "snapshots"


def check_git_available(look_path: Callable[[str], Optional[str]] = shutil.which) -> str:
    """Return the git executable path.

    Raises:
        GitMissingError: If git cannot be found.
    """
    found = look_path("git")
    if not found:
        raise GitMissingError("git executable is not available on PATH")
    return found


def ensure_gitignore_entry(repo_path: Path, entry: str = GITIGNORE_ENTRY) -> None:
    gitignore = Path(repo_path) / ".gitignore"
    text = gitignore.read_text() if gitignore.exists() else ""
    if entry in text.splitlines():
        return
    if text and not text.endswith("\n"):
        text += "\n"
    text += entry + "\n"
    gitignore.write_text(text)


def create_base_layout(repo_path: Path) -> None:
    for d in (Path(repo_path) / "envs", state_dir(repo_path), extract_root(repo_path)):
        d.mkdir(parents=True, exist_ok=True)
    ensure_gitignore_entry(repo_path)


def init_repo(
    repo_path: Path,
    look_path: Callable[[str], Optional[str]] = shutil.which,
    git_init: Optional[Callable[[Path], None]] = None,
) -> Path:
    """
    Initialize a state repository.

    Idempotent: an existing git repository and layout are left in place.

    Args:
        repo_path: Repository root (created if missing)
        look_path: PATH lookup used to locate git
        git_init: Callable that runs `git init` in a directory

    Returns:
        Absolute repository path

    Raises:
        GitMissingError: If git is not available
    """
    check_git_available(look_path)

    repo_path = Path(repo_path).resolve()
    repo_path.mkdir(parents=True, exist_ok=True)

    if not (repo_path / ".git").exists():
        if git_init is None:
            from ..commit.git_manager import GitManager
            GitManager(repo_path).init()
        else:
            git_init(repo_path)
            logger.info(f"Initialized git repo at {repo_path}")

    create_base_layout(repo_path)
    return repo_path
