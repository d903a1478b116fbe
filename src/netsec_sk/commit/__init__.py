"""Git-backed commit writer."""
from .git_manager import (
    CommitInfo,
    CommitMeta,
    GitError,
    GitManager,
    NothingToCommitError,
    build_allowlist,
    build_commit_subject,
    commit_allowlisted,
)

__all__ = [
    "CommitInfo",
    "CommitMeta",
    "GitError",
    "GitManager",
    "NothingToCommitError",
    "build_allowlist",
    "build_commit_subject",
    "commit_allowlisted",
]
