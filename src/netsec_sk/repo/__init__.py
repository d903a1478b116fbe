"""State repository bootstrap, layout and safety checks."""
from .environments import (
    EnvironmentRegistry,
    InvalidEnvIDError,
    normalize_env_id,
    validate_env_id,
)
from .git_check import RepoUnsafeError, check_safe_working_tree
from .layout import GitMissingError, init_repo

__all__ = [
    "EnvironmentRegistry",
    "InvalidEnvIDError",
    "normalize_env_id",
    "validate_env_id",
    "RepoUnsafeError",
    "check_safe_working_tree",
    "GitMissingError",
    "init_repo",
]
