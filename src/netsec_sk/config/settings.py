"""Runtime settings for netsec-sk.

Environment variables:
- NETSEC_SK_REPO: State repository path (default: current directory)
- NETSEC_SK_ENV: Environment id (default: "default")
- NETSEC_SK_RDNS: Set to "1" to enable reverse DNS for new devices
- NETSEC_SK_KEEP_EXTRACT: Set to "1" to keep per-archive scratch directories

A netsec-sk.yaml file at the repository root may set the same values:

    env: prod
    rdns: true
    keep_extract: false

Environment variables take precedence over the file.
"""
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_ENV_ID = "default"
SETTINGS_FILE_NAME = "netsec-sk.yaml"

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_flag(name: str) -> Optional[bool]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip().lower() in _TRUE_VALUES


@dataclass
class Settings:
    """Resolved runtime settings."""
    repo_path: Path = Path(".")
    env_id: str = DEFAULT_ENV_ID
    enable_rdns: bool = False
    keep_extract: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables only."""
        settings = cls()
        settings._apply_env()
        return settings

    @classmethod
    def from_file(cls, path: Path) -> "Settings":
        """Load settings from a YAML file.

        A missing file yields defaults.

        Raises:
            ValueError: If the file does not contain a mapping.
        """
        path = Path(path)
        if not path.exists():
            logger.debug(f"Settings file not found: {path}")
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Settings file must contain a mapping: {path}")

        settings = cls()
        if "repo" in data:
            settings.repo_path = Path(data["repo"])
        if "env" in data:
            settings.env_id = str(data["env"])
        if "rdns" in data:
            settings.enable_rdns = bool(data["rdns"])
        if "keep_extract" in data:
            settings.keep_extract = bool(data["keep_extract"])
        return settings

    @classmethod
    def load(cls, repo_path: Optional[Path] = None) -> "Settings":
        """Load file settings for a repository, then apply environment overrides."""
        env_repo = os.environ.get("NETSEC_SK_REPO")
        base = Path(repo_path or env_repo or ".")
        settings = cls.from_file(base / SETTINGS_FILE_NAME)
        settings.repo_path = base
        settings._apply_env()
        if repo_path is not None:
            settings.repo_path = Path(repo_path)
        return settings

    def _apply_env(self) -> None:
        repo = os.environ.get("NETSEC_SK_REPO")
        if repo:
            self.repo_path = Path(repo)
        env_id = os.environ.get("NETSEC_SK_ENV")
        if env_id:
            self.env_id = env_id
        rdns = _env_flag("NETSEC_SK_RDNS")
        if rdns is not None:
            self.enable_rdns = rdns
        keep = _env_flag("NETSEC_SK_KEEP_EXTRACT")
        if keep is not None:
            self.keep_extract = keep

    def as_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}
