"""Named environments inside a state repository."""
import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

ENV_ID_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,30}[a-z0-9])?$")

ENV_SUBDIRS = ("state", "exports", "overrides")


class InvalidEnvIDError(ValueError):
    """Raised for environment ids that do not match ENV_ID_PATTERN."""
    pass


def normalize_env_id(raw: str) -> str:
    return (raw or "").strip().lower()


def validate_env_id(env_id: str) -> None:
    if not ENV_ID_PATTERN.match(env_id):
        raise InvalidEnvIDError(f"invalid env_id: {env_id!r}")


class EnvironmentRegistry:
    """Creates and lists environments under <repo>/envs."""

    def __init__(self, repo_path: Path):
        self.repo_path = Path(repo_path)

    @property
    def envs_dir(self) -> Path:
        return self.repo_path / "envs"

    def create(self, raw_env_id: str) -> tuple[str, bool]:
        """
        Normalize, validate and bootstrap an environment.

        Returns:
            (env_id, created) where created is False if it already existed

        Raises:
            InvalidEnvIDError: If the normalized id is invalid
        """
        env_id = normalize_env_id(raw_env_id)
        validate_env_id(env_id)

        env_root = self.envs_dir / env_id
        if env_root.exists():
            return env_id, False

        for sub in ENV_SUBDIRS:
            (env_root / sub).mkdir(parents=True, exist_ok=True)

        logger.info(f"Created environment '{env_id}'")
        return env_id, True

    def list(self) -> list[str]:
        """List valid environment ids, sorted."""
        if not self.envs_dir.exists():
            return []
        out = []
        for p in self.envs_dir.iterdir():
            if p.is_dir() and ENV_ID_PATTERN.match(p.name):
                out.append(p.name)
        return sorted(out)
