"""Runtime configuration."""
from .settings import Settings, DEFAULT_ENV_ID, SETTINGS_FILE_NAME

__all__ = ["Settings", "DEFAULT_ENV_ID", "SETTINGS_FILE_NAME"]
