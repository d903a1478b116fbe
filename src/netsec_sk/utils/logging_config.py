"""Logging configuration for netsec-sk.

Provides configurable logging with:
- File-based logging with rotation
- Console output for interactive runs
- Stage timing helpers for ingest runs

Environment Variables:
    NETSEC_SK_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    NETSEC_SK_LOG_FILE: Path to log file (default: ~/.netsec-sk/netsec-sk.log)
    NETSEC_SK_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    NETSEC_SK_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from netsec_sk.utils.logging_config import setup_logging, timed_section

    setup_logging()  # Call once at startup

    with timed_section("extract", entity_id="fw-a.tgz"):
        ...
"""
import functools
import logging
import os
import time
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Optional

# Stage timings go to their own logger for easy filtering
perf_logger = logging.getLogger("netsec_sk.perf")
main_logger = logging.getLogger("netsec_sk")

_MAIN_FORMAT = "%(asctime)s.%(msecs)03d | %(name)-28s | %(levelname)-7s | %(message)s"
_PERF_FORMAT = "%(asctime)s.%(msecs)03d | PERF | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("NETSEC_SK_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Path:
    """Get log file path from environment."""
    default_path = Path.home() / ".netsec-sk" / "netsec-sk.log"
    path_str = os.environ.get("NETSEC_SK_LOG_FILE", str(default_path))
    return Path(path_str)


def setup_logging(console: bool = True, log_file: Optional[Path] = None) -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (respects NETSEC_SK_LOG_LEVEL)
    - File handler with rotation (DEBUG level - captures everything)
    - Performance logger for stage timings

    Calling it again replaces the handlers installed by a previous call.
    """
    log_level = get_log_level()
    log_file = log_file or get_log_file()
    max_size_mb = int(os.environ.get("NETSEC_SK_LOG_MAX_SIZE", "10"))
    backup_count = int(os.environ.get("NETSEC_SK_LOG_BACKUPS", "5"))

    log_file.parent.mkdir(parents=True, exist_ok=True)

    main_format = logging.Formatter(_MAIN_FORMAT, datefmt=_DATE_FORMAT)
    perf_format = logging.Formatter(_PERF_FORMAT, datefmt=_DATE_FORMAT)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(main_format)

    perf_log_file = log_file.parent / "netsec-sk-perf.log"
    perf_handler = RotatingFileHandler(
        perf_log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    perf_handler.setLevel(logging.DEBUG)
    perf_handler.setFormatter(perf_format)

    main_logger.handlers.clear()
    main_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    main_logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(main_format)
        main_logger.addHandler(console_handler)

    # Perf records only go to the perf file
    perf_logger.handlers.clear()
    perf_logger.setLevel(logging.DEBUG)
    perf_logger.addHandler(perf_handler)
    perf_logger.propagate = False

    main_logger.debug(
        f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}"
    )


def _format_timing(
    operation: str,
    entity_id: Optional[str],
    elapsed_ms: float,
    status: str,
    extra: dict[str, Any],
) -> str:
    msg = f"{operation:20s} | {entity_id or 'N/A':24s} | {elapsed_ms:8.2f}ms | {status}"
    if extra:
        msg += " | " + " | ".join(f"{k}={v}" for k, v in extra.items())
    return msg


@contextmanager
def timed_section(operation: str, entity_id: Optional[str] = None, **extra):
    """Context manager for timing a pipeline stage.

    Usage:
        with timed_section("persist", entity_id="SER001", env="prod"):
            persist_if_changed(...)
    """
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        perf_logger.warning(_format_timing(operation, entity_id, elapsed, f"FAIL: {e}", extra))
        raise
    elapsed = (time.perf_counter() - start) * 1000
    perf_logger.info(_format_timing(operation, entity_id, elapsed, "OK", extra))


def timed(operation: str):
    """Decorator to log execution time of a function.

    Usage:
        @timed("export")
        def run_export(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            with timed_section(operation):
                return func(*args, **kwargs)
        return wrapper

    return decorator
