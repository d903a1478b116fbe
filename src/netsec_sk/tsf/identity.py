"""TSF fingerprinting from extracted file paths.

The fingerprint ("tsf_id") is "<serial>|<canonical archive name>", derived
from the CLI capture files a TSF carries under tmp/cli/. Archives without
such files get the sentinel "unknown".
"""
import logging
import posixpath
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Union

from ..utils.audit_log import UNKNOWN_TSF_ID

logger = logging.getLogger(__name__)

PREFERRED_CANDIDATE = re.compile(r"(^|.*/)tmp/cli/[^/]+\.txt$")
FALLBACK_CANDIDATE = re.compile(r"(^|.*/)tmp/cli/.*\.txt$")
SERIAL_LINE = re.compile(
    r"^\s*(?:serial|serial number|device serial)\s*:\s*(\S+)",
    re.IGNORECASE | re.MULTILINE,
)
TS_NAME = re.compile(r"^[A-Za-z0-9._-]+_ts\.(?:tgz|tar\.gz)")


ReadFile = Callable[[str], Union[str, bytes]]


@dataclass
class Identity:
    tsf_id: str
    tsf_original_name: str = ""
    serial: str = ""


def _select_candidates(paths: Iterable[str]) -> list[str]:
    preferred = []
    fallback = []
    for path in paths:
        clean = posixpath.normpath(str(path).replace("\\", "/"))
        if PREFERRED_CANDIDATE.match(clean):
            preferred.append(clean)
        if FALLBACK_CANDIDATE.match(clean):
            fallback.append(clean)
    return sorted(preferred) if preferred else sorted(fallback)


def _ts_name_candidates(filename: str) -> list[str]:
    """Every "<token>_ts.tgz" match starting at a letter that begins a word."""
    out = []
    for i, ch in enumerate(filename):
        if not (ch.isascii() and ch.isalpha()):
            continue
        if i > 0 and filename[i - 1].isascii() and filename[i - 1].isalnum():
            continue
        m = TS_NAME.match(filename[i:])
        if m:
            out.append(m.group(0))
    return out


def derive_original_name(filename: str) -> str:
    """Recover the archive name a CLI capture file was produced from."""
    if filename.endswith((".tgz.txt", ".tar.gz.txt")):
        return filename[: -len(".txt")]

    matches = _ts_name_candidates(filename)
    if not matches:
        return filename
    return min(matches, key=len)


def derive_identity(paths: Iterable[str], read_file: ReadFile) -> Identity:
    """
    Derive the TSF identity from extracted file paths.

    The first candidate (sorted) whose content carries a serial line wins;
    when none does, the first candidate is used with an empty serial.
    Unreadable candidates are skipped.
    """
    candidates = _select_candidates(paths)
    if not candidates:
        return Identity(tsf_id=UNKNOWN_TSF_ID)

    chosen = candidates[0]
    serial = ""
    for path in candidates:
        try:
            content = read_file(path)
        except OSError as e:
            logger.debug(f"Cannot read identity candidate {path}: {e}")
            continue
        if isinstance(content, bytes):
            content = content.decode("utf-8", errors="replace")
        m = SERIAL_LINE.search(content)
        if m:
            serial = m.group(1)
            chosen = path
            break

    original = derive_original_name(posixpath.basename(chosen))
    return Identity(
        tsf_id=f"{serial}|{original}",
        tsf_original_name=original,
        serial=serial,
    )
