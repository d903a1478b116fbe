"""Entity classification and shared text helpers for TSF parsing."""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class EntityType(str, Enum):
    """Kind of device a TSF was captured from."""
    FIREWALL = "firewall"
    PANORAMA = "panorama"


class ParseFatalError(Exception):
    """Raised when a TSF cannot yield an entity snapshot."""
    pass


# Parse results carried into the ingest log
RESULT_OK = "ok"
RESULT_PARTIAL = "parse_error_partial"
RESULT_FATAL = "parse_error_fatal"

SERIAL_LINE = re.compile(
    r"^\s*(?:serial|serial number|device serial)\s*:\s*(\S+)",
    re.IGNORECASE | re.MULTILINE,
)
MODEL_LINE = re.compile(r"^\s*model\s*:\s*(\S+)", re.IGNORECASE | re.MULTILINE)

ZERO_SHA256 = "0" * 64


@dataclass
class ParseContext:
    """Provenance recorded in the snapshot envelope."""
    tsf_id: str
    tsf_original_name: str
    input_archive_name: str
    ingested_at_utc: str


@dataclass
class ParseOutput:
    entity_type: EntityType
    entity_id: str
    snapshot: dict[str, Any] = field(default_factory=dict)
    result: str = RESULT_OK

    @property
    def is_partial(self) -> bool:
        return self.result == RESULT_PARTIAL


def sorted_paths(files: dict[str, str]) -> list[str]:
    return sorted(files)


def join_content(files: dict[str, str]) -> str:
    """Concatenate file contents in sorted path order."""
    return "\n".join(files[p] for p in sorted_paths(files))


def first_serial(files: dict[str, str]) -> str:
    for path in sorted_paths(files):
        m = SERIAL_LINE.search(files[path])
        if m:
            return m.group(1)
    return ""


def iter_values(files: dict[str, str], key: str):
    """Yield the value of every "<key>: value" line, in sorted path order."""
    target = key.lower() + ":"
    for path in sorted_paths(files):
        for line in files[path].split("\n"):
            stripped = line.strip()
            if stripped.lower().startswith(target):
                yield stripped[len(target):].strip()


def get_value(files: dict[str, str], *keys: str) -> str:
    """First value found for the first key spelling present."""
    for key in keys:
        for value in iter_values(files, key):
            return value
    return ""


def classify_entity(files: dict[str, str]) -> EntityType:
    """
    Decide whether a TSF comes from a firewall or a Panorama console.

    The model line is preferred; "panorama" also shows up in firewall
    dumps (admin names, config paths), so the substring test is a fallback.

    Raises:
        ParseFatalError: If neither type can be recognized
    """
    joined = join_content(files).lower()

    m = MODEL_LINE.search(joined)
    if m:
        model = m.group(1).strip()
        if model.startswith(("pa-", "vm-")):
            return EntityType.FIREWALL
        if model.startswith("m-") or "panorama" in model:
            return EntityType.PANORAMA

    if "panorama" in joined:
        return EntityType.PANORAMA
    if "firewall" in joined or "pan-os" in joined:
        return EntityType.FIREWALL

    raise ParseFatalError("cannot classify entity type")


def parse_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("yes", "true", "enabled", "on", "1")
