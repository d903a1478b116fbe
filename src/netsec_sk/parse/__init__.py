"""TSF classification and snapshot parsing."""
from .classifier import (
    RESULT_OK,
    RESULT_PARTIAL,
    EntityType,
    ParseContext,
    ParseFatalError,
    ParseOutput,
    classify_entity,
)
from .snapshots import parse_firewall_snapshot, parse_panorama_snapshot, parse_snapshot

__all__ = [
    "RESULT_OK",
    "RESULT_PARTIAL",
    "EntityType",
    "ParseContext",
    "ParseFatalError",
    "ParseOutput",
    "classify_entity",
    "parse_firewall_snapshot",
    "parse_panorama_snapshot",
    "parse_snapshot",
]
