"""Optional enrichment of parsed snapshots."""
from .rdns import RDNSLookupError, RDNSNotFound, ReverseDNS, default_lookup, maybe_lookup

__all__ = ["RDNSLookupError", "RDNSNotFound", "ReverseDNS", "default_lookup", "maybe_lookup"]
