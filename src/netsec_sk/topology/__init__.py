"""Topology inference from firewall interfaces."""
from .infer import (
    Edge,
    Interface,
    OverrideEdge,
    infer_shared_subnet_edges,
    load_override_edges,
    make_edge,
    merge_override_edges,
)

__all__ = [
    "Edge",
    "Interface",
    "OverrideEdge",
    "infer_shared_subnet_edges",
    "load_override_edges",
    "make_edge",
    "merge_override_edges",
]
