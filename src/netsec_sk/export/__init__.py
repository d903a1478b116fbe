"""Environment export artifacts."""
from .pipeline import run_export
from .writers import (
    AgentContext,
    Counts,
    InventoryRow,
    MermaidEdge,
    build_agent_context_markdown,
    build_csv,
    build_environment_json,
    build_inventory_csv,
    build_topology_mermaid,
)

__all__ = [
    "run_export",
    "AgentContext",
    "Counts",
    "InventoryRow",
    "MermaidEdge",
    "build_agent_context_markdown",
    "build_csv",
    "build_environment_json",
    "build_inventory_csv",
    "build_topology_mermaid",
]
