"""Pure renderers for environment export artifacts."""
import csv
import io
import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

INVENTORY_HEADER = [
    "entity_type",
    "entity_id",
    "hostname",
    "serial",
    "model",
    "version",
    "mgmt_ip",
    "ha_enabled",
    "ha_mode",
    "ha_state",
    "routing_protocols_configured",
    "routing_protocols_active",
    "source_tsf_id",
    "state_sha256",
    "last_ingested_at_utc",
]

NODES_HEADER = [
    "node_id",
    "node_type",
    "env_id",
    "device_id",
    "panorama_id",
    "zone",
    "virtual_router",
    "label",
]

EDGES_HEADER = [
    "edge_id",
    "edge_type",
    "src_node_id",
    "dst_node_id",
    "src_device_id",
    "src_zone",
    "src_interface",
    "src_vr",
    "dst_device_id",
    "dst_zone",
    "dst_interface",
    "dst_vr",
    "evidence",
    "source",
]


@dataclass
class Counts:
    firewalls: int = 0
    panorama: int = 0
    zones: int = 0
    topology_edges: int = 0


@dataclass
class InventoryRow:
    entity_type: str
    entity_id: str
    hostname: str = ""
    serial: str = ""
    model: str = ""
    version: str = ""
    mgmt_ip: str = ""
    ha_enabled: str = ""
    ha_mode: str = ""
    ha_state: str = ""
    routing_protocols_configured: list[str] = field(default_factory=list)
    routing_protocols_active: list[str] = field(default_factory=list)
    source_tsf_id: str = ""
    state_sha256: str = ""
    last_ingested_at_utc: str = ""

    def as_row(self) -> list[str]:
        return [
            self.entity_type,
            self.entity_id,
            self.hostname,
            self.serial,
            self.model,
            self.version,
            self.mgmt_ip,
            self.ha_enabled,
            self.ha_mode,
            self.ha_state,
            ";".join(sorted(self.routing_protocols_configured)),
            ";".join(sorted(self.routing_protocols_active)),
            self.source_tsf_id,
            self.state_sha256,
            self.last_ingested_at_utc,
        ]


@dataclass
class MermaidEdge:
    edge_id: str
    src: str
    dst: str


@dataclass
class AgentContext:
    environment_summary: str
    inventory_counts: str
    routing_usage: str
    panorama_overview: str
    topology_highlights: str
    orphans_and_unknowns: str


def build_environment_json(
    env_id: str,
    generated_at_utc: str,
    counts: Counts,
    firewalls: list[dict[str, Any]],
    panorama: list[dict[str, Any]],
    zone_edges: list[dict[str, Any]],
) -> str:
    doc = {
        "schema_version": 1,
        "environment": {
            "env_id": env_id,
            "generated_at_utc": generated_at_utc,
            "counts": {
                "firewalls": counts.firewalls,
                "panorama": counts.panorama,
                "zones": counts.zones,
                "topology_edges": counts.topology_edges,
            },
        },
        "firewalls": firewalls,
        "panorama": panorama,
        "topology": {
            "zone_edges": zone_edges,
        },
    }
    return json.dumps(doc, indent=2, sort_keys=True) + "\n"


def build_csv(header: list[str], rows: Iterable[list[str]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return buf.getvalue()


def build_inventory_csv(rows: list[InventoryRow]) -> str:
    """Inventory rows sorted by entity type, then id."""
    ordered = sorted(rows, key=lambda r: (r.entity_type, r.entity_id))
    return build_csv(INVENTORY_HEADER, (r.as_row() for r in ordered))


def sanitize_node_id(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9_]", "_", value)


def build_topology_mermaid(edges: list[MermaidEdge]) -> str:
    lines = ["graph TD"]
    for e in sorted(edges, key=lambda e: e.edge_id):
        lines.append(f"  {sanitize_node_id(e.src)} --> {sanitize_node_id(e.dst)}")
    return "\n".join(lines) + "\n"


def build_agent_context_markdown(ctx: AgentContext) -> str:
    return "\n".join([
        "# Environment Summary",
        ctx.environment_summary,
        "",
        "## Inventory Counts",
        ctx.inventory_counts,
        "",
        "## Routing Usage",
        ctx.routing_usage,
        "",
        "## Panorama Overview",
        ctx.panorama_overview,
        "",
        "## Topology Highlights",
        ctx.topology_highlights,
        "",
        "## Orphans and Unknowns",
        ctx.orphans_and_unknowns,
        "",
    ])
