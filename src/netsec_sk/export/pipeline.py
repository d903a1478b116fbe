"""Regenerate environment exports from the stored latest snapshots.

Exports are derived data: every run rebuilds all six artifacts under
envs/<env>/exports/ from envs/<env>/state/*/<id>/latest.json.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..repo.layout import env_dir
from ..topology import Edge, Interface, infer_shared_subnet_edges, merge_override_edges
from ..utils.logging_config import timed_section
from .writers import (
    EDGES_HEADER,
    NODES_HEADER,
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

logger = logging.getLogger(__name__)

OVERRIDES_FILE = "topology_links.json"


@dataclass
class NodeRow:
    node_id: str
    node_type: str
    env_id: str
    device_id: str = ""
    panorama_id: str = ""
    zone: str = ""
    virtual_router: str = ""
    label: str = ""

    def as_row(self) -> list[str]:
        return [
            self.node_id,
            self.node_type,
            self.env_id,
            self.device_id,
            self.panorama_id,
            self.zone,
            self.virtual_router,
            self.label,
        ]


@dataclass
class _Loaded:
    """Everything read from one entity directory tree."""
    docs: list[dict[str, Any]] = field(default_factory=list)
    inventory: list[InventoryRow] = field(default_factory=list)
    nodes: list[NodeRow] = field(default_factory=list)
    interfaces: list[Interface] = field(default_factory=list)
    zones: set[str] = field(default_factory=set)


def _sanitize(value: str) -> str:
    out = value.strip().lower()
    for ch in (" ", "/", "\\", ":", ".", "-"):
        out = out.replace(ch, "_")
    return out


def firewall_node_id(device_id: str) -> str:
    return "firewall_" + _sanitize(device_id)


def panorama_node_id(panorama_id: str) -> str:
    return "panorama_" + _sanitize(panorama_id)


def zone_node_id(device_id: str, zone: str) -> str:
    return f"zone_{_sanitize(device_id)}_{_sanitize(zone)}"


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _iter_latest(root: Path):
    """Yield (entity_id, document) for every latest.json below root, by id."""
    if not root.exists():
        return
    for entity_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        latest = entity_dir / "latest.json"
        if not latest.exists():
            continue
        with open(latest, "r", encoding="utf-8") as f:
            yield entity_dir.name, json.load(f)


def _routing_protocols(doc: dict[str, Any]) -> tuple[list[str], list[str]]:
    configured: set[str] = set()
    active: set[str] = set()
    for vr in _list(_dict(doc.get("routing")).get("virtual_routers")):
        vr = _dict(vr)
        configured.update(_str(p) for p in _list(vr.get("protocols_configured")))
        active.update(_str(p) for p in _list(vr.get("protocols_active")))
    return sorted(configured - {""}), sorted(active - {""})


def load_firewalls(state_base: Path, env_id: str) -> _Loaded:
    loaded = _Loaded()
    for device_id, doc in _iter_latest(state_base / "devices"):
        loaded.docs.append(doc)
        device = _dict(doc.get("device"))
        source = _dict(doc.get("source"))
        ha = _dict(doc.get("ha"))
        configured, active = _routing_protocols(doc)

        loaded.nodes.append(NodeRow(
            node_id=firewall_node_id(device_id),
            node_type="firewall",
            env_id=env_id,
            device_id=device_id,
            label=_str(device.get("hostname")),
        ))
        loaded.inventory.append(InventoryRow(
            entity_type="firewall",
            entity_id=device_id,
            hostname=_str(device.get("hostname")),
            serial=_str(device.get("serial")),
            model=_str(device.get("model")),
            version=_str(device.get("sw_version")),
            mgmt_ip=_str(device.get("mgmt_ip")),
            ha_enabled="true" if ha.get("enabled") is True else "false",
            ha_mode=_str(ha.get("mode")),
            ha_state=_str(ha.get("local_state")),
            routing_protocols_configured=configured,
            routing_protocols_active=active,
            source_tsf_id=_str(source.get("tsf_id")),
            state_sha256=_str(doc.get("state_sha256")),
            last_ingested_at_utc=_str(source.get("ingested_at_utc")),
        ))

        for raw in _list(_dict(doc.get("network")).get("interfaces")):
            intf = _dict(raw)
            zone = _str(intf.get("zone"))
            loaded.zones.add(f"{device_id}|{zone}")
            loaded.interfaces.append(Interface(
                device_id=device_id,
                zone=zone,
                vr=_str(intf.get("virtual_router")),
                name=_str(intf.get("name")),
                ip_cidrs=sorted(_str(c) for c in _list(intf.get("ip_cidrs"))),
            ))

    loaded.docs.sort(key=lambda d: _str(d.get("state_sha256")))
    return loaded


def load_panorama(state_base: Path, env_id: str) -> _Loaded:
    loaded = _Loaded()
    for panorama_id, doc in _iter_latest(state_base / "panorama"):
        loaded.docs.append(doc)
        inst = _dict(doc.get("panorama_instance"))
        source = _dict(doc.get("source"))
        ha = _dict(doc.get("panorama_ha"))

        loaded.nodes.append(NodeRow(
            node_id=panorama_node_id(panorama_id),
            node_type="panorama",
            env_id=env_id,
            panorama_id=panorama_id,
            label=_str(inst.get("hostname")),
        ))
        loaded.inventory.append(InventoryRow(
            entity_type="panorama",
            entity_id=panorama_id,
            hostname=_str(inst.get("hostname")),
            serial=_str(inst.get("serial")),
            model=_str(inst.get("model")),
            version=_str(inst.get("version")),
            mgmt_ip=_str(inst.get("mgmt_ip")),
            ha_enabled="true" if ha.get("enabled") is True else "false",
            ha_mode=_str(ha.get("mode")),
            ha_state=_str(ha.get("local_state")),
            source_tsf_id=_str(source.get("tsf_id")),
            state_sha256=_str(doc.get("state_sha256")),
            last_ingested_at_utc=_str(source.get("ingested_at_utc")),
        ))

    loaded.docs.sort(key=lambda d: _str(d.get("state_sha256")))
    return loaded


def _edge_rows(env_id: str, edges: list[Edge]) -> tuple[list[list[str]], list[NodeRow], list[MermaidEdge]]:
    rows = []
    zone_nodes: dict[str, NodeRow] = {}
    mermaid = []
    for e in edges:
        src = zone_node_id(e.src_device_id, e.src_zone)
        dst = zone_node_id(e.dst_device_id, e.dst_zone)
        zone_nodes[src] = NodeRow(
            node_id=src, node_type="zone", env_id=env_id, device_id=e.src_device_id,
            zone=e.src_zone, virtual_router=e.src_vr, label=f"{e.src_device_id}:{e.src_zone}",
        )
        zone_nodes[dst] = NodeRow(
            node_id=dst, node_type="zone", env_id=env_id, device_id=e.dst_device_id,
            zone=e.dst_zone, virtual_router=e.dst_vr, label=f"{e.dst_device_id}:{e.dst_zone}",
        )
        rows.append([
            e.edge_id, e.edge_type, src, dst,
            e.src_device_id, e.src_zone, e.src_interface, e.src_vr,
            e.dst_device_id, e.dst_zone, e.dst_interface, e.dst_vr,
            "", e.source,
        ])
        mermaid.append(MermaidEdge(edge_id=e.edge_id, src=src, dst=dst))
    rows.sort(key=lambda r: r[0])
    return rows, list(zone_nodes.values()), mermaid


def _agent_context(
    env_id: str,
    firewalls: _Loaded,
    panorama: _Loaded,
    edges: list[Edge],
) -> AgentContext:
    protocols: dict[str, int] = {}
    for row in firewalls.inventory:
        for proto in row.routing_protocols_configured:
            protocols[proto] = protocols.get(proto, 0) + 1
    if protocols:
        routing = "Configured protocols: " + ", ".join(
            f"{p} ({n})" for p, n in sorted(protocols.items())
        )
    else:
        routing = "No routing protocols recorded."

    managed: set[str] = set()
    groups = 0
    for doc in panorama.docs:
        cfg = _dict(doc.get("panorama_config"))
        groups += len(_list(cfg.get("device_groups")))
        managed.update(_str(_dict(m).get("serial")) for m in _list(cfg.get("managed_devices")))
    managed.discard("")

    ingested = {row.entity_id for row in firewalls.inventory}
    missing = sorted(managed - ingested)
    connected = {f"{e.src_device_id}|{e.src_zone}" for e in edges}
    connected |= {f"{e.dst_device_id}|{e.dst_zone}" for e in edges}
    isolated = len(firewalls.zones - connected)

    unknowns = [f"Zones without topology edges: {isolated}"]
    if missing:
        unknowns.append("Managed serials without an ingested TSF: " + ", ".join(missing))

    return AgentContext(
        environment_summary=f"Environment: {env_id}",
        inventory_counts=f"Firewalls: {len(firewalls.inventory)}, Panorama: {len(panorama.inventory)}",
        routing_usage=routing,
        panorama_overview=(
            f"Panorama instances: {len(panorama.inventory)}, device groups: {groups}, "
            f"managed devices: {len(managed)}"
        ),
        topology_highlights=f"Topology edges: {len(edges)}",
        orphans_and_unknowns="\n".join(unknowns),
    )


def run_export(repo_path: Path, env_id: str, now: Optional[datetime] = None) -> Path:
    """
    Rebuild every export artifact for an environment.

    Returns:
        The exports directory

    Raises:
        OSError, ValueError: On unreadable state or override files
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    base = env_dir(repo_path, env_id)
    state_base = base / "state"
    export_base = base / "exports"

    with timed_section("export", entity_id=env_id):
        firewalls = load_firewalls(state_base, env_id)
        panorama = load_panorama(state_base, env_id)

        edges = infer_shared_subnet_edges(firewalls.interfaces)
        edges = merge_override_edges(edges, base / "overrides" / OVERRIDES_FILE)

        edge_rows, zone_nodes, mermaid_edges = _edge_rows(env_id, edges)
        nodes = firewalls.nodes + panorama.nodes + zone_nodes
        nodes.sort(key=lambda n: (n.node_type, n.node_id))

        artifacts = {
            "environment.json": build_environment_json(
                env_id,
                now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
                Counts(
                    firewalls=len(firewalls.docs),
                    panorama=len(panorama.docs),
                    zones=len(firewalls.zones),
                    topology_edges=len(edges),
                ),
                firewalls.docs,
                panorama.docs,
                [e.to_dict() for e in edges],
            ),
            "inventory.csv": build_inventory_csv(firewalls.inventory + panorama.inventory),
            "nodes.csv": build_csv(NODES_HEADER, (n.as_row() for n in nodes)),
            "edges.csv": build_csv(EDGES_HEADER, edge_rows),
            "topology.mmd": build_topology_mermaid(mermaid_edges),
            "agent_context.md": build_agent_context_markdown(
                _agent_context(env_id, firewalls, panorama, edges)
            ),
        }

        export_base.mkdir(parents=True, exist_ok=True)
        for name, content in artifacts.items():
            (export_base / name).write_text(content, encoding="utf-8")

    logger.info(
        f"Exported env '{env_id}': {len(firewalls.docs)} firewalls, "
        f"{len(panorama.docs)} panorama, {len(edges)} edges"
    )
    return export_base
