"""Zone-level topology edges.

Edges are inferred between firewall interfaces that sit in the same IPv4
subnet and the same virtual router, and can be supplemented by hand in
envs/<env>/overrides/topology_links.json.
"""
import ipaddress
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

EDGE_SHARED_SUBNET = "shared_subnet"
EDGE_MANUAL_OVERRIDE = "manual_override"
SOURCE_INFERRED = "inferred"
SOURCE_OVERRIDE = "override"


@dataclass
class Interface:
    device_id: str
    zone: str = ""
    vr: str = ""
    name: str = ""
    ip_cidrs: list[str] = field(default_factory=list)

    @property
    def endpoint_key(self) -> str:
        return f"{self.device_id}|{self.zone}|{self.name}|{self.vr}"


@dataclass
class Edge:
    edge_id: str
    edge_type: str
    src_device_id: str
    src_zone: str
    src_interface: str
    src_vr: str
    dst_device_id: str
    dst_zone: str
    dst_interface: str
    dst_vr: str
    source: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "edge_id": self.edge_id,
            "edge_type": self.edge_type,
            "src": {
                "device_id": self.src_device_id,
                "zone": self.src_zone,
                "interface": self.src_interface,
                "vr": self.src_vr,
            },
            "dst": {
                "device_id": self.dst_device_id,
                "zone": self.dst_zone,
                "interface": self.dst_interface,
                "vr": self.dst_vr,
            },
            "source": self.source,
        }


class OverrideEdge(BaseModel):
    """One hand-maintained link in topology_links.json."""

    src_device_id: str = ""
    src_zone: str = ""
    src_interface: str = ""
    src_vr: str = ""
    dst_device_id: str = ""
    dst_zone: str = ""
    dst_interface: str = ""
    dst_vr: str = ""

    model_config = ConfigDict(extra="ignore")

    def endpoints(self) -> tuple[Interface, Interface]:
        return (
            Interface(self.src_device_id, self.src_zone, self.src_vr, self.src_interface),
            Interface(self.dst_device_id, self.dst_zone, self.dst_vr, self.dst_interface),
        )


def make_edge(edge_type: str, source: str, a: Interface, b: Interface) -> Edge:
    """Build an edge with endpoints ordered by their key."""
    left, right = (b, a) if a.endpoint_key > b.endpoint_key else (a, b)
    return Edge(
        edge_id=f"{edge_type}|{left.endpoint_key}|{right.endpoint_key}",
        edge_type=edge_type,
        src_device_id=left.device_id,
        src_zone=left.zone,
        src_interface=left.name,
        src_vr=left.vr,
        dst_device_id=right.device_id,
        dst_zone=right.zone,
        dst_interface=right.name,
        dst_vr=right.vr,
        source=source,
    )


def _parse_ipv4_interface(cidr: str) -> Optional[ipaddress.IPv4Interface]:
    if "/" not in cidr:
        return None
    try:
        iface = ipaddress.ip_interface(cidr.strip())
    except ValueError:
        return None
    if not isinstance(iface, ipaddress.IPv4Interface):
        return None
    return iface


def shares_ipv4_subnet(a_cidrs: Iterable[str], b_cidrs: Iterable[str]) -> bool:
    """True if some address pair has equal prefixes and each lies in the other's network."""
    a_ifaces = [i for i in map(_parse_ipv4_interface, a_cidrs) if i is not None]
    b_ifaces = [i for i in map(_parse_ipv4_interface, b_cidrs) if i is not None]
    for a in a_ifaces:
        for b in b_ifaces:
            if a.network.prefixlen != b.network.prefixlen:
                continue
            if a.ip in b.network and b.ip in a.network:
                return True
    return False


def infer_shared_subnet_edges(interfaces: list[Interface]) -> list[Edge]:
    edges: dict[str, Edge] = {}
    for i, a in enumerate(interfaces):
        for b in interfaces[i + 1:]:
            if a.device_id == b.device_id:
                continue
            if not a.vr or a.vr != b.vr:
                continue
            if not shares_ipv4_subnet(a.ip_cidrs, b.ip_cidrs):
                continue
            edge = make_edge(EDGE_SHARED_SUBNET, SOURCE_INFERRED, a, b)
            edges.setdefault(edge.edge_id, edge)
    return [edges[k] for k in sorted(edges)]


def load_override_edges(override_path: Path) -> list[OverrideEdge]:
    """
    Load and validate topology_links.json.

    Returns:
        Parsed overrides; an empty list if the file does not exist

    Raises:
        ValueError: If the file is not a JSON list of link objects
            (pydantic.ValidationError is a ValueError)
    """
    override_path = Path(override_path)
    if not override_path.exists():
        return []

    with open(override_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{override_path.name} must contain a JSON list")
    return [OverrideEdge.model_validate(item) for item in data]


def merge_override_edges(inferred: list[Edge], override_path: Path) -> list[Edge]:
    """Add manual override edges to the inferred set, sorted by edge id."""
    merged = {e.edge_id: e for e in inferred}
    for override in load_override_edges(override_path):
        a, b = override.endpoints()
        edge = make_edge(EDGE_MANUAL_OVERRIDE, SOURCE_OVERRIDE, a, b)
        if edge.edge_id in merged:
            continue
        merged[edge.edge_id] = edge
    return [merged[k] for k in sorted(merged)]
