"""Build entity snapshots from TSF text files.

Facts are read from "key: value" lines. Key spellings vary between PAN-OS
releases, so each field accepts several variants. Feature lines:

    interface: ethernet1/1 zone=trust vr=default ip=10.0.0.1/24,10.0.1.1/24
    virtual_router: default protocols=bgp,ospf active=bgp
    zone: dmz
    license: Threat Prevention valid
    device_group: branch members=S1,S2
    template: base
    template_stack: branch-stack templates=base,site
    managed_serial: S1
"""
import logging
from typing import Any

from ..repo.layout import is_safe_entity_id
from .classifier import (
    RESULT_OK,
    RESULT_PARTIAL,
    ZERO_SHA256,
    EntityType,
    ParseContext,
    ParseFatalError,
    ParseOutput,
    classify_entity,
    first_serial,
    get_value,
    iter_values,
    parse_bool,
)

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

HOSTNAME_KEYS = ("hostname",)
MGMT_IP_KEYS = ("mgmt_ip", "mgmt-ip", "ip-address", "ip address")
VERSION_KEYS = ("sw_version", "sw-version", "version")
MODEL_KEYS = ("model",)

HA_ENABLED_KEYS = ("ha_enabled", "ha-enabled")
HA_MODE_KEYS = ("ha_mode", "ha-mode")
HA_STATE_KEYS = ("ha_local_state", "ha-state")
HA_PEER_KEYS = ("ha_peer_serial", "ha-peer-serial")


def base_snapshot(ctx: ParseContext) -> dict[str, Any]:
    return {
        "snapshot_version": SNAPSHOT_VERSION,
        "source": {
            "tsf_id": ctx.tsf_id,
            "tsf_original_name": ctx.tsf_original_name,
            "input_archive_name": ctx.input_archive_name,
            "ingested_at_utc": ctx.ingested_at_utc,
        },
        "state_sha256": ZERO_SHA256,
    }


def _split_options(value: str) -> tuple[str, dict[str, str]]:
    """Split "name k=v k=v" into the name and its options."""
    parts = value.split()
    name_parts = []
    options = {}
    for part in parts:
        if "=" in part:
            k, _, v = part.partition("=")
            options[k.lower()] = v
        else:
            name_parts.append(part)
    return " ".join(name_parts), options


def _split_list(value: str) -> list[str]:
    return [item for item in (v.strip() for v in value.split(",")) if item]


def _parse_ha(files: dict[str, str]) -> dict[str, Any]:
    return {
        "enabled": parse_bool(get_value(files, *HA_ENABLED_KEYS)),
        "mode": get_value(files, *HA_MODE_KEYS) or "unknown",
        "local_state": get_value(files, *HA_STATE_KEYS),
        "peer_serial": get_value(files, *HA_PEER_KEYS),
    }


def _parse_licenses(files: dict[str, str]) -> list[dict[str, str]]:
    licenses = {}
    for value in iter_values(files, "license"):
        if not value:
            continue
        words = value.split()
        if len(words) > 1:
            name, status = " ".join(words[:-1]), words[-1]
        else:
            name, status = words[0], ""
        licenses.setdefault(name, {"name": name, "status": status})
    return [licenses[k] for k in sorted(licenses)]


def _parse_interfaces(files: dict[str, str]) -> list[dict[str, Any]]:
    interfaces = {}
    for value in iter_values(files, "interface"):
        name, options = _split_options(value)
        if not name or name in interfaces:
            continue
        interfaces[name] = {
            "name": name,
            "zone": options.get("zone", ""),
            "virtual_router": options.get("vr", ""),
            "ip_cidrs": sorted(_split_list(options.get("ip", ""))),
        }
    return [interfaces[k] for k in sorted(interfaces)]


def _parse_zones(files: dict[str, str], interfaces: list[dict[str, Any]]) -> list[dict[str, Any]]:
    zones: dict[str, list[str]] = {}
    for value in iter_values(files, "zone"):
        name, _ = _split_options(value)
        if name:
            zones.setdefault(name, [])
    for intf in interfaces:
        if intf["zone"]:
            zones.setdefault(intf["zone"], []).append(intf["name"])
    return [{"name": z, "interfaces": sorted(zones[z])} for z in sorted(zones)]


def _parse_virtual_routers(
    files: dict[str, str],
    interfaces: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    routers: dict[str, dict[str, Any]] = {}

    def router(name: str) -> dict[str, Any]:
        return routers.setdefault(name, {
            "name": name,
            "interfaces": [],
            "protocols_configured": [],
            "protocols_active": [],
        })

    for value in iter_values(files, "virtual_router"):
        name, options = _split_options(value)
        if not name:
            continue
        vr = router(name)
        vr["protocols_configured"] = sorted(
            set(vr["protocols_configured"]) | {p.lower() for p in _split_list(options.get("protocols", ""))}
        )
        vr["protocols_active"] = sorted(
            set(vr["protocols_active"]) | {p.lower() for p in _split_list(options.get("active", ""))}
        )

    for intf in interfaces:
        if intf["virtual_router"]:
            router(intf["virtual_router"])["interfaces"].append(intf["name"])

    for vr in routers.values():
        vr["interfaces"] = sorted(vr["interfaces"])
    return [routers[k] for k in sorted(routers)]


def _is_partial(files: dict[str, str]) -> bool:
    return not get_value(files, *HOSTNAME_KEYS) or not get_value(files, *MGMT_IP_KEYS)


def parse_firewall_snapshot(ctx: ParseContext, files: dict[str, str]) -> tuple[dict[str, Any], bool]:
    """
    Build a firewall snapshot.

    Returns:
        (snapshot, partial) where partial means hostname or management IP
        could not be found

    Raises:
        ParseFatalError: If no serial is present or it is not a plain name
    """
    serial = first_serial(files)
    if not serial:
        raise ParseFatalError("firewall serial not found")
    if not is_safe_entity_id(serial):
        raise ParseFatalError(f"firewall serial is not a valid entity id: {serial!r}")

    interfaces = _parse_interfaces(files)

    snapshot = base_snapshot(ctx)
    snapshot["device"] = {
        "id": serial,
        "hostname": get_value(files, *HOSTNAME_KEYS),
        "serial": serial,
        "model": get_value(files, *MODEL_KEYS),
        "sw_version": get_value(files, *VERSION_KEYS),
        "mgmt_ip": get_value(files, *MGMT_IP_KEYS),
    }
    snapshot["ha"] = _parse_ha(files)
    snapshot["licenses"] = _parse_licenses(files)
    snapshot["network"] = {
        "interfaces": interfaces,
        "zones": _parse_zones(files, interfaces),
    }
    snapshot["routing"] = {
        "virtual_routers": _parse_virtual_routers(files, interfaces),
    }
    return snapshot, _is_partial(files)


def _parse_panorama_config(files: dict[str, str]) -> dict[str, Any]:
    device_groups = {}
    for value in iter_values(files, "device_group"):
        name, options = _split_options(value)
        if name and name not in device_groups:
            device_groups[name] = {
                "name": name,
                "members_serials": sorted(_split_list(options.get("members", ""))),
            }

    templates = {}
    for value in iter_values(files, "template"):
        name, _ = _split_options(value)
        if name:
            templates.setdefault(name, {"name": name})

    stacks = {}
    for value in iter_values(files, "template_stack"):
        name, options = _split_options(value)
        if name and name not in stacks:
            stacks[name] = {
                "name": name,
                "templates": sorted(_split_list(options.get("templates", ""))),
            }

    managed = sorted({v.split()[0] for v in iter_values(files, "managed_serial") if v})

    return {
        "device_groups": [device_groups[k] for k in sorted(device_groups)],
        "templates": [templates[k] for k in sorted(templates)],
        "template_stacks": [stacks[k] for k in sorted(stacks)],
        "managed_devices": [{"serial": s} for s in managed],
    }


def parse_panorama_snapshot(ctx: ParseContext, files: dict[str, str]) -> tuple[dict[str, Any], bool]:
    """Build a Panorama snapshot; same contract as parse_firewall_snapshot."""
    serial = first_serial(files)
    if not serial:
        raise ParseFatalError("panorama serial not found")
    if not is_safe_entity_id(serial):
        raise ParseFatalError(f"panorama serial is not a valid entity id: {serial!r}")

    snapshot = base_snapshot(ctx)
    snapshot["panorama_instance"] = {
        "id": serial,
        "hostname": get_value(files, *HOSTNAME_KEYS),
        "serial": serial,
        "model": get_value(files, *MODEL_KEYS),
        "version": get_value(files, *VERSION_KEYS),
        "mgmt_ip": get_value(files, *MGMT_IP_KEYS),
    }
    snapshot["panorama_config"] = _parse_panorama_config(files)
    snapshot["panorama_ha"] = _parse_ha(files)
    return snapshot, _is_partial(files)


def parse_snapshot(ctx: ParseContext, files: dict[str, str]) -> ParseOutput:
    """
    Classify a TSF and build its entity snapshot.

    Args:
        ctx: Provenance for the snapshot envelope
        files: Extracted file path -> text content

    Returns:
        ParseOutput with result "ok" or "parse_error_partial"

    Raises:
        ParseFatalError: If the entity type or serial cannot be determined
    """
    entity_type = classify_entity(files)

    if entity_type is EntityType.FIREWALL:
        snapshot, partial = parse_firewall_snapshot(ctx, files)
        entity_id = snapshot["device"]["id"]
    else:
        snapshot, partial = parse_panorama_snapshot(ctx, files)
        entity_id = snapshot["panorama_instance"]["id"]

    result = RESULT_PARTIAL if partial else RESULT_OK
    logger.debug(f"Parsed {entity_type.value}/{entity_id} result={result}")
    return ParseOutput(
        entity_type=entity_type,
        entity_id=entity_id,
        snapshot=snapshot,
        result=result,
    )
