"""netplan adapter (Ubuntu).

Loads the host's netplan YAML, merges the interface block under
``network.ethernets`` and writes the document back followed by
``netplan apply``. New addresses are merged into the existing list, so
repeated applies never duplicate an entry.
"""

from __future__ import annotations

import logging
import shlex
from typing import Any

import yaml

from .base import (
    NetworkAdapter,
    StaticConfigRequest,
    heredoc_write,
    matches_any,
    render_script,
)

logger = logging.getLogger(__name__)

DEFAULT_NETPLAN_FILE = "/etc/netplan/01-netcfg.yaml"
_FIND_NETPLAN_FILE = "ls /etc/netplan/*.yaml /etc/netplan/*.yml 2>/dev/null | head -n 1"
_DEFAULT_ROUTE_TARGETS = ("default", "0.0.0.0/0")


def load_document(raw: str) -> dict[str, Any]:
    """Parse netplan YAML; unreadable or non-mapping input yields ``{}``."""
    if not raw.strip():
        return {}
    try:
        doc = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        logger.warning("Existing netplan file is not valid YAML, starting empty: %s", e)
        return {}
    if not isinstance(doc, dict):
        logger.warning("Existing netplan file is not a mapping, starting empty")
        return {}
    return doc


def dump_document(doc: dict[str, Any]) -> str:
    return yaml.safe_dump(doc, sort_keys=False, default_flow_style=False, width=120)


def ethernet_block(doc: dict[str, Any], interface: str, create: bool = True) -> dict | None:
    """The ``network.ethernets[interface]`` mapping, created on demand."""
    network = doc.get("network")
    if not isinstance(network, dict):
        if not create:
            return None
        network = doc["network"] = {}
    ethernets = network.get("ethernets")
    if not isinstance(ethernets, dict):
        if not create:
            return None
        ethernets = network["ethernets"] = {}
    block = ethernets.get(interface)
    if not isinstance(block, dict):
        if not create:
            return None
        block = ethernets[interface] = {}
    network.setdefault("version", 2)
    network.setdefault("renderer", "networkd")
    return block


def merge_static(block: dict, request: StaticConfigRequest) -> None:
    existing = block.get("addresses")
    combined = list(existing) if isinstance(existing, list) else []
    for ip in request.all_addresses:
        cidr = f"{ip}/{request.prefix}"
        if cidr not in combined:
            combined.append(cidr)
    block["addresses"] = combined

    # gateway4 is deprecated in favour of routes
    block.pop("gateway4", None)
    block["dhcp4"] = False

    if request.gateway:
        routes = block.get("routes") if isinstance(block.get("routes"), list) else []
        routes = [
            r for r in routes
            if not (isinstance(r, dict) and r.get("to") in _DEFAULT_ROUTE_TARGETS)
        ]
        routes.append({"to": "default", "via": request.gateway})
        block["routes"] = routes

    if request.dns:
        block["nameservers"] = {"addresses": list(request.dns)}


class NetplanAdapter(NetworkAdapter):
    name = "ubuntu"

    async def resolve_file(self) -> str:
        if not self.bound:
            return DEFAULT_NETPLAN_FILE
        output = await self._read(_FIND_NETPLAN_FILE)
        lines = output.strip().splitlines()
        if lines:
            return lines[0].strip()
        logger.info("No netplan file on %s, creating %s", self.host_id, DEFAULT_NETPLAN_FILE)
        return DEFAULT_NETPLAN_FILE

    async def _load(self) -> tuple[str, dict[str, Any]]:
        path = await self.resolve_file()
        return path, load_document(await self._read(f"cat {shlex.quote(path)}"))

    def _script(self, path: str, doc: dict[str, Any]) -> str:
        return render_script([
            heredoc_write(path, dump_document(doc)),
            f"chmod 600 {shlex.quote(path)}",
            "netplan apply",
        ])

    async def render_apply(self, request: StaticConfigRequest) -> str:
        path, doc = await self._load()
        merge_static(ethernet_block(doc, request.interface), request)
        return self._script(path, doc)

    async def render_remove(self, interface: str, addresses: list[str]) -> str | None:
        path, doc = await self._load()
        block = ethernet_block(doc, interface, create=False)
        if block is None or not isinstance(block.get("addresses"), list):
            return ""
        current = block["addresses"]
        remaining = [a for a in current if not matches_any(str(a), addresses)]
        if len(remaining) == len(current):
            return ""
        if not remaining:
            return None
        block["addresses"] = remaining
        return self._script(path, doc)

    async def render_clear(self, interface: str) -> str:
        path, doc = await self._load()
        block = ethernet_block(doc, interface)
        for key in ("addresses", "gateway4", "routes", "nameservers"):
            block.pop(key, None)
        block["dhcp4"] = True
        return self._script(path, doc)
