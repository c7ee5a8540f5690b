"""Raw iproute2 adapter, the fallback for unrecognized distributions.

Changes the running kernel state only; nothing is persisted across reboots.
Applying is NOT incremental: the interface is flushed and then holds exactly
the requested addresses.
"""

from __future__ import annotations

import logging
import shlex

from .base import (
    NetworkAdapter,
    StaticConfigRequest,
    matches_any,
    render_script,
)

logger = logging.getLogger(__name__)


class IPRouteAdapter(NetworkAdapter):
    name = "generic"

    async def render_apply(self, request: StaticConfigRequest) -> str:
        iface = shlex.quote(request.interface)
        commands = [f"ip addr flush dev {iface}"]
        commands.extend(
            f"ip addr add {ip}/{request.prefix} dev {iface}" for ip in request.all_addresses
        )
        commands.append(f"ip link set {iface} up")
        if request.gateway:
            commands.append(f"ip route replace default via {request.gateway} dev {iface}")
        if request.dns:
            servers = " ".join(shlex.quote(d) for d in request.dns)
            commands.append(f"printf 'nameserver %s\\n' {servers} > /etc/resolv.conf")
        return render_script(commands)

    async def render_remove(self, interface: str, addresses: list[str]) -> str | None:
        if self.bound:
            current = [
                r.address for r in await self.current_ips()
                if r.interface == interface and r.family == "inet"
            ]
            targets = [a for a in current if matches_any(a, addresses)]
            if targets and len(targets) == len(current):
                return None
        else:
            targets = list(addresses)
        if not targets:
            return ""
        dev = shlex.quote(interface)
        return render_script([f"ip addr del {shlex.quote(a)} dev {dev}" for a in targets])

    async def render_clear(self, interface: str) -> str:
        dev = shlex.quote(interface)
        return render_script([
            f"ip addr flush dev {dev}",
            f"ip route del default dev {dev} 2>/dev/null || true",
            f"dhclient {dev} 2>/dev/null || true",
        ])
