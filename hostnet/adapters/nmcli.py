"""NetworkManager adapter (CentOS, RHEL, AlmaLinux, Rocky).

Edits the connection profile bound to the interface with ``nmcli con mod``.
Addresses are added with ``+ipv4.addresses`` and removed with
``-ipv4.addresses`` so other addresses on the profile are left alone; the
profile is re-activated with ``nmcli con up`` as the last step.

The profile name often differs from the device ("Wired connection 1" for
eth0). It is looked up from the connection table, then from the device table,
and finally defaults to the interface name.
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


def _profile_from_line(output: str) -> str:
    """Name column of the first ``nmcli -t`` line (``NAME:DEVICE``)."""
    lines = output.strip().splitlines()
    if not lines:
        return ""
    name = lines[0].rsplit(":", 1)[0]
    return name.replace("\\:", ":").strip().strip('"')


class NetworkManagerAdapter(NetworkAdapter):
    name = "centos"

    async def connection_name(self, interface: str) -> str:
        if not self.bound:
            return interface
        pattern = shlex.quote(f":{interface}$")

        output = await self._read(
            f"nmcli -t -f NAME,DEVICE con show | grep {pattern} | head -n 1"
        )
        name = _profile_from_line(output)
        if name:
            return name

        output = await self._read(
            f"nmcli -t -f CONNECTION,DEVICE dev status | grep {pattern} | head -n 1"
        )
        name = _profile_from_line(output)
        if name and name != "--":
            return name

        logger.warning(
            "No NetworkManager profile for %s on %s, using the interface name",
            interface, self.host_id,
        )
        return interface

    async def profile_addresses(self, profile: str) -> list[str]:
        """CIDR addresses currently stored on *profile*."""
        output = await self._read(f"nmcli -g ipv4.addresses con show {shlex.quote(profile)}")
        return [a.strip() for a in output.replace("\n", ",").split(",") if a.strip()]

    async def render_apply(self, request: StaticConfigRequest) -> str:
        profile = await self.connection_name(request.interface)
        existing = set(await self.profile_addresses(profile))
        quoted = shlex.quote(profile)

        commands = []
        for ip in request.all_addresses:
            cidr = f"{ip}/{request.prefix}"
            if cidr in existing:
                continue
            commands.append(f"nmcli con mod {quoted} +ipv4.addresses {shlex.quote(cidr)}")
        if request.gateway:
            commands.append(f"nmcli con mod {quoted} ipv4.gateway {shlex.quote(request.gateway)}")
        commands.append(f"nmcli con mod {quoted} ipv4.method manual")
        commands.append(f"nmcli con mod {quoted} connection.autoconnect yes")
        if request.dns:
            commands.append(f"nmcli con mod {quoted} ipv4.dns {shlex.quote(' '.join(request.dns))}")
        commands.append(f"nmcli con up {quoted}")
        return render_script(commands)

    async def render_remove(self, interface: str, addresses: list[str]) -> str | None:
        profile = await self.connection_name(interface)
        existing = await self.profile_addresses(profile)
        quoted = shlex.quote(profile)

        targets = [a for a in existing if matches_any(a, addresses)]
        for address in addresses:
            # Without a baseline, pass the caller's addresses through as given
            if ("/" in address or not self.bound) and address not in targets and not existing:
                targets.append(address)
        if not targets:
            return ""
        if existing and all(a in targets for a in existing):
            return None

        commands = [f"nmcli con mod {quoted} -ipv4.addresses {shlex.quote(a)}" for a in targets]
        commands.append(f"nmcli con up {quoted}")
        return render_script(commands)

    async def render_clear(self, interface: str) -> str:
        profile = shlex.quote(await self.connection_name(interface))
        return render_script([
            f"nmcli con mod {profile} ipv4.addresses ''",
            f"nmcli con mod {profile} ipv4.gateway ''",
            f"nmcli con mod {profile} ipv4.dns ''",
            f"nmcli con mod {profile} ipv4.method auto",
            f"nmcli con mod {profile} connection.autoconnect yes",
            f"nmcli con up {profile}",
        ])
