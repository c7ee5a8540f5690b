"""ifupdown adapter (Debian) — rewrites ``/etc/network/interfaces``.

Every stanza belonging to the interface (the primary and its ``eth0:N``
aliases) is cut out of the file and replaced with a freshly rendered block:
the first address on the primary stanza, one alias stanza per extra address.
Stanzas of other interfaces are kept byte for byte. The interface is then
cycled with ``ifdown``/``ifup``.

Note: an older variant of this tool regenerated the whole file (loopback
included) and restarted ``networking``. That path is not implemented; editing
only the interface's stanzas keeps other links, and usually the SSH session,
up while the change is applied.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import shlex
from dataclasses import dataclass, field

from .base import (
    NetworkAdapter,
    StaticConfigRequest,
    bare_ip,
    heredoc_write,
    render_script,
)

logger = logging.getLogger(__name__)

INTERFACES_FILE = "/etc/network/interfaces"

_STANZA_START = re.compile(
    r"^\s*(auto|iface|allow-hotplug|allow-auto|mapping|source|source-directory)\b"
)
_DEFAULT_PREFIX = 24


def _owns(line: str, interface: str) -> bool:
    """True if *line* opens a stanza for *interface* or one of its aliases."""
    pattern = rf"^\s*(auto|iface|allow-hotplug|allow-auto)\s+{re.escape(interface)}(:\S*)?(\s|$)"
    return re.match(pattern, line) is not None


def _is_trivia(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped.startswith("#")


def split_stanzas(content: str, interface: str) -> tuple[list[str], list[str]]:
    """Split file lines into (other lines, lines of *interface*'s stanzas).

    Comments and blank lines inside a stanza go with it. A run of them that
    ends at the next stanza header is only owned when both neighbouring
    stanzas are *interface*'s; otherwise it is kept, so a comment describing
    another interface survives a rewrite.
    """
    kept: list[str] = []
    owned: list[str] = []
    pending: list[str] = []
    owning = False
    for line in content.splitlines():
        if _is_trivia(line):
            pending.append(line)
            continue
        if _STANZA_START.match(line):
            starts_owned = _owns(line, interface)
            (owned if owning and starts_owned else kept).extend(pending)
            owning = starts_owned
        else:
            (owned if owning else kept).extend(pending)
        pending = []
        (owned if owning else kept).append(line)
    kept.extend(pending)
    return kept, owned


def alias_names(owned: list[str], interface: str) -> list[str]:
    names: list[str] = []
    for line in owned:
        match = re.match(rf"^\s*iface\s+({re.escape(interface)}:\S+)\s", line)
        if match and match.group(1) not in names:
            names.append(match.group(1))
    return names


def _netmask_prefix(netmask: str) -> int | None:
    try:
        return ipaddress.IPv4Network(f"0.0.0.0/{netmask}").prefixlen
    except ValueError:
        return None


@dataclass
class StanzaSettings:
    """Settings recovered from an interface's existing stanzas."""

    addresses: list[str] = field(default_factory=list)
    prefix: int = _DEFAULT_PREFIX
    gateway: str = ""
    dns: list[str] = field(default_factory=list)


def recover_settings(owned: list[str]) -> StanzaSettings:
    settings = StanzaSettings()
    prefix: int | None = None
    for line in owned:
        parts = line.split()
        if len(parts) < 2:
            continue
        key, value = parts[0], parts[1]
        if key == "address":
            ip, _, bits = value.partition("/")
            if ip not in settings.addresses:
                settings.addresses.append(ip)
            if prefix is None and bits.isdigit():
                prefix = int(bits)
        elif key == "netmask" and prefix is None:
            prefix = _netmask_prefix(value)
        elif key == "gateway" and not settings.gateway:
            settings.gateway = value
        elif key == "dns-nameservers" and not settings.dns:
            settings.dns = parts[1:]
    if prefix is not None:
        settings.prefix = prefix
    return settings


def render_block(request: StaticConfigRequest) -> str:
    iface = request.interface
    ips = request.all_addresses
    prefix = request.prefix
    gateway = request.gateway

    primary = [
        f"auto {iface}",
        f"iface {iface} inet static",
        f"    address {ips[0]}/{prefix}",
    ]
    # A gateway equal to the address makes ifup fail with RTNETLINK errors
    if gateway and gateway != ips[0]:
        primary.append(f"    gateway {gateway}")
        if int(prefix) == 32:
            primary.append(f"    post-up ip route add {gateway} dev {iface} scope link || true")
            primary.append(f"    post-up ip route add default via {gateway} dev {iface} || true")
    if request.dns:
        primary.append(f"    dns-nameservers {' '.join(request.dns)}")

    stanzas = ["\n".join(primary)]
    for index, ip in enumerate(ips[1:]):
        stanzas.append("\n".join([
            f"auto {iface}:{index}",
            f"iface {iface}:{index} inet static",
            f"    address {ip}/{prefix}",
        ]))
    return "\n\n".join(stanzas) + "\n"


def compose(kept: list[str], block: str) -> str:
    head = "\n".join(kept).strip()
    return f"{head}\n\n{block}" if head else block


class InterfacesAdapter(NetworkAdapter):
    name = "debian"

    async def _baseline(self) -> str:
        return await self._read(f"cat {INTERFACES_FILE}")

    def _script(self, content: str, interface: str, old_aliases: list[str], new_aliases: list[str]) -> str:
        commands = [heredoc_write(INTERFACES_FILE, content)]
        commands.extend(f"ifdown {shlex.quote(alias)} --force || true" for alias in reversed(old_aliases))
        commands.append(f"ifdown {shlex.quote(interface)} --force || true")
        commands.append(f"ifup {shlex.quote(interface)}")
        commands.extend(f"ifup {shlex.quote(alias)}" for alias in new_aliases)
        return render_script(commands)

    def _render_static(self, baseline: str, request: StaticConfigRequest) -> str:
        kept, owned = split_stanzas(baseline, request.interface)
        new_aliases = [f"{request.interface}:{i}" for i in range(len(request.all_addresses) - 1)]
        return self._script(
            compose(kept, render_block(request)),
            request.interface,
            alias_names(owned, request.interface),
            new_aliases,
        )

    async def render_apply(self, request: StaticConfigRequest) -> str:
        return self._render_static(await self._baseline(), request)

    async def render_remove(self, interface: str, addresses: list[str]) -> str | None:
        baseline = await self._baseline()
        _, owned = split_stanzas(baseline, interface)
        settings = recover_settings(owned)

        drop = {bare_ip(a) for a in addresses}
        remaining = [a for a in settings.addresses if a not in drop]
        if len(remaining) == len(settings.addresses):
            return ""
        if not remaining:
            return None

        request = StaticConfigRequest(
            interface=interface,
            address=remaining[0],
            addresses=remaining,
            prefix=settings.prefix,
            gateway=settings.gateway or None,
            dns=settings.dns,
        )
        return self._render_static(baseline, request)

    async def render_clear(self, interface: str) -> str:
        kept, owned = split_stanzas(await self._baseline(), interface)
        block = f"auto {interface}\niface {interface} inet dhcp\n"
        return self._script(compose(kept, block), interface, alias_names(owned, interface), [])
