"""Shared contract for OS-specific network adapters.

An adapter turns a desired static-IP state into ONE remote shell script and
runs it through the session manager. Each variant only has to render scripts;
this base class decides whether to return the script (dry-run) or execute it
and read back the host's addresses.

Scripts start with ``set -e`` so a failing step aborts the rest, and are sent
as a single ``exec`` because separate calls on one connection are not ordered.
"""

from __future__ import annotations

import abc
import ipaddress
import logging
import re
import shlex
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from hostnet.ssh.session import ExecResult, NotConnectedError

if TYPE_CHECKING:
    from hostnet.ssh.parsing import AddressRecord
    from hostnet.ssh.session import SessionManager

logger = logging.getLogger(__name__)

HEREDOC_MARKER = "HOSTNET_EOF"

# Kernel names are at most 15 bytes; ':' allows ifupdown aliases, '@' veth peers
_INTERFACE_NAME = re.compile(r"^[A-Za-z0-9_.:@-]{1,15}$")


class RemoteCommandFailed(Exception):
    """Raised when a mutating remote script exits non-zero."""

    def __init__(self, action: str, exit_code: int, stderr: str, command: str = "") -> None:
        self.action = action
        self.exit_code = exit_code
        self.stderr = stderr
        self.command = command
        super().__init__(f"{action} failed (exit code {exit_code}): {stderr.strip()}")


@dataclass
class StaticConfigRequest:
    """Desired static configuration for one interface."""

    interface: str
    address: str
    addresses: list[str] = field(default_factory=list)  # includes `address`
    prefix: int | None = None
    gateway: str | None = None
    dns: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def all_addresses(self) -> list[str]:
        """Bare addresses to configure, target address first."""
        target = bare_ip(self.address) if self.address else ""
        ips = [bare_ip(a) for a in self.addresses if a]
        if target and target not in ips:
            ips.insert(0, target)
        return ips

    def validate(self) -> None:
        if not self.interface:
            raise ValueError("Interface name is required")
        check_interface(self.interface)
        if self.prefix is None:
            raise ValueError("Prefix length is required")
        if not 0 <= int(self.prefix) <= 32:
            raise ValueError(f"Prefix length out of range: {self.prefix}")
        if not self.all_addresses:
            raise ValueError("At least one address is required")
        for ip in self.all_addresses:
            check_ipv4(ip, "address")
        if self.gateway:
            check_ipv4(self.gateway, "gateway")
        for server in self.dns:
            try:
                ipaddress.ip_address(server.strip())
            except ValueError:
                raise ValueError(f"Invalid DNS server: {server!r}") from None


def check_interface(name: str) -> str:
    """Reject anything that is not a plain kernel interface name."""
    if not name or not _INTERFACE_NAME.match(name):
        raise ValueError(f"Invalid interface name: {name!r}")
    return name


def check_ipv4(value: str, what: str = "address") -> str:
    try:
        ipaddress.IPv4Address(value.strip())
    except ValueError:
        raise ValueError(f"Invalid {what}: {value!r}") from None
    return value


def check_removal_targets(addresses: list[str]) -> None:
    """Removal targets may be bare (``10.0.0.5``) or CIDR (``10.0.0.5/24``)."""
    for address in addresses:
        try:
            interface = ipaddress.ip_interface(address.strip())
        except ValueError:
            raise ValueError(f"Invalid address: {address!r}") from None
        if interface.version != 4:
            raise ValueError(f"Invalid address: {address!r}")


def bare_ip(address: str) -> str:
    return address.split("/", 1)[0].strip()


def matches_any(entry: str, targets: list[str]) -> bool:
    """True if CIDR *entry* is named in *targets*.

    A target with a suffix must match exactly; a bare target matches any
    entry with the same address part.
    """
    for target in targets:
        target = target.strip()
        if "/" in target:
            if entry == target:
                return True
        elif bare_ip(entry) == target:
            return True
    return False


def render_script(commands: list[str]) -> str:
    return "\n".join(["set -e", *commands]) + "\n"


def heredoc_write(path: str, content: str) -> str:
    """Shell command that replaces *path* with *content* verbatim."""
    if not content.endswith("\n"):
        content += "\n"
    return f"cat <<'{HEREDOC_MARKER}' > {shlex.quote(path)}\n{content}{HEREDOC_MARKER}"


class NetworkAdapter(abc.ABC):
    """Realizes static IP configuration on one host through the session manager.

    An adapter created without a session (``session=None``) can still render
    dry-run scripts; it skips remote reads and assumes an empty baseline.
    """

    name: str = ""

    def __init__(self, session: SessionManager | None = None, host_id: str | None = None) -> None:
        self.session = session
        self.host_id = host_id

    @property
    def bound(self) -> bool:
        return self.session is not None and self.host_id is not None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(host_id={self.host_id!r})"

    # ── Public operations ──────────────────────────────────────────

    async def apply_static_config(self, request: StaticConfigRequest) -> list[AddressRecord] | str:
        """Apply *request*; returns the rendered script when ``request.dry_run``."""
        request.validate()
        script = await self.render_apply(request)
        if request.dry_run:
            return script
        await self._run_mutation(script, f"Applying static config on {request.interface}")
        logger.info(
            "Applied %s/%s on %s:%s via %s",
            ", ".join(request.all_addresses), request.prefix,
            self.host_id, request.interface, self.name,
        )
        return await self.current_ips()

    async def remove_ips(
        self, interface: str, addresses: list[str], dry_run: bool = False
    ) -> list[AddressRecord] | str:
        """Remove exactly *addresses* (bare or CIDR) from *interface*.

        Falls back to :meth:`clear_ips` when nothing would remain.
        """
        check_interface(interface)
        check_removal_targets(addresses)
        script = await self.render_remove(interface, addresses)
        if script is None:
            logger.info("Removal empties %s on %s, switching to DHCP", interface, self.host_id)
            return await self.clear_ips(interface, dry_run=dry_run)
        if not script:
            logger.info("None of %s configured on %s:%s", addresses, self.host_id, interface)
            return script if dry_run else await self.current_ips()
        if dry_run:
            return script
        await self._run_mutation(script, f"Removing addresses from {interface}")
        return await self.current_ips()

    async def clear_ips(self, interface: str, dry_run: bool = False) -> list[AddressRecord] | str:
        """Return *interface* to DHCP. Remote failures are logged, not raised."""
        check_interface(interface)
        script = await self.render_clear(interface)
        if dry_run:
            return script
        result = await self._exec(script)
        if not result.ok:
            logger.warning(
                "Clearing %s on %s exited %d: %s",
                interface, self.host_id, result.code, result.stderr.strip(),
            )
        return await self.current_ips()

    async def current_ips(self) -> list[AddressRecord]:
        return await self._session().current_addresses(self.host_id)

    # ── Variant hooks ──────────────────────────────────────────────

    @abc.abstractmethod
    async def render_apply(self, request: StaticConfigRequest) -> str:
        """Script that applies *request*."""
        raise NotImplementedError

    @abc.abstractmethod
    async def render_remove(self, interface: str, addresses: list[str]) -> str | None:
        """Script that removes *addresses*.

        Returns ``None`` when the removal would leave the interface without
        addresses, and ``""`` when none of them is configured.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def render_clear(self, interface: str) -> str:
        """Script that returns *interface* to DHCP."""
        raise NotImplementedError

    # ── Remote helpers ─────────────────────────────────────────────

    def _session(self) -> SessionManager:
        if not self.bound:
            raise NotConnectedError(f"{type(self).__name__} is not bound to a host")
        return self.session

    async def _exec(self, command: str, echo: bool = True) -> ExecResult:
        return await self._session().exec(self.host_id, command, echo)

    async def _read(self, command: str) -> str:
        """Output of a read-only command; empty when unbound or on failure."""
        if not self.bound:
            return ""
        result = await self._exec(command, echo=False)
        if not result.ok:
            logger.debug("Read %r on %s exited %d", command, self.host_id, result.code)
            return ""
        return result.stdout

    async def _run_mutation(self, script: str, action: str) -> ExecResult:
        result = await self._exec(script)
        if not result.ok:
            raise RemoteCommandFailed(action, result.code, result.stderr, script)
        return result
