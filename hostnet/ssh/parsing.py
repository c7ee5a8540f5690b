"""Best-effort parsers for iproute2 introspection output.

Every parser returns a (possibly empty) structured result and never raises:
lines that do not match the expected shape are logged at debug level and
skipped, so an unexpected remote output format degrades the result instead of
failing the caller.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

logger = logging.getLogger(__name__)

ADDRESS_FAMILIES = ("inet", "inet6")


@dataclass
class AddressRecord:
    """One address currently configured on a host interface."""

    interface: str
    family: str  # "inet" or "inet6"
    address: str  # CIDR form, e.g. "10.0.0.5/24"
    scope: str  # "static" or "dynamic"

    @property
    def ip(self) -> str:
        return self.address.split("/", 1)[0]

    def to_dict(self) -> dict:
        return asdict(self)


def _lines(text: str | None) -> list[str]:
    return [line for line in (text or "").strip().splitlines() if line.strip()]


def parse_addresses(text: str | None) -> list[AddressRecord]:
    """Parse ``ip -o addr show``.

    Example line::

        2: eth0    inet 10.0.0.5/24 brd 10.0.0.255 scope global dynamic eth0\\  valid_lft ...
    """
    records: list[AddressRecord] = []
    for line in _lines(text):
        parts = line.split()
        if len(parts) < 4 or parts[2] not in ADDRESS_FAMILIES:
            logger.debug("Skipping unparsable address line: %r", line)
            continue
        records.append(AddressRecord(
            interface=parts[1].split("@", 1)[0],
            family=parts[2],
            address=parts[3],
            scope="dynamic" if "dynamic" in parts else "static",
        ))
    return records


def parse_interfaces(text: str | None) -> list[str]:
    """Parse ``ip -o link show`` into interface names (``eth0@if5`` → ``eth0``)."""
    names: list[str] = []
    for line in _lines(text):
        parts = line.split(":")
        if len(parts) < 2 or not parts[1].strip():
            logger.debug("Skipping unparsable link line: %r", line)
            continue
        names.append(parts[1].strip().split("@", 1)[0])
    return names


def parse_default_routes(text: str | None) -> dict[str, str]:
    """Parse ``ip route show default`` into ``{interface: gateway}``.

    Example::

        default via 192.168.1.1 dev eth0 proto dhcp src 192.168.1.5 metric 100
    """
    gateways: dict[str, str] = {}
    for line in _lines(text):
        parts = line.split()
        try:
            gateway = parts[parts.index("via") + 1]
            iface = parts[parts.index("dev") + 1]
        except (ValueError, IndexError):
            logger.debug("Skipping route without via/dev: %r", line)
            continue
        gateways[iface] = gateway
    return gateways
