"""Address planner — turns a CIDR or range expression into candidate addresses.

Accepted input:
  - CIDR:  112.121.163.154/29
  - Range: 112.121.163.154-158  or  112.121.163.154-112.121.163.158

The first address of the expansion is treated as the gateway and the rest as
assignable hosts. Pure functions, no I/O.
"""

from __future__ import annotations

import ipaddress
import os
from dataclasses import asdict, dataclass, field

_MAX_HOSTS = int(os.environ.get("HOSTNET_MAX_PLAN_HOSTS", "65536"))


@dataclass
class AddressPlan:
    mode: str  # "cidr" or "range"
    source: str
    gateway: str
    hosts: list[str] = field(default_factory=list)
    prefix: int | None = None
    network: str | None = None
    broadcast: str | None = None
    netmask: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def parse_ip_input(text: str | None) -> AddressPlan:
    trimmed = (text or "").strip()
    if not trimmed:
        raise ValueError("Address input must not be empty")
    if "/" in trimmed:
        return parse_cidr(trimmed)
    if "-" in trimmed:
        return parse_range(trimmed)
    raise ValueError(f"Unsupported address format (use CIDR or a range): {trimmed}")


def _split_gateway(addresses: list[str]) -> tuple[str, list[str]]:
    # A single address is both the gateway and the only host
    gateway = addresses[0]
    return gateway, addresses[1:] or [gateway]


def parse_cidr(cidr: str) -> AddressPlan:
    try:
        network = ipaddress.IPv4Network(cidr.strip(), strict=False)
    except ValueError as e:
        raise ValueError(f"Invalid CIDR {cidr!r}: {e}") from e
    if network.num_addresses > _MAX_HOSTS:
        raise ValueError(f"{cidr} expands to more than {_MAX_HOSTS} addresses")

    usable = [str(a) for a in network.hosts()]
    if not usable:
        raise ValueError(f"No usable host addresses in {cidr}")
    gateway, hosts = _split_gateway(usable)
    return AddressPlan(
        mode="cidr",
        source=cidr,
        gateway=gateway,
        hosts=hosts,
        prefix=network.prefixlen,
        network=str(network.network_address),
        broadcast=str(network.broadcast_address),
        netmask=str(network.netmask),
    )


def parse_range(text: str) -> AddressPlan:
    raw_start, _, raw_end = (s.strip() for s in text.partition("-"))
    if not raw_end:
        raise ValueError("Range must look like start-end")
    if "." not in raw_end:
        # 10.0.0.5-9 shorthand: reuse the first three octets
        raw_end = ".".join(raw_start.split(".")[:3] + [raw_end])

    try:
        start = ipaddress.IPv4Address(raw_start)
        end = ipaddress.IPv4Address(raw_end)
    except ValueError as e:
        raise ValueError(f"Invalid range {text!r}: {e}") from e
    if end < start:
        raise ValueError("Range end must not be lower than its start")
    count = int(end) - int(start) + 1
    if count > _MAX_HOSTS:
        raise ValueError(f"{text} expands to more than {_MAX_HOSTS} addresses")

    gateway, hosts = _split_gateway([str(start + i) for i in range(count)])
    return AddressPlan(mode="range", source=text, gateway=gateway, hosts=hosts)


def implied_gateway(address: str) -> str:
    """The address right below *address*.

    Heuristic used when no gateway is supplied; it is not checked against
    the subnet.
    """
    return str(ipaddress.IPv4Address(address.split("/", 1)[0]) - 1)
