"""Adapter selection for hostnet.

Usage::

    from hostnet.adapters import from_os_release, from_name
    adapter = from_os_release(await ssh.os_fingerprint(host_id), ssh, host_id)
    adapter = from_name("debian", None, None)   # unbound, dry-run only
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import NetworkAdapter, RemoteCommandFailed, StaticConfigRequest
from .interfaces import InterfacesAdapter
from .iproute import IPRouteAdapter
from .netplan import NetplanAdapter
from .nmcli import NetworkManagerAdapter

if TYPE_CHECKING:
    from hostnet.ssh.session import SessionManager

__all__ = [
    "ADAPTER_MAP",
    "IPRouteAdapter",
    "InterfacesAdapter",
    "NetplanAdapter",
    "NetworkAdapter",
    "NetworkManagerAdapter",
    "RemoteCommandFailed",
    "StaticConfigRequest",
    "from_name",
    "from_os_release",
]

ADAPTER_MAP: dict[str, type[NetworkAdapter]] = {
    "centos": NetworkManagerAdapter,
    "ubuntu": NetplanAdapter,
    "debian": InterfacesAdapter,
    "generic": IPRouteAdapter,
}

# Checked in order: Ubuntu's os-release also mentions debian (ID_LIKE)
_FINGERPRINTS: list[tuple[tuple[str, ...], type[NetworkAdapter]]] = [
    (("ubuntu",), NetplanAdapter),
    (("debian",), InterfacesAdapter),
    (("centos", "rhel", "almalinux", "rocky"), NetworkManagerAdapter),
]


def from_name(
    name: str | None,
    session: SessionManager | None = None,
    host_id: str | None = None,
) -> NetworkAdapter:
    """Adapter registered under *name*; unknown names get the iproute2 adapter."""
    cls = ADAPTER_MAP.get((name or "").strip().lower(), IPRouteAdapter)
    return cls(session, host_id)


def from_os_release(
    os_release: str | None,
    session: SessionManager | None = None,
    host_id: str | None = None,
) -> NetworkAdapter:
    """Adapter matching an ``/etc/os-release`` blob (case-insensitive substring test)."""
    lower = (os_release or "").lower()
    for tokens, cls in _FINGERPRINTS:
        if any(token in lower for token in tokens):
            return cls(session, host_id)
    return IPRouteAdapter(session, host_id)
