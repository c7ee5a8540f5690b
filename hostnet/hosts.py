"""In-memory host registry used by the HTTP layer.

Maps a host id to its connection metadata and its selected adapter. Nothing
is persisted and credentials are never kept: after a restart hosts must be
added (and connected) again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from hostnet.adapters import NetworkAdapter, from_name, from_os_release
from hostnet.ssh.session import EVENT_CLOSE, SessionManager

logger = logging.getLogger(__name__)


@dataclass
class HostRecord:
    id: str
    host: str
    port: int
    username: str
    os_release: str = ""
    manual_mode: str | None = None
    adapter: NetworkAdapter | None = field(default=None, repr=False)

    @property
    def adapter_name(self) -> str | None:
        return type(self.adapter).__name__ if self.adapter else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "os_release": self.os_release,
            "adapter": self.adapter_name,
            "manual_mode": self.manual_mode,
        }


class HostRegistry:
    """Known hosts keyed by id, each bound to the shared session manager."""

    def __init__(self, session: SessionManager) -> None:
        self.session = session
        self._hosts: dict[str, HostRecord] = {}
        session.on_event(self._on_session_event)

    def __contains__(self, host_id: str) -> bool:
        return host_id in self._hosts

    def add(self, record: HostRecord) -> HostRecord:
        self._hosts[record.id] = record
        return record

    def get(self, host_id: str) -> HostRecord | None:
        return self._hosts.get(host_id)

    def remove(self, host_id: str) -> HostRecord | None:
        return self._hosts.pop(host_id, None)

    def list(self) -> list[HostRecord]:
        return list(self._hosts.values())

    async def ensure_adapter(self, host_id: str, manual_mode: str | None = None) -> NetworkAdapter:
        """Adapter for *host_id*.

        An explicit *manual_mode* replaces the current adapter and sticks for
        later calls. Otherwise the cached adapter is reused, or one is picked
        from the host's OS fingerprint.
        """
        record = self._hosts.get(host_id)
        if record is None:
            raise KeyError(host_id)

        if manual_mode:
            record.manual_mode = manual_mode
            record.adapter = None
        if record.adapter is not None:
            return record.adapter

        if record.manual_mode:
            record.adapter = from_name(record.manual_mode, self.session, host_id)
        else:
            record.os_release = await self.session.os_fingerprint(host_id)
            record.adapter = from_os_release(record.os_release, self.session, host_id)
        logger.info("Host %s uses %s", host_id, record.adapter_name)
        return record.adapter

    def _on_session_event(self, event: str, host_id: str) -> None:
        # Adapters are tied to a live session; reselect after a reconnect
        if event == EVENT_CLOSE and host_id in self._hosts:
            self._hosts[host_id].adapter = None
