"""asyncssh transport used by :class:`~hostnet.ssh.session.SessionManager`.

The session manager only depends on the small surface asyncssh exposes on a
client connection (``create_process`` and ``close``), so tests swap the
connector for an in-memory fake.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

import asyncssh

logger = logging.getLogger(__name__)


@dataclass
class Credentials:
    """Login material for one host: a username plus a password or a private key."""

    username: str
    password: str | None = None
    private_key: str | None = None  # PEM/OpenSSH key text, not a path
    passphrase: str | None = None

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r})"


class RemoteProcess(Protocol):
    """What the session manager needs from an asyncssh process."""

    stdin: Any
    stdout: Any
    stderr: Any
    returncode: int | None

    async def wait(self) -> Any:
        ...

    def close(self) -> None:
        ...


class TransportConnection(Protocol):
    """What the session manager needs from an asyncssh client connection."""

    async def create_process(self, command: str | None = None, **kwargs: Any) -> RemoteProcess:
        ...

    def close(self) -> None:
        ...


LostCallback = Callable[[Exception | None], None]
Connector = Callable[..., Awaitable[TransportConnection]]


class _LifecycleClient(asyncssh.SSHClient):
    """Forwards transport termination to the session manager."""

    def __init__(self, on_lost: LostCallback) -> None:
        self._on_lost = on_lost

    def connection_lost(self, exc: Exception | None) -> None:
        self._on_lost(exc)


async def asyncssh_connector(
    host: str,
    port: int,
    credentials: Credentials,
    *,
    timeout: float,
    on_lost: LostCallback,
) -> asyncssh.SSHClientConnection:
    """Open an asyncssh connection; *on_lost* fires once when it terminates."""
    kwargs: dict[str, Any] = {
        "host": host,
        "port": port,
        "username": credentials.username,
        "known_hosts": None,  # hosts are added by address, no pinned keys
        "connect_timeout": timeout,
        "client_factory": lambda: _LifecycleClient(on_lost),
    }
    if credentials.private_key:
        kwargs["client_keys"] = [
            asyncssh.import_private_key(credentials.private_key, credentials.passphrase)
        ]
    else:
        kwargs["client_keys"] = None
    if credentials.password:
        kwargs["password"] = credentials.password

    logger.debug("Opening SSH connection to %s@%s:%d", credentials.username, host, port)
    return await asyncssh.connect(**kwargs)
