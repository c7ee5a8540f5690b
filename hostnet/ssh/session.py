"""Remote session manager.

Owns, per host identifier:
  - exactly one SSH connection
  - at most one interactive shell
  - at most one terminal sink, a callable receiving raw text chunks

Command output (when echoed) and shell output share the host's terminal sink,
so whoever watches the terminal sees both in arrival order.

Transport termination (remote close, network loss) purges the host's shell,
sink and connection and notifies lifecycle subscribers with ``"close"``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Callable

import asyncssh

from hostnet.ssh.parsing import (
    AddressRecord,
    parse_addresses,
    parse_default_routes,
    parse_interfaces,
)
from hostnet.ssh.transport import (
    Connector,
    Credentials,
    RemoteProcess,
    TransportConnection,
    asyncssh_connector,
)

logger = logging.getLogger(__name__)

_CONNECT_TIMEOUT = float(os.environ.get("HOSTNET_CONNECT_TIMEOUT", "10"))
_READ_CHUNK = 4096

_YELLOW = "\x1b[33m"
_RED = "\x1b[31m"
_RESET = "\x1b[0m"

OS_RELEASE_COMMAND = "cat /etc/os-release"
ADDRESSES_COMMAND = "ip -o addr show"
LINKS_COMMAND = "ip -o link show"
DEFAULT_ROUTES_COMMAND = "ip route show default"

EVENT_READY = "ready"
EVENT_CLOSE = "close"

TerminalSink = Callable[[str], None]
EventCallback = Callable[[str, str], None]


class SessionError(Exception):
    """Base class for session manager errors."""


class HostConnectionError(SessionError, ConnectionError):
    """Raised when a host cannot be reached or refuses authentication."""


class NotConnectedError(SessionError):
    """Raised when an operation needs a connection that does not exist."""


class ShellNotEstablishedError(SessionError):
    """Raised when writing to a host that has no open shell."""


@dataclass
class ExecResult:
    code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.code == 0


class ShellHandle:
    """An open interactive shell on one host."""

    def __init__(
        self,
        host_id: str,
        process: RemoteProcess,
        on_data: Callable[[str], None] | None,
        on_close: Callable[[], None] | None,
    ) -> None:
        self.host_id = host_id
        self.process = process
        self.on_data = on_data
        self.on_close = on_close
        self.closed = False
        self._reader: asyncio.Task | None = None

    def write(self, data: str) -> None:
        self.process.stdin.write(data)

    def close(self) -> None:
        self.process.close()


class SessionManager:
    """Per-host SSH connections, command execution and interactive shells."""

    def __init__(
        self,
        connector: Connector = asyncssh_connector,
        connect_timeout: float = _CONNECT_TIMEOUT,
    ) -> None:
        self._connector = connector
        self._connect_timeout = connect_timeout
        self._connections: dict[str, TransportConnection] = {}
        self._shells: dict[str, ShellHandle] = {}
        self._sinks: dict[str, TerminalSink] = {}
        self._connect_locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[EventCallback] = []

    # ── Lifecycle ──────────────────────────────────────────────────

    def on_event(self, callback: EventCallback) -> None:
        """Subscribe to lifecycle events, called as ``callback(event, host_id)``."""
        self._listeners.append(callback)

    def is_connected(self, host_id: str) -> bool:
        return host_id in self._connections

    def has_shell(self, host_id: str) -> bool:
        return host_id in self._shells

    def connected_hosts(self) -> list[str]:
        return list(self._connections)

    async def connect(
        self,
        host_id: str,
        host: str,
        credentials: Credentials,
        port: int = 22,
    ) -> TransportConnection:
        """Connect *host_id*; returns the existing connection if already connected."""
        existing = self._connections.get(host_id)
        if existing is not None:
            return existing

        lock = self._connect_locks.setdefault(host_id, asyncio.Lock())
        try:
            async with lock:
                existing = self._connections.get(host_id)
                if existing is not None:
                    return existing

                opened: list[TransportConnection] = []

                def on_lost(exc: Exception | None) -> None:
                    if opened:
                        self._on_transport_lost(host_id, opened[0], exc)

                try:
                    conn = await asyncio.wait_for(
                        self._connector(
                            host, port, credentials,
                            timeout=self._connect_timeout,
                            on_lost=on_lost,
                        ),
                        timeout=self._connect_timeout,
                    )
                except asyncio.TimeoutError as e:
                    raise HostConnectionError(
                        f"Timed out connecting to {host_id} ({host}:{port}) "
                        f"after {self._connect_timeout:.0f}s"
                    ) from e
                except (asyncssh.Error, OSError) as e:
                    raise HostConnectionError(
                        f"SSH connection to {host_id} ({host}:{port}) failed: {e}"
                    ) from e

                opened.append(conn)
                self._connections[host_id] = conn
        except HostConnectionError:
            self._forget_lock(host_id, lock)
            raise

        logger.info("Connected to %s (%s@%s:%d)", host_id, credentials.username, host, port)
        self._emit(EVENT_READY, host_id)
        return conn

    def close(self, host_id: str) -> None:
        """End the shell and connection for *host_id*. Unknown hosts are a no-op."""
        shell = self._shells.pop(host_id, None)
        if shell is not None:
            shell.close()
        self._sinks.pop(host_id, None)
        self._forget_lock(host_id)
        conn = self._connections.pop(host_id, None)
        if conn is None:
            return
        conn.close()
        logger.info("Closed session for %s", host_id)
        self._emit(EVENT_CLOSE, host_id)

    def close_all(self) -> None:
        for host_id in list(self._connections):
            self.close(host_id)

    def _on_transport_lost(
        self, host_id: str, conn: TransportConnection, exc: Exception | None
    ) -> None:
        # Local close() already removed the entry
        if self._connections.get(host_id) is not conn:
            return
        del self._connections[host_id]
        self._sinks.pop(host_id, None)
        self._forget_lock(host_id)
        shell = self._shells.pop(host_id, None)
        if shell is not None:
            shell.close()
        if exc is not None:
            logger.warning("Connection to %s lost: %s", host_id, exc)
        else:
            logger.info("Connection to %s ended by remote", host_id)
        self._emit(EVENT_CLOSE, host_id)

    def _forget_lock(self, host_id: str, lock: asyncio.Lock | None = None) -> None:
        # A held lock still guards a connect in progress
        current = self._connect_locks.get(host_id)
        if current is None or current.locked():
            return
        if lock is None or current is lock:
            del self._connect_locks[host_id]

    def _emit(self, event: str, host_id: str) -> None:
        for callback in list(self._listeners):
            try:
                callback(event, host_id)
            except Exception:
                logger.exception("Lifecycle listener failed for %s (%s)", host_id, event)

    def _require_connection(self, host_id: str) -> TransportConnection:
        conn = self._connections.get(host_id)
        if conn is None:
            raise NotConnectedError(f"No SSH connection for host: {host_id}")
        return conn

    # ── Terminal output ────────────────────────────────────────────

    def register_terminal_output(self, host_id: str, sink: TerminalSink) -> None:
        """Route echoed command output and shell output for *host_id* to *sink*."""
        self._sinks[host_id] = sink

    def unregister_terminal_output(self, host_id: str) -> None:
        self._sinks.pop(host_id, None)

    def _terminal_write(self, host_id: str, text: str) -> None:
        sink = self._sinks.get(host_id)
        if sink is None:
            return
        try:
            sink(text)
        except Exception:
            logger.exception("Terminal sink failed for %s", host_id)

    # ── Command execution ──────────────────────────────────────────

    async def exec(self, host_id: str, command: str, echo: bool = True) -> ExecResult:
        """Run *command* and wait for it to finish.

        With *echo*, the command line, its stdout/stderr chunks (as they
        arrive) and an exit summary are written to the host's terminal sink.
        A non-zero exit is reported in the result, never raised.
        """
        conn = self._require_connection(host_id)
        if echo:
            self._terminal_write(host_id, f"\r\n{_YELLOW}$ {command}{_RESET}\r\n")
        logger.debug("[%s] exec: %s", host_id, command)

        try:
            process = await conn.create_process(command, encoding="utf-8", errors="replace")
        except (asyncssh.Error, OSError) as e:
            if echo:
                self._terminal_write(host_id, f"\r\n{_RED}[exec error] {e}{_RESET}\r\n")
            raise SessionError(f"Could not start command on {host_id}: {e}") from e

        stdout: list[str] = []
        stderr: list[str] = []
        try:
            await asyncio.gather(
                self._pump(host_id, process.stdout, stdout, echo, None),
                self._pump(host_id, process.stderr, stderr, echo, _RED),
            )
            await process.wait()
        except (asyncssh.Error, OSError) as e:
            raise SessionError(f"Command on {host_id} was interrupted: {e}") from e

        code = process.returncode if process.returncode is not None else -1
        result = ExecResult(code=code, stdout="".join(stdout), stderr="".join(stderr))

        if echo:
            if code != 0:
                self._terminal_write(host_id, f"\r\n{_RED}[exit code: {code}]{_RESET}\r\n")
            elif result.stdout or result.stderr:
                self._terminal_write(host_id, "\r\n")
        return result

    async def _pump(
        self,
        host_id: str,
        stream,
        parts: list[str],
        echo: bool,
        color: str | None,
    ) -> None:
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return
            parts.append(chunk)
            if echo:
                self._terminal_write(host_id, f"{color}{chunk}{_RESET}" if color else chunk)

    # ── Interactive shell ──────────────────────────────────────────

    async def start_shell(
        self,
        host_id: str,
        on_data: Callable[[str], None] | None = None,
        on_close: Callable[[], None] | None = None,
        term_type: str = "xterm",
    ) -> ShellHandle:
        """Open the host's interactive shell, or return the one already open.

        Inbound chunks go to *on_data*, or to the terminal sink when no
        *on_data* is given. *on_close* fires exactly once when the shell ends.
        """
        shell = self._shells.get(host_id)
        if shell is not None:
            return shell

        conn = self._require_connection(host_id)
        try:
            process = await conn.create_process(term_type=term_type, encoding="utf-8", errors="replace")
        except (asyncssh.Error, OSError) as e:
            raise SessionError(f"Could not open shell on {host_id}: {e}") from e

        # Another caller may have opened one while we were waiting
        shell = self._shells.get(host_id)
        if shell is not None:
            process.close()
            return shell

        shell = ShellHandle(host_id, process, on_data, on_close)
        self._shells[host_id] = shell
        shell._reader = asyncio.create_task(self._read_shell(shell))
        logger.info("Shell opened on %s", host_id)
        return shell

    def write_shell(self, host_id: str, data: str) -> None:
        shell = self._shells.get(host_id)
        if shell is None:
            raise ShellNotEstablishedError(f"No shell established for host: {host_id}")
        shell.write(data)

    async def _read_shell(self, shell: ShellHandle) -> None:
        try:
            while True:
                chunk = await shell.process.stdout.read(_READ_CHUNK)
                if not chunk:
                    break
                if shell.on_data is not None:
                    try:
                        shell.on_data(chunk)
                    except Exception:
                        logger.exception("Shell data callback failed for %s", shell.host_id)
                else:
                    self._terminal_write(shell.host_id, chunk)
        except (asyncssh.Error, OSError) as e:
            logger.debug("Shell on %s ended with error: %s", shell.host_id, e)
        finally:
            self._shell_closed(shell)

    def _shell_closed(self, shell: ShellHandle) -> None:
        if self._shells.get(shell.host_id) is shell:
            del self._shells[shell.host_id]
        if shell.closed:
            return
        shell.closed = True
        logger.info("Shell closed on %s", shell.host_id)
        if shell.on_close is not None:
            try:
                shell.on_close()
            except Exception:
                logger.exception("Shell close callback failed for %s", shell.host_id)

    # ── Introspection ──────────────────────────────────────────────

    async def os_fingerprint(self, host_id: str) -> str:
        """Raw ``/etc/os-release`` text (empty when unreadable)."""
        result = await self.exec(host_id, OS_RELEASE_COMMAND, echo=False)
        return result.stdout

    async def current_addresses(self, host_id: str) -> list[AddressRecord]:
        result = await self.exec(host_id, ADDRESSES_COMMAND, echo=False)
        return parse_addresses(result.stdout)

    async def list_interfaces(self, host_id: str) -> list[str]:
        result = await self.exec(host_id, LINKS_COMMAND, echo=False)
        return parse_interfaces(result.stdout)

    async def current_routes(self, host_id: str) -> dict[str, str]:
        """Default gateway per interface."""
        result = await self.exec(host_id, DEFAULT_ROUTES_COMMAND, echo=False)
        return parse_default_routes(result.stdout)
