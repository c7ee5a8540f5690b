"""SSH session layer: transport, command execution, shells and parsers."""

from __future__ import annotations

from .parsing import AddressRecord
from .session import (
    ExecResult,
    HostConnectionError,
    NotConnectedError,
    SessionError,
    SessionManager,
    ShellNotEstablishedError,
)
from .transport import Credentials, asyncssh_connector

__all__ = [
    "AddressRecord",
    "Credentials",
    "ExecResult",
    "HostConnectionError",
    "NotConnectedError",
    "SessionError",
    "SessionManager",
    "ShellNotEstablishedError",
    "asyncssh_connector",
]
