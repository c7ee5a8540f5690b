"""hostnet HTTP/websocket server.

Exposes:
  GET    /api/health
  GET    /api/hosts                       — registered hosts
  POST   /api/hosts                       — connect and register a host
  GET    /api/hosts/{id}/ips              — current addresses + default gateways
  POST   /api/ip-calc                     — expand a CIDR/range expression
  POST   /api/dry-run-generate            — render a script without a host
  POST   /api/hosts/{id}/apply-ip         — apply (or dry-run) static config
  DELETE /api/hosts/{id}/ips/{iface}      — remove addresses or clear to DHCP
  POST   /api/hosts/{id}/ping             — source-bound reachability check
  POST   /api/hosts/{id}/logout           — close the session
  WS     /ws/hosts/{id}/terminal          — interactive shell + command echo

Start with::

    python -m hostnet.server
    # or
    uvicorn hostnet.server:app --host 0.0.0.0 --port 3000
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shlex
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from hostnet import __version__
from hostnet.adapters import RemoteCommandFailed, StaticConfigRequest, from_name
from hostnet.hosts import HostRecord, HostRegistry
from hostnet.planner import implied_gateway, parse_ip_input
from hostnet.ssh.session import SessionError, SessionManager
from hostnet.ssh.transport import Credentials

logger = logging.getLogger(__name__)

_session: SessionManager | None = None
_registry: HostRegistry | None = None
_terminals: dict[str, set[TerminalViewer]] = {}


def _get_session() -> SessionManager:
    global _session
    if _session is None:
        _session = SessionManager()
    return _session


def _get_registry() -> HostRegistry:
    global _registry
    if _registry is None:
        _registry = HostRegistry(_get_session())
    return _registry


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    if _session is not None:
        _session.close_all()


app = FastAPI(title="hostnet", version=__version__, lifespan=_lifespan)


@app.exception_handler(ValueError)
async def _bad_request(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(SessionError)
async def _session_failed(request: Request, exc: SessionError):
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(RemoteCommandFailed)
async def _remote_failed(request: Request, exc: RemoteCommandFailed):
    return JSONResponse(
        status_code=502,
        content={"detail": str(exc), "exit_code": exc.exit_code, "stderr": exc.stderr},
    )


# ──────────────────────────────────────────────────────────────────
# Request models
# ──────────────────────────────────────────────────────────────────

class AddHostRequest(BaseModel):
    id: str | None = None
    host: str
    port: int = 22
    username: str
    password: str | None = None
    private_key: str | None = None
    manual_mode: str | None = None


class IpCalcRequest(BaseModel):
    input: str


class StaticConfigBody(BaseModel):
    input: str | None = None
    addresses: list[str] | None = None
    iface: str = "eth0"
    prefix: int | None = Field(default=None, ge=0, le=32)
    gateway: str | None = None
    dns: list[str] = Field(default_factory=list)
    manual_mode: str | None = None
    apply_all: bool = False
    dry_run: bool = False


class RemoveRequest(BaseModel):
    addresses: list[str] = Field(default_factory=list)


class PingRequest(BaseModel):
    ip: str
    target: str = "8.8.8.8"


# ──────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────

def _require_host(host_id: str) -> HostRecord:
    record = _get_registry().get(host_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Host not found: {host_id}")
    return record


async def _build_request(
    body: StaticConfigBody, host_id: str | None = None
) -> tuple[StaticConfigRequest, list[str]]:
    """Resolve the body into a full request; also returns the planner's candidate hosts."""
    prefix = body.prefix
    gateway = body.gateway
    candidates: list[str] = []

    if body.addresses:
        target = body.addresses[0]
        addresses = list(body.addresses) if body.apply_all else [target]
        if prefix is None:
            raise ValueError("prefix is required when addresses are given")
        gateway = gateway or implied_gateway(target)
    elif body.input:
        plan = parse_ip_input(body.input)
        candidates = plan.hosts
        if plan.mode == "cidr":
            prefix = plan.prefix
        if prefix is None:
            raise ValueError("prefix is required for range input")
        target = plan.hosts[0]
        addresses = list(plan.hosts) if body.apply_all else [target]
        gateway = gateway or plan.gateway
    elif host_id is not None and (body.gateway or body.dns):
        # Gateway/DNS only: keep the interface's current addresses
        current = [
            r for r in await _get_session().current_addresses(host_id)
            if r.interface == body.iface and r.family == "inet"
        ]
        addresses = [r.ip for r in current]
        target = addresses[0] if addresses else ""
        if prefix is None:
            suffix = current[0].address.partition("/")[2] if current else ""
            prefix = int(suffix) if suffix.isdigit() else 24
    else:
        raise ValueError("One of input, addresses, gateway or dns is required")

    request = StaticConfigRequest(
        interface=body.iface,
        address=target,
        addresses=addresses,
        prefix=prefix,
        gateway=gateway,
        dns=list(body.dns),
        dry_run=body.dry_run,
    )
    return request, candidates


# ──────────────────────────────────────────────────────────────────
# Endpoints
# ──────────────────────────────────────────────────────────────────

@app.get("/api/health")
async def health():
    return {"ok": True}


@app.get("/api/hosts")
async def list_hosts():
    return [record.to_dict() for record in _get_registry().list()]


@app.post("/api/hosts")
async def add_host(body: AddHostRequest):
    if not body.password and not body.private_key:
        raise HTTPException(status_code=400, detail="password or private_key is required")
    session = _get_session()
    registry = _get_registry()
    host_id = body.id or f"{body.host}-{int(time.time() * 1000)}"

    credentials = Credentials(body.username, password=body.password, private_key=body.private_key)
    await session.connect(host_id, body.host, credentials, port=body.port)
    registry.add(HostRecord(id=host_id, host=body.host, port=body.port, username=body.username))

    adapter = await registry.ensure_adapter(host_id, body.manual_mode)
    addresses, gateways = await asyncio.gather(
        session.current_addresses(host_id),
        session.current_routes(host_id),
    )
    record = registry.get(host_id)
    return {
        "id": host_id,
        "os_release": record.os_release,
        "ips": {"list": [r.to_dict() for r in addresses], "gateways": gateways},
        "detected_adapter": type(adapter).__name__,
    }


@app.get("/api/hosts/{host_id}/ips")
async def host_ips(host_id: str):
    _require_host(host_id)
    session = _get_session()
    addresses, gateways = await asyncio.gather(
        session.current_addresses(host_id),
        session.current_routes(host_id),
    )
    return {"list": [r.to_dict() for r in addresses], "gateways": gateways}


@app.post("/api/ip-calc")
async def ip_calc(body: IpCalcRequest):
    return parse_ip_input(body.input).to_dict()


@app.post("/api/dry-run-generate")
async def dry_run_generate(body: StaticConfigBody):
    if not body.manual_mode:
        raise HTTPException(status_code=400, detail="manual_mode is required to generate commands")
    request, _ = await _build_request(body)
    request.dry_run = True
    adapter = from_name(body.manual_mode)
    commands = await adapter.apply_static_config(request)
    return {"commands": commands, "adapter": type(adapter).__name__}


@app.post("/api/hosts/{host_id}/apply-ip")
async def apply_ip(host_id: str, body: StaticConfigBody):
    record = _require_host(host_id)
    request, candidates = await _build_request(body, host_id)
    adapter = await _get_registry().ensure_adapter(host_id, body.manual_mode)
    result = await adapter.apply_static_config(request)

    if request.dry_run:
        return {"dry_run": True, "commands": result, "adapter": type(adapter).__name__}
    return {
        "adapter": type(adapter).__name__,
        "os_release": record.os_release,
        "applied": {
            "address": request.address,
            "addresses": request.all_addresses,
            "prefix": request.prefix,
            "gateway": request.gateway,
            "dns": request.dns,
        },
        "available_hosts": candidates,
        "result": [r.to_dict() for r in result],
    }


@app.delete("/api/hosts/{host_id}/ips/{iface}")
async def remove_ips(host_id: str, iface: str, body: RemoveRequest | None = None):
    _require_host(host_id)
    adapter = await _get_registry().ensure_adapter(host_id)
    if body is not None and body.addresses:
        result = await adapter.remove_ips(iface, body.addresses)
    else:
        result = await adapter.clear_ips(iface)
    return {"result": [r.to_dict() for r in result]}


_LATENCY_RE = re.compile(r"time=([\d.]+)\s*ms")


@app.post("/api/hosts/{host_id}/ping")
async def ping(host_id: str, body: PingRequest):
    _require_host(host_id)
    source = body.ip.split("/", 1)[0]
    command = f"ping -I {shlex.quote(source)} -c 1 -W 2 {shlex.quote(body.target)}"
    result = await _get_session().exec(host_id, command, echo=False)
    if not result.ok:
        return {"success": False, "error": "Ping failed"}
    match = _LATENCY_RE.search(result.stdout)
    return {"success": True, "latency": match.group(1) if match else None}


@app.post("/api/hosts/{host_id}/logout")
async def logout(host_id: str):
    _require_host(host_id)
    _get_session().close(host_id)
    _get_registry().remove(host_id)
    return {"success": True}


# ──────────────────────────────────────────────────────────────────
# Terminal websocket
# ──────────────────────────────────────────────────────────────────

class TerminalViewer:
    """One browser attached to a host's terminal.

    Frames are queued and written by a single sender task, so they reach the
    browser in the order the shell produced them.
    """

    def __init__(self, websocket: WebSocket, host_id: str) -> None:
        self.websocket = websocket
        self.host_id = host_id
        self._outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._sender: asyncio.Task | None = None

    def start(self) -> None:
        self._sender = asyncio.create_task(self._pump())

    def send(self, message: dict[str, Any]) -> None:
        self._outbox.put_nowait(message)

    async def flush(self) -> None:
        """Wait until every queued frame has been written (or dropped)."""
        await self._outbox.join()

    async def stop(self) -> None:
        if self._sender is None:
            return
        self._sender.cancel()
        try:
            await self._sender
        except asyncio.CancelledError:
            pass
        self._sender = None

    async def _pump(self) -> None:
        closed = False
        while True:
            message = await self._outbox.get()
            try:
                if not closed:
                    await self.websocket.send_json(message)
            except Exception:
                logger.debug("Dropping terminal messages for a closed websocket on %s", self.host_id)
                closed = True
            finally:
                self._outbox.task_done()


def _broadcast(host_id: str, message: dict[str, Any]) -> None:
    for viewer in list(_terminals.get(host_id, ())):
        viewer.send(message)


@app.websocket("/ws/hosts/{host_id}/terminal")
async def terminal_ws(websocket: WebSocket, host_id: str):
    """Browser terminal: ``{"type": "input", "data": ...}`` frames in, ``data``/``close``/``error`` out."""
    await websocket.accept()
    if host_id not in _get_registry():
        await websocket.send_json({"type": "error", "message": f"Host not found: {host_id}"})
        await websocket.close()
        return

    session = _get_session()
    viewer = TerminalViewer(websocket, host_id)
    viewer.start()
    viewers = _terminals.setdefault(host_id, set())
    viewers.add(viewer)

    def sink(data: str) -> None:
        _broadcast(host_id, {"type": "data", "host_id": host_id, "data": data})

    def on_close() -> None:
        _broadcast(host_id, {"type": "close", "host_id": host_id})
        session.unregister_terminal_output(host_id)

    try:
        session.register_terminal_output(host_id, sink)
        await session.start_shell(host_id, on_data=sink, on_close=on_close)
        viewer.send({"type": "data", "host_id": host_id, "data": f"Connected to {host_id}\r\n"})

        async for message in websocket.iter_json():
            if message.get("type") != "input":
                continue
            try:
                session.write_shell(host_id, message.get("data", ""))
            except SessionError as e:
                viewer.send({"type": "error", "message": str(e)})
    except WebSocketDisconnect:
        logger.info("Terminal viewer left %s", host_id)
    except SessionError as e:
        viewer.send({"type": "error", "message": str(e)})
        await viewer.flush()
    finally:
        viewers.discard(viewer)
        await viewer.stop()


# ──────────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────────

def main():
    import uvicorn
    host = os.environ.get("HOSTNET_HOST", "0.0.0.0")
    port = int(os.environ.get("HOSTNET_PORT", "3000"))
    logging.basicConfig(level=os.environ.get("HOSTNET_LOG_LEVEL", "INFO").upper())
    logger.info("Starting hostnet server on %s:%d", host, port)
    uvicorn.run("hostnet.server:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
