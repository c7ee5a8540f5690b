"""Tests for the HTTP and terminal websocket endpoints."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from fakes import CENTOS_RELEASE, FakeConnector, FakeHost

from hostnet import server
from hostnet.adapters.netplan import DEFAULT_NETPLAN_FILE
from hostnet.hosts import HostRegistry
from hostnet.ssh.session import SessionManager

NEW_HOST = {"id": "web1", "host": "10.0.0.5", "username": "root", "password": "secret"}


def _install(monkeypatch, connector) -> SessionManager:
    session = SessionManager(connector=connector)
    monkeypatch.setattr(server, "_session", session)
    monkeypatch.setattr(server, "_registry", HostRegistry(session))
    monkeypatch.setattr(server, "_terminals", {})
    return session


@pytest.fixture
def ubuntu(make_host):
    return make_host("ubuntu")


@pytest.fixture
def client(monkeypatch, ubuntu):
    _install(monkeypatch, FakeConnector(ubuntu))
    with TestClient(server.app) as c:
        yield c


@pytest.fixture
def connected(client):
    resp = client.post("/api/hosts", json=NEW_HOST)
    assert resp.status_code == 200
    return client


class TestHosts:
    def test_health(self, client):
        assert client.get("/api/health").json() == {"ok": True}

    def test_add_host_detects_adapter(self, client):
        resp = client.post("/api/hosts", json=NEW_HOST)
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == "web1"
        assert data["detected_adapter"] == "NetplanAdapter"
        assert "Ubuntu" in data["os_release"]
        assert {"interface": "lo", "family": "inet", "address": "127.0.0.1/8", "scope": "static"} in data["ips"]["list"]

    def test_add_host_with_manual_mode(self, client):
        resp = client.post("/api/hosts", json={**NEW_HOST, "manual_mode": "generic"})
        assert resp.json()["detected_adapter"] == "IPRouteAdapter"

    def test_add_host_requires_secret(self, client):
        body = {k: v for k, v in NEW_HOST.items() if k != "password"}
        assert client.post("/api/hosts", json=body).status_code == 400

    def test_unreachable_host(self, monkeypatch):
        _install(monkeypatch, FakeConnector(fail=OSError("Connection refused")))
        with TestClient(server.app) as c:
            resp = c.post("/api/hosts", json=NEW_HOST)
        assert resp.status_code == 502
        assert "Connection refused" in resp.json()["detail"]

    def test_list_hosts(self, connected):
        hosts = connected.get("/api/hosts").json()
        assert [h["id"] for h in hosts] == ["web1"]
        assert hosts[0]["adapter"] == "NetplanAdapter"

    def test_unknown_host_is_404(self, client):
        assert client.get("/api/hosts/ghost/ips").status_code == 404
        assert client.post("/api/hosts/ghost/apply-ip", json={"input": "10.0.0.8/29"}).status_code == 404

    def test_logout(self, connected):
        assert connected.post("/api/hosts/web1/logout").json() == {"success": True}
        assert connected.get("/api/hosts/web1/ips").status_code == 404
        assert not server._session.is_connected("web1")


class TestIpCalc:
    def test_cidr(self, client):
        data = client.post("/api/ip-calc", json={"input": "10.0.0.0/30"}).json()
        assert data["gateway"] == "10.0.0.1"
        assert data["hosts"] == ["10.0.0.2"]

    def test_invalid_input_is_400(self, client):
        resp = client.post("/api/ip-calc", json={"input": "not-an-ip"})
        assert resp.status_code == 400


class TestDryRunGenerate:
    def test_renders_without_host(self, client):
        resp = client.post("/api/dry-run-generate", json={
            "manual_mode": "generic",
            "addresses": ["10.0.0.10"],
            "prefix": 24,
        })
        data = resp.json()
        assert data["adapter"] == "IPRouteAdapter"
        assert "ip addr add 10.0.0.10/24 dev eth0" in data["commands"]
        assert "ip route replace default via 10.0.0.9 dev eth0" in data["commands"]

    def test_requires_manual_mode(self, client):
        resp = client.post("/api/dry-run-generate", json={"addresses": ["10.0.0.10"], "prefix": 24})
        assert resp.status_code == 400

    def test_prefix_bounds_are_validated(self, client):
        resp = client.post("/api/dry-run-generate", json={
            "manual_mode": "generic", "addresses": ["10.0.0.10"], "prefix": 40,
        })
        assert resp.status_code == 422


class TestApplyIp:
    def test_apply_from_cidr(self, connected, ubuntu):
        resp = connected.post("/api/hosts/web1/apply-ip", json={"input": "10.0.0.8/29"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["adapter"] == "NetplanAdapter"
        assert data["applied"]["address"] == "10.0.0.10"
        assert data["applied"]["gateway"] == "10.0.0.9"
        assert data["applied"]["prefix"] == 29
        assert len(data["available_hosts"]) == 5
        assert "10.0.0.10/29" in [r["address"] for r in data["result"]]
        assert ubuntu.routes == {"eth0": "10.0.0.9"}

    def test_dry_run_leaves_host_untouched(self, connected, ubuntu):
        resp = connected.post("/api/hosts/web1/apply-ip", json={
            "addresses": ["10.0.0.10"], "prefix": 24, "dry_run": True,
        })
        data = resp.json()
        assert data["dry_run"] is True
        assert "netplan apply" in data["commands"]
        assert DEFAULT_NETPLAN_FILE not in ubuntu.files
        assert ubuntu.static("eth0") == []

    def test_gateway_only_keeps_addresses(self, connected, ubuntu):
        connected.post("/api/hosts/web1/apply-ip", json={"addresses": ["10.0.0.10"], "prefix": 24})
        resp = connected.post("/api/hosts/web1/apply-ip", json={"gateway": "10.0.0.254"})
        assert resp.status_code == 200
        assert ubuntu.static("eth0") == ["10.0.0.10/24"]
        assert ubuntu.routes == {"eth0": "10.0.0.254"}

    def test_missing_input_is_400(self, connected):
        assert connected.post("/api/hosts/web1/apply-ip", json={}).status_code == 400

    def test_unsafe_interface_is_400(self, connected, ubuntu):
        before = len(ubuntu.commands)
        resp = connected.post("/api/hosts/web1/apply-ip", json={
            "addresses": ["10.0.0.10"], "prefix": 24, "iface": "eth0; touch /tmp/x",
        })
        assert resp.status_code == 400
        assert "Invalid interface name" in resp.json()["detail"]
        assert not any("touch" in c for c in ubuntu.commands[before:])

    def test_unsafe_gateway_is_400(self, connected):
        resp = connected.post("/api/hosts/web1/apply-ip", json={
            "addresses": ["10.0.0.10"], "prefix": 24, "gateway": "10.0.0.1 && reboot",
        })
        assert resp.status_code == 400
        assert "Invalid gateway" in resp.json()["detail"]

    def test_remote_failure_is_502(self, monkeypatch):
        _install(monkeypatch, FakeConnector(FakeHost(CENTOS_RELEASE)))
        with TestClient(server.app) as c:
            c.post("/api/hosts", json=NEW_HOST)
            resp = c.post("/api/hosts/web1/apply-ip", json={"addresses": ["10.0.0.10"], "prefix": 24})
        assert resp.status_code == 502
        assert resp.json()["exit_code"] == 10
        assert "unknown connection" in resp.json()["stderr"]


class TestRemoveIps:
    def test_remove_listed_addresses(self, connected, ubuntu):
        connected.post("/api/hosts/web1/apply-ip", json={
            "addresses": ["10.0.0.10", "10.0.0.11"], "prefix": 24, "apply_all": True,
        })
        resp = connected.request("DELETE", "/api/hosts/web1/ips/eth0", json={"addresses": ["10.0.0.10"]})
        assert resp.status_code == 200
        remaining = [r["address"] for r in resp.json()["result"] if r["interface"] == "eth0"]
        assert remaining == ["10.0.0.11/24"]

    def test_delete_without_body_clears(self, connected, ubuntu):
        connected.post("/api/hosts/web1/apply-ip", json={"addresses": ["10.0.0.10"], "prefix": 24})
        resp = connected.delete("/api/hosts/web1/ips/eth0")
        assert resp.status_code == 200
        assert ubuntu.static("eth0") == []

    def test_unsafe_interface_or_address_is_400(self, connected, ubuntu):
        connected.post("/api/hosts/web1/apply-ip", json={"addresses": ["10.0.0.10"], "prefix": 24})
        assert connected.delete("/api/hosts/web1/ips/averyverylongname0").status_code == 400
        resp = connected.request("DELETE", "/api/hosts/web1/ips/eth0", json={"addresses": ["10.0.0.10;reboot"]})
        assert resp.status_code == 400
        assert ubuntu.static("eth0") == ["10.0.0.10/24"]


class TestPing:
    def test_ping_reports_latency(self, connected, ubuntu):
        resp = connected.post("/api/hosts/web1/ping", json={"ip": "10.0.0.10/24"})
        assert resp.json() == {"success": True, "latency": "12.3"}
        assert "ping -I 10.0.0.10 -c 1 -W 2 8.8.8.8" in ubuntu.commands


class TestTerminal:
    def test_shell_echo_reaches_browser(self, connected):
        with connected.websocket_connect("/ws/hosts/web1/terminal") as ws:
            assert ws.receive_json()["data"] == "Connected to web1\r\n"
            ws.send_json({"type": "input", "data": "uptime\n"})
            message = ws.receive_json()
            assert message == {"type": "data", "host_id": "web1", "data": "uptime\n"}

    def test_frames_arrive_in_shell_order(self, connected):
        lines = [f"echo {i}\n" for i in range(20)]
        with connected.websocket_connect("/ws/hosts/web1/terminal") as ws:
            ws.receive_json()
            for line in lines:
                ws.send_json({"type": "input", "data": line})
            received = ""
            while len(received) < len("".join(lines)):
                received += ws.receive_json()["data"]
        assert received == "".join(lines)

    def test_every_viewer_gets_shell_output(self, connected):
        with connected.websocket_connect("/ws/hosts/web1/terminal") as first:
            assert first.receive_json()["data"] == "Connected to web1\r\n"
            with connected.websocket_connect("/ws/hosts/web1/terminal") as second:
                assert second.receive_json()["data"] == "Connected to web1\r\n"
                first.send_json({"type": "input", "data": "hostname\n"})
                assert first.receive_json()["data"] == "hostname\n"
                assert second.receive_json()["data"] == "hostname\n"

    def test_unknown_host(self, client):
        with client.websocket_connect("/ws/hosts/ghost/terminal") as ws:
            message = ws.receive_json()
        assert message["type"] == "error"
