"""Tests for the CIDR / range address planner."""

import pytest

from hostnet.planner import implied_gateway, parse_cidr, parse_ip_input, parse_range


class TestParseCidr:
    def test_first_host_is_gateway(self):
        plan = parse_cidr("112.121.163.154/29")
        assert plan.mode == "cidr"
        assert plan.gateway == "112.121.163.153"
        assert plan.hosts == [f"112.121.163.{i}" for i in range(154, 159)]
        assert plan.prefix == 29
        assert plan.network == "112.121.163.152"
        assert plan.broadcast == "112.121.163.159"
        assert plan.netmask == "255.255.255.248"

    def test_single_address_network(self):
        plan = parse_cidr("203.0.113.7/32")
        assert plan.gateway == "203.0.113.7"
        assert plan.hosts == ["203.0.113.7"]

    def test_point_to_point_network(self):
        plan = parse_cidr("10.0.0.0/31")
        assert plan.gateway == "10.0.0.0"
        assert plan.hosts == ["10.0.0.1"]

    def test_rejects_huge_networks(self):
        with pytest.raises(ValueError, match="more than"):
            parse_cidr("10.0.0.0/8")

    def test_rejects_garbage(self):
        with pytest.raises(ValueError, match="Invalid CIDR"):
            parse_cidr("10.0.0.300/24")


class TestParseRange:
    def test_last_octet_shorthand(self):
        plan = parse_range("10.0.0.5-8")
        assert plan.mode == "range"
        assert plan.gateway == "10.0.0.5"
        assert plan.hosts == ["10.0.0.6", "10.0.0.7", "10.0.0.8"]
        assert plan.prefix is None

    def test_full_addresses(self):
        plan = parse_range("10.0.0.254-10.0.1.1")
        assert plan.hosts == ["10.0.0.255", "10.0.1.0", "10.0.1.1"]

    def test_single_address_range(self):
        plan = parse_range("10.0.0.5-5")
        assert plan.gateway == "10.0.0.5"
        assert plan.hosts == ["10.0.0.5"]

    def test_reversed_range(self):
        with pytest.raises(ValueError, match="lower"):
            parse_range("10.0.0.9-5")

    def test_missing_end(self):
        with pytest.raises(ValueError):
            parse_range("10.0.0.9-")


class TestParseIpInput:
    def test_dispatches_on_format(self):
        assert parse_ip_input(" 10.0.0.0/30 ").mode == "cidr"
        assert parse_ip_input("10.0.0.1-3").mode == "range"

    @pytest.mark.parametrize("text", ["", "   ", None, "10.0.0.5"])
    def test_rejects_unsupported_input(self, text):
        with pytest.raises(ValueError):
            parse_ip_input(text)

    def test_to_dict(self):
        data = parse_ip_input("10.0.0.0/30").to_dict()
        assert data["gateway"] == "10.0.0.1"
        assert data["hosts"] == ["10.0.0.2"]


def test_implied_gateway():
    assert implied_gateway("10.0.0.10/24") == "10.0.0.9"
    assert implied_gateway("192.168.1.1") == "192.168.1.0"
