"""Shared fixtures for hostnet tests."""

from __future__ import annotations

import pytest

from fakes import (
    ALPINE_RELEASE,
    CENTOS_RELEASE,
    DEBIAN_RELEASE,
    INTERFACES_BASELINE,
    UBUNTU_RELEASE,
    FakeHost,
)

from hostnet.adapters.interfaces import INTERFACES_FILE


@pytest.fixture
def make_host():
    """Factory for a simulated host of one distribution family.

    Debian hosts start with a loopback and an ``eth1`` stanza in
    ``/etc/network/interfaces``; CentOS hosts have eth0 bound to the
    "Wired connection 1" NetworkManager profile.
    """

    def _make(family: str) -> FakeHost:
        if family == "ubuntu":
            return FakeHost(UBUNTU_RELEASE)
        if family == "debian":
            return FakeHost(DEBIAN_RELEASE, files={INTERFACES_FILE: INTERFACES_BASELINE})
        if family == "centos":
            host = FakeHost(CENTOS_RELEASE)
            host.add_profile("Wired connection 1", "eth0")
            return host
        if family == "generic":
            return FakeHost(ALPINE_RELEASE)
        raise ValueError(f"Unknown host family: {family}")

    return _make
