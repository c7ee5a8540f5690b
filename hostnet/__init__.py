"""hostnet — remote static IP configuration for heterogeneous Linux hosts.

Two subsystems:
  - ssh: one persistent SSH session per host (command execution, interactive
    shell, shared terminal output)
  - adapters: per-OS strategies (NetworkManager, /etc/network/interfaces,
    netplan, raw iproute2) that turn a desired static-IP state into a
    single remote script

Quickstart::

    from hostnet.ssh import Credentials, SessionManager
    from hostnet.adapters import from_os_release

    ssh = SessionManager()
    await ssh.connect("web-1", "10.0.0.5", Credentials("root", password="..."))
    adapter = from_os_release(await ssh.os_fingerprint("web-1"), ssh, "web-1")
"""

__version__ = "1.0.0"
