"""
Host prerequisites — swap and IPv4 forwarding.

kubelet refuses to start with swap enabled, and pod networking needs
net.ipv4.ip_forward. Both steps are safe to repeat.
"""

from __future__ import annotations

from pathlib import Path

from ..common import log_info, log_warn
from .base import Provisioner

SYSCTL_CONF = """\
net.ipv4.ip_forward = 1
"""


def comment_out_swap(fstab: str) -> str:
    """Comment every active fstab entry whose type is swap."""
    lines = []
    for line in fstab.splitlines(keepends=True):
        stripped = line.strip()
        fields = stripped.split()
        if stripped and not stripped.startswith("#") and "swap" in fields:
            line = "#" + line
        lines.append(line)
    return "".join(lines)


class DisableSwap(Provisioner):
    name = "disable-swap"
    fstab = Path("/etc/fstab")

    def install(self) -> None:
        log_info("disabling swap")
        self.run(["swapoff", "-a"])

        if self.fstab.exists():
            original = self.fstab.read_text()
            updated = comment_out_swap(original)
            if updated != original:
                self.fstab.write_text(updated)
                log_info("  ✓ swap entries commented out", path=str(self.fstab))


class NetworkPrerequisites(Provisioner):
    name = "network-prerequisites"
    sysctl_conf = Path("/etc/sysctl.d/k8s.conf")

    def install(self) -> None:
        log_info("setting up networking prerequisites")
        self.sysctl_conf.parent.mkdir(parents=True, exist_ok=True)
        self.sysctl_conf.write_text(SYSCTL_CONF)

        # Apply without reboot; a single unreadable drop-in must not abort
        result = self.run(["sysctl", "--system"], check=False, capture=False)
        if result.returncode != 0:
            log_warn("sysctl --system reported errors", exit=result.returncode)
        value = self.run(["sysctl", "-n", "net.ipv4.ip_forward"]).stdout.strip()
        log_info("  ✓ net.ipv4.ip_forward", value=value)
