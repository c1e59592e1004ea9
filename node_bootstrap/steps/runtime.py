"""
Container runtime — containerd, runc, CNI plugins.

Follows https://github.com/containerd/containerd/blob/main/docs/getting-started.md:
binaries from release archives, the upstream systemd unit, and a default
config patched to use the systemd cgroup driver.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from ..common import log_info
from ..errors import LifecycleError
from .base import Provisioner

CONTAINERD_UNIT_URL = (
    "https://raw.githubusercontent.com/containerd/containerd/main/containerd.service"
)
RUNC_URL = "https://github.com/opencontainers/runc/releases/download/{version}/runc.{arch}"
CNI_PLUGINS_URL = (
    "https://github.com/containernetworking/plugins/releases/download/"
    "{version}/cni-plugins-linux-{arch}-{version}.tgz"
)
RUNC_OPTIONS_TABLE = "plugins.'io.containerd.cri.v1.runtime'.containerd.runtimes.runc.options"


def enable_systemd_cgroup(config: str) -> str:
    """Force SystemdCgroup = true under the runc options table."""
    out = []
    inserted = False
    for line in config.splitlines():
        if "SystemdCgroup" in line:
            continue
        out.append(line)
        if not inserted and line.strip() == f"[{RUNC_OPTIONS_TABLE}]":
            indent = line[: len(line) - len(line.lstrip())]
            out.append(f"{indent}  SystemdCgroup = true")
            inserted = True

    if not inserted:
        raise LifecycleError(
            f"containerd config has no [{RUNC_OPTIONS_TABLE}] table"
        )
    return "\n".join(out) + "\n"


class InstallContainerd(Provisioner):
    name = "install-containerd"

    def install(self) -> None:
        log_info("installing containerd", url=self.cfg.containerd_url)
        self.extract(self.cfg.containerd_url, "/usr/local")


class ContainerdService(Provisioner):
    name = "containerd-systemd-unit"
    unit_path = Path("/etc/systemd/system/containerd.service")

    def install(self) -> None:
        log_info("setting up containerd systemd unit")
        self.unit_path.parent.mkdir(parents=True, exist_ok=True)
        self.download(CONTAINERD_UNIT_URL, self.unit_path)
        self.run(["systemctl", "daemon-reload"])
        self.run(["systemctl", "enable", "--now", "containerd"])


class InstallRunc(Provisioner):
    name = "install-runc"

    def install(self) -> None:
        arch = self.cfg.resolve_arch()
        log_info("installing runc", version=self.cfg.runc_version)
        url = RUNC_URL.format(version=self.cfg.runc_version, arch=arch)
        with tempfile.TemporaryDirectory() as tmp:
            binary = self.download(url, Path(tmp) / "runc")
            self.run(["install", "-m", "755", str(binary), "/usr/local/sbin/runc"])


class InstallCniPlugins(Provisioner):
    name = "install-cni-plugins"
    dest = "/opt/cni/bin"

    def install(self) -> None:
        arch = self.cfg.resolve_arch()
        version = self.cfg.cni_plugins_version
        log_info("installing cni plugins", version=version, dest=self.dest)
        self.extract(CNI_PLUGINS_URL.format(version=version, arch=arch), self.dest)


class ContainerdConfig(Provisioner):
    name = "containerd-config"
    config_path = Path("/etc/containerd/config.toml")

    def install(self) -> None:
        log_info("building containerd config", path=str(self.config_path))
        default = self.run(["containerd", "config", "default"]).stdout

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(enable_systemd_cgroup(default))
        self.run(["systemctl", "restart", "containerd"])
