"""
Bootstrap configuration sourced from environment variables.

Populated once at startup and passed explicitly to every step. Required
values are checked eagerly by validate(), before any side effect.

Required environment variables (when provisioning, i.e. count=1):
    CONTAINERD_VERSION          — containerd release archive URL
    CRICTL_VERSION              — cri-tools release tag (e.g. v1.31.0)
    KUBERNETES_VERSION          — Kubernetes release (e.g. v1.34.1)
    KUBERNETES_RELEASE_VERSION  — kubernetes/release tag for unit templates

Optional:
    RUNC_VERSION        — runc release tag        (default: v1.3.2)
    CNI_PLUGINS_VERSION — CNI plugins release tag (default: v1.8.0)
    CILIUM_VERSION      — cilium chart version    (default: 1.18.2)
    ARCH                — machine architecture    (default: dpkg --print-architecture)
    BIN_DIR             — binary install dir      (default: /usr/local/bin)
    STATUS_FILE         — step status JSON        (default: /tmp/bootstrap-status.json)
    CMD_TIMEOUT         — per-command timeout     (default: 600)
    NODE_WAIT_TIMEOUT   — API readiness timeout   (default: 90)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .common import log_info, run_cmd
from .errors import PreconditionUnset

ADMIN_CONF = "/etc/kubernetes/admin.conf"

REQUIRED_ENV = {
    "containerd_url": "CONTAINERD_VERSION",
    "crictl_version": "CRICTL_VERSION",
    "kubernetes_version": "KUBERNETES_VERSION",
    "kubernetes_release_version": "KUBERNETES_RELEASE_VERSION",
}


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


@dataclass
class Config:
    """Provisioning configuration sourced from environment variables."""

    containerd_url: str = field(default_factory=lambda: _env("CONTAINERD_VERSION"))
    crictl_version: str = field(default_factory=lambda: _env("CRICTL_VERSION"))
    kubernetes_version: str = field(default_factory=lambda: _env("KUBERNETES_VERSION"))
    kubernetes_release_version: str = field(
        default_factory=lambda: _env("KUBERNETES_RELEASE_VERSION")
    )
    runc_version: str = field(default_factory=lambda: _env("RUNC_VERSION", "v1.3.2"))
    cni_plugins_version: str = field(
        default_factory=lambda: _env("CNI_PLUGINS_VERSION", "v1.8.0")
    )
    cilium_version: str = field(default_factory=lambda: _env("CILIUM_VERSION", "1.18.2"))
    arch: str = field(default_factory=lambda: _env("ARCH"))
    bin_dir: str = field(default_factory=lambda: _env("BIN_DIR", "/usr/local/bin"))
    status_file: str = field(
        default_factory=lambda: _env("STATUS_FILE", "/tmp/bootstrap-status.json")
    )
    cmd_timeout: int = field(default_factory=lambda: int(_env("CMD_TIMEOUT", "600")))
    node_wait_timeout: int = field(
        default_factory=lambda: int(_env("NODE_WAIT_TIMEOUT", "90"))
    )
    admin_conf: str = ADMIN_CONF
    cni_conf_dir: str = "/etc/cni/net.d"
    home_root: str = "/home"
    root_home: str = "/root"

    def missing_required(self) -> list[str]:
        """Names of required environment variables that are unset."""
        return [env for attr, env in REQUIRED_ENV.items() if not getattr(self, attr)]

    def validate(self) -> None:
        """Raise PreconditionUnset listing every missing required variable."""
        missing = self.missing_required()
        if missing:
            raise PreconditionUnset(missing)

    def resolve_arch(self) -> str:
        """Detect the machine architecture from dpkg unless ARCH is set."""
        if not self.arch:
            self.arch = run_cmd(["dpkg", "--print-architecture"]).stdout.strip()
            log_info("Detected architecture", arch=self.arch)
        return self.arch

    @property
    def status_path(self) -> Optional[Path]:
        return Path(self.status_file) if self.status_file else None

    def print_banner(self) -> None:
        log_info("=== Kubernetes node bootstrap configuration ===")
        log_info("containerd", url=self.containerd_url or "(unset)")
        log_info("crictl", version=self.crictl_version or "(unset)")
        log_info("kubernetes", version=self.kubernetes_version or "(unset)")
        log_info("kubernetes release tooling",
                 version=self.kubernetes_release_version or "(unset)")
        log_info("runc", version=self.runc_version)
        log_info("cni plugins", version=self.cni_plugins_version)
        log_info("cilium", version=self.cilium_version)
