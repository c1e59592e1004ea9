"""
Pod network — Cilium.

Installs the cilium CLI (checksum-verified release tarball) and then runs
`cilium install` against the freshly initialised cluster.

Idempotent: an existing cilium release is upgraded in place by the CLI.
"""

from __future__ import annotations

import platform
import tempfile
from pathlib import Path

from ..common import log_info
from .base import Provisioner

CILIUM_CLI_STABLE_URL = "https://raw.githubusercontent.com/cilium/cilium-cli/main/stable.txt"
CILIUM_CLI_URL = (
    "https://github.com/cilium/cilium-cli/releases/download/"
    "{version}/cilium-linux-{arch}.tar.gz"
)


class InstallCilium(Provisioner):
    name = "install-cni"

    def cli_arch(self) -> str:
        if platform.machine() == "aarch64":
            return "arm64"
        return self.cfg.resolve_arch()

    def install_cli(self) -> None:
        version = self.fetch_text(CILIUM_CLI_STABLE_URL).strip()
        arch = self.cli_arch()
        log_info("installing cilium cli", version=version, arch=arch)

        url = CILIUM_CLI_URL.format(version=version, arch=arch)
        tarball = f"cilium-linux-{arch}.tar.gz"
        with tempfile.TemporaryDirectory() as tmp:
            self.download(url, Path(tmp) / tarball)
            self.download(f"{url}.sha256sum", Path(tmp) / f"{tarball}.sha256sum")
            self.run(["sha256sum", "--check", f"{tarball}.sha256sum"], cwd=tmp)
            self.run(["tar", "-xzf", tarball, "-C", self.cfg.bin_dir], cwd=tmp)

    def install(self) -> None:
        self.install_cli()
        log_info("installing cilium", version=self.cfg.cilium_version)
        self.run(
            ["cilium", "install", "--version", self.cfg.cilium_version],
            capture=False,
            timeout=self.cfg.cmd_timeout,
            env={"KUBECONFIG": self.cfg.admin_conf},
        )
