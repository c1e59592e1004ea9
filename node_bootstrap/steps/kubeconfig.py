"""
Configure kubectl access.

Copies /etc/kubernetes/admin.conf to root's ~/.kube/config and to
~/.kube/config of every account under /home, owned by that account.

Idempotent: overwrites existing kubeconfig files.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import List

from ..common import log_info
from .base import Provisioner


def discover_homes(home_root: str) -> List[Path]:
    """Every directory directly under home_root."""
    root = Path(home_root)
    if not root.is_dir():
        return []
    return sorted(p for p in root.iterdir() if p.is_dir())


class InstallKubeconfig(Provisioner):
    name = "configure-kubectl"

    def install_for(self, home: Path) -> Path:
        """Copy admin.conf into one home directory with matching ownership."""
        kube_dir = home / ".kube"
        kube_dir.mkdir(parents=True, exist_ok=True)
        config_path = kube_dir / "config"

        shutil.copyfile(self.cfg.admin_conf, config_path)

        owner = home.stat()
        os.chown(kube_dir, owner.st_uid, owner.st_gid)
        os.chown(config_path, owner.st_uid, owner.st_gid)
        config_path.chmod(0o600)
        log_info(f"  ✓ kubeconfig for {home.name}", path=str(config_path))
        return config_path

    def install(self) -> None:
        log_info("setup kubeconfig for every local account")
        targets = [Path(self.cfg.root_home)] + discover_homes(self.cfg.home_root)
        for home in targets:
            self.install_for(home)
