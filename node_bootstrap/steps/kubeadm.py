"""
kubeadm lifecycle commands — init, join, reset.

Unlike provisioners these change cluster membership, so the lifecycle
controller decides when each one runs.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from ..common import log_info, run_cmd
from ..config import Config
from ..errors import LifecycleError
from ..models import JoinCommand
from .base import Runner


class Kubeadm:
    def __init__(self, cfg: Config, runner: Runner = run_cmd):
        self.cfg = cfg
        self.run = runner

    def init(self) -> None:
        """Initialise this host as the cluster's control plane."""
        log_info("running kubeadm init on node")
        self.run(["kubeadm", "init"], capture=False, timeout=self.cfg.cmd_timeout)

    def join(self, join: JoinCommand) -> None:
        """Join the cluster with a join command fetched moments ago."""
        log_info("running kubeadm join on node", endpoint=join.endpoint)
        argv = join.argv
        if argv[:2] != ["kubeadm", "join"]:
            raise LifecycleError(f"not a kubeadm join command: {argv[:2]}")
        self.run(argv, capture=False, timeout=self.cfg.cmd_timeout)

    def reset(self) -> None:
        """
        Tear the node down: kubeadm reset, CNI config, every kubeconfig.

        https://kubernetes.io/docs/reference/setup-tools/kubeadm/kubeadm-reset/
        """
        log_info("running kubeadm reset")
        self.run(["kubeadm", "reset", "-f"], capture=False, timeout=self.cfg.cmd_timeout)

        leftovers = [Path(self.cfg.cni_conf_dir), Path(self.cfg.root_home) / ".kube"]
        leftovers.extend(sorted(Path(self.cfg.home_root).glob("*/.kube")))
        for path in leftovers:
            if path.exists():
                shutil.rmtree(path)
                log_info(f"  ✓ removed {path}")
