"""
Provisioning steps.

Provisioning runs in this order before any role-specific action:

    disable-swap → network-prerequisites → install-containerd →
    containerd-systemd-unit → install-runc → install-cni-plugins →
    containerd-config → install-crictl → install-kubeadm-kubelet →
    install-kubectl
"""

from typing import List

from ..common import run_cmd
from ..config import Config
from .base import Provisioner, Runner
from .cni import InstallCilium
from .host import DisableSwap, NetworkPrerequisites
from .kubeadm import Kubeadm
from .kubeconfig import InstallKubeconfig
from .runtime import (
    ContainerdConfig,
    ContainerdService,
    InstallCniPlugins,
    InstallContainerd,
    InstallRunc,
)
from .tooling import InstallCrictl, InstallKubeadmKubelet, InstallKubectl

PROVISIONING_STEPS = [
    DisableSwap,
    NetworkPrerequisites,
    InstallContainerd,
    ContainerdService,
    InstallRunc,
    InstallCniPlugins,
    ContainerdConfig,
    InstallCrictl,
    InstallKubeadmKubelet,
    InstallKubectl,
]


def default_provisioners(cfg: Config, runner: Runner = run_cmd) -> List[Provisioner]:
    """The runtime + tooling plan shared by control-plane and worker nodes."""
    return [step(cfg, runner) for step in PROVISIONING_STEPS]


__all__ = [
    "PROVISIONING_STEPS",
    "InstallCilium",
    "InstallKubeconfig",
    "Kubeadm",
    "Provisioner",
    "default_provisioners",
]
