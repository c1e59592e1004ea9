"""
Kubernetes tooling — crictl, kubeadm, kubelet, kubectl.

Binaries come straight from the release buckets; the kubelet systemd unit
and its kubeadm drop-in come from kubernetes/release templates with
/usr/bin rewritten to the install directory.
"""

from __future__ import annotations

from pathlib import Path

from ..common import log_info
from .base import Provisioner

CRICTL_URL = (
    "https://github.com/kubernetes-sigs/cri-tools/releases/download/"
    "{version}/crictl-{version}-linux-{arch}.tar.gz"
)
K8S_BINARY_URL = "https://dl.k8s.io/release/{version}/bin/linux/{arch}/{binary}"
RELEASE_TEMPLATES_URL = (
    "https://raw.githubusercontent.com/kubernetes/release/{version}/cmd/krel/templates/latest"
)


class InstallCrictl(Provisioner):
    name = "install-crictl"

    def install(self) -> None:
        arch = self.cfg.resolve_arch()
        version = self.cfg.crictl_version
        log_info("installing crictl", version=version)
        self.extract(CRICTL_URL.format(version=version, arch=arch), self.cfg.bin_dir)


class _KubernetesBinaries(Provisioner):
    binaries: tuple = ()

    def install_binaries(self) -> None:
        arch = self.cfg.resolve_arch()
        bin_dir = Path(self.cfg.bin_dir)
        bin_dir.mkdir(parents=True, exist_ok=True)

        for binary in self.binaries:
            url = K8S_BINARY_URL.format(
                version=self.cfg.kubernetes_version, arch=arch, binary=binary,
            )
            dest = self.download(url, bin_dir / binary)
            dest.chmod(0o755)
            log_info(f"  ✓ {binary}", path=str(dest))


class InstallKubeadmKubelet(_KubernetesBinaries):
    name = "install-kubeadm-kubelet"
    binaries = ("kubeadm", "kubelet")
    unit_dir = Path("/usr/lib/systemd/system")

    def install(self) -> None:
        log_info("installing kubeadm and kubelet", version=self.cfg.kubernetes_version)
        self.install_binaries()

        log_info("setting up kubeadm and kubelet systemd service")
        base = RELEASE_TEMPLATES_URL.format(version=self.cfg.kubernetes_release_version)
        unit = self.fetch_text(f"{base}/kubelet/kubelet.service")
        dropin = self.fetch_text(f"{base}/kubeadm/10-kubeadm.conf")

        dropin_dir = self.unit_dir / "kubelet.service.d"
        dropin_dir.mkdir(parents=True, exist_ok=True)
        (self.unit_dir / "kubelet.service").write_text(self._relocate(unit))
        (dropin_dir / "10-kubeadm.conf").write_text(self._relocate(dropin))

        self.run(["systemctl", "daemon-reload"])
        self.run(["systemctl", "enable", "--now", "kubelet"])

    def _relocate(self, text: str) -> str:
        return text.replace("/usr/bin", self.cfg.bin_dir)


class InstallKubectl(_KubernetesBinaries):
    name = "install-kubectl"
    binaries = ("kubectl",)

    def install(self) -> None:
        log_info("installing kubectl", version=self.cfg.kubernetes_version)
        self.install_binaries()
