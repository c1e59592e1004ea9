import stat

import pytest

from conftest import JOIN_OUTPUT, RecordingRunner
from node_bootstrap.errors import ExternalCommandFailure, LifecycleError
from node_bootstrap.models import JoinCommand
from node_bootstrap.steps import (
    InstallCilium,
    InstallKubeconfig,
    Kubeadm,
    PROVISIONING_STEPS,
    default_provisioners,
)
from node_bootstrap.steps import cni as cni_module
from node_bootstrap.steps.host import DisableSwap, NetworkPrerequisites, comment_out_swap
from node_bootstrap.steps.runtime import (
    ContainerdConfig,
    InstallCniPlugins,
    InstallContainerd,
    enable_systemd_cgroup,
)
from node_bootstrap.steps.tooling import InstallCrictl, InstallKubeadmKubelet, InstallKubectl

CONTAINERD_DEFAULT = """\
version = 3

[plugins]
  [plugins.'io.containerd.cri.v1.runtime'.containerd.runtimes.runc]
    runtime_type = 'io.containerd.runc.v2'

    [plugins.'io.containerd.cri.v1.runtime'.containerd.runtimes.runc.options]
      BinaryName = ''
      SystemdCgroup = false
"""


# =============================================================================
# Plan
# =============================================================================

def test_default_provisioning_order(cfg):
    names = [p.name for p in default_provisioners(cfg)]
    assert names == [
        "disable-swap",
        "network-prerequisites",
        "install-containerd",
        "containerd-systemd-unit",
        "install-runc",
        "install-cni-plugins",
        "containerd-config",
        "install-crictl",
        "install-kubeadm-kubelet",
        "install-kubectl",
    ]
    assert len(PROVISIONING_STEPS) == len(names)


# =============================================================================
# Host
# =============================================================================

def test_comment_out_swap():
    fstab = (
        "UUID=abc / ext4 defaults 0 1\n"
        "/swap.img none swap sw 0 0\n"
        "#/old.img none swap sw 0 0\n"
    )
    assert comment_out_swap(fstab) == (
        "UUID=abc / ext4 defaults 0 1\n"
        "#/swap.img none swap sw 0 0\n"
        "#/old.img none swap sw 0 0\n"
    )


def test_comment_out_swap_is_idempotent():
    once = comment_out_swap("/swap.img none swap sw 0 0\n")
    assert comment_out_swap(once) == once


def test_disable_swap(cfg, tmp_path):
    runner = RecordingRunner()
    step = DisableSwap(cfg, runner)
    step.fstab = tmp_path / "fstab"
    step.fstab.write_text("/swap.img none swap sw 0 0\n")

    step.install()

    assert runner.commands == ["swapoff -a"]
    assert step.fstab.read_text() == "#/swap.img none swap sw 0 0\n"


def test_network_prerequisites(cfg, tmp_path):
    runner = RecordingRunner(outputs={"sysctl -n": "1\n"})
    step = NetworkPrerequisites(cfg, runner)
    step.sysctl_conf = tmp_path / "sysctl.d" / "k8s.conf"

    step.install()

    assert step.sysctl_conf.read_text() == "net.ipv4.ip_forward = 1\n"
    assert runner.commands == ["sysctl --system", "sysctl -n net.ipv4.ip_forward"]


# =============================================================================
# Runtime
# =============================================================================

def test_enable_systemd_cgroup():
    patched = enable_systemd_cgroup(CONTAINERD_DEFAULT)
    assert "SystemdCgroup = false" not in patched
    assert patched.count("SystemdCgroup") == 1
    lines = patched.splitlines()
    header = lines.index(
        "    [plugins.'io.containerd.cri.v1.runtime'.containerd.runtimes.runc.options]"
    )
    assert lines[header + 1] == "      SystemdCgroup = true"


def test_enable_systemd_cgroup_requires_runc_table():
    with pytest.raises(LifecycleError):
        enable_systemd_cgroup("version = 3\n")


def test_containerd_config(cfg, tmp_path):
    runner = RecordingRunner(outputs={"containerd config default": CONTAINERD_DEFAULT})
    step = ContainerdConfig(cfg, runner)
    step.config_path = tmp_path / "containerd" / "config.toml"

    step.install()

    assert "SystemdCgroup = true" in step.config_path.read_text()
    assert runner.commands[-1] == "systemctl restart containerd"


def test_install_containerd_extracts_archive(cfg):
    runner = RecordingRunner()
    InstallContainerd(cfg, runner).install()

    curl, tar = runner.commands
    assert curl.startswith("curl -fsSL") and curl.endswith(cfg.containerd_url)
    assert tar.startswith("tar -C /usr/local -xzf ")


def test_cni_plugins_use_configured_version(cfg):
    runner = RecordingRunner()
    step = InstallCniPlugins(cfg, runner)
    step.dest = cfg.bin_dir

    step.install()

    assert runner.commands[0].endswith(
        "/v1.8.0/cni-plugins-linux-amd64-v1.8.0.tgz"
    )


# =============================================================================
# Tooling
# =============================================================================

def test_crictl(cfg):
    runner = RecordingRunner()
    InstallCrictl(cfg, runner).install()
    assert runner.commands[0].endswith("/v1.31.0/crictl-v1.31.0-linux-amd64.tar.gz")
    assert runner.commands[1].startswith(f"tar -C {cfg.bin_dir} -xzf")


def test_kubeadm_kubelet_units_point_at_bin_dir(cfg, tmp_path):
    runner = RecordingRunner(outputs={
        "curl -fsSL https://raw.githubusercontent.com/kubernetes/release/v0.16.2/cmd/krel/templates/latest/kubelet":
            "ExecStart=/usr/bin/kubelet\n",
        "curl -fsSL https://raw.githubusercontent.com/kubernetes/release/v0.16.2/cmd/krel/templates/latest/kubeadm":
            "ExecStart=/usr/bin/kubelet $KUBELET_KUBECONFIG_ARGS\n",
    })
    step = InstallKubeadmKubelet(cfg, runner)
    step.unit_dir = tmp_path / "systemd"

    step.install()

    assert (step.unit_dir / "kubelet.service").read_text() == (
        f"ExecStart={cfg.bin_dir}/kubelet\n"
    )
    assert (step.unit_dir / "kubelet.service.d" / "10-kubeadm.conf").read_text() == (
        f"ExecStart={cfg.bin_dir}/kubelet $KUBELET_KUBECONFIG_ARGS\n"
    )
    for binary in ("kubeadm", "kubelet"):
        mode = (tmp_path / "bin" / binary).stat().st_mode
        assert mode & stat.S_IXUSR
    assert runner.commands[-1] == "systemctl enable --now kubelet"


def test_kubectl(cfg):
    runner = RecordingRunner()
    InstallKubectl(cfg, runner).install()
    assert runner.commands[0].endswith("https://dl.k8s.io/release/v1.34.1/bin/linux/amd64/kubectl")


def test_arch_detected_when_unset(cfg, monkeypatch):
    cfg.arch = ""
    detected = RecordingRunner(outputs={"dpkg --print-architecture": "arm64\n"})
    monkeypatch.setattr("node_bootstrap.config.run_cmd", detected)

    runner = RecordingRunner()
    InstallKubectl(cfg, runner).install()

    assert detected.commands == ["dpkg --print-architecture"]
    assert "/bin/linux/arm64/kubectl" in runner.commands[0]


# =============================================================================
# CNI
# =============================================================================

def test_cilium(cfg, monkeypatch):
    monkeypatch.setattr(cni_module.platform, "machine", lambda: "x86_64")
    runner = RecordingRunner(outputs={"curl -fsSL https://raw.githubusercontent.com/cilium": "v0.18.7\n"})

    InstallCilium(cfg, runner).install()

    commands = runner.commands
    assert any(c.endswith("cilium-linux-amd64.tar.gz.sha256sum") for c in commands)
    check = next(c for c in runner.calls if c[0].startswith("sha256sum"))
    assert check[0] == "sha256sum --check cilium-linux-amd64.tar.gz.sha256sum"
    assert check[1]["cwd"]
    install_cmd, kwargs = runner.calls[-1]
    assert install_cmd == "cilium install --version 1.18.2"
    assert kwargs["env"] == {"KUBECONFIG": cfg.admin_conf}


def test_cilium_checksum_failure_aborts(cfg, monkeypatch):
    monkeypatch.setattr(cni_module.platform, "machine", lambda: "x86_64")
    runner = RecordingRunner(fail_on="sha256sum")

    with pytest.raises(ExternalCommandFailure):
        InstallCilium(cfg, runner).install()
    assert not any(c.startswith("cilium install") for c in runner.commands)


# =============================================================================
# kubeconfig
# =============================================================================

def test_kubeconfig_for_root_and_every_home(cfg, tmp_path):
    for user in ("alice", "bob"):
        (tmp_path / "home" / user).mkdir(parents=True)
    (tmp_path / "root").mkdir()

    InstallKubeconfig(cfg).install()

    admin = (tmp_path / "admin.conf").read_text()
    for home in ("root", "home/alice", "home/bob"):
        config = tmp_path / home / ".kube" / "config"
        assert config.read_text() == admin
        assert stat.S_IMODE(config.stat().st_mode) == 0o600


def test_kubeconfig_without_home_root(cfg, tmp_path):
    InstallKubeconfig(cfg).install()
    assert (tmp_path / "root" / ".kube" / "config").exists()


# =============================================================================
# kubeadm
# =============================================================================

def test_kubeadm_init(cfg):
    runner = RecordingRunner()
    Kubeadm(cfg, runner).init()
    assert runner.commands == ["kubeadm init"]
    assert runner.calls[0][1]["capture"] is False


def test_kubeadm_join_runs_fetched_command(cfg):
    runner = RecordingRunner()
    Kubeadm(cfg, runner).join(JoinCommand.parse(JOIN_OUTPUT))
    assert runner.commands == [JOIN_OUTPUT.strip()]


def test_kubeadm_join_refuses_other_commands(cfg):
    runner = RecordingRunner()
    with pytest.raises(LifecycleError):
        Kubeadm(cfg, runner).join(JoinCommand("kubeadm reset -f"))
    assert runner.calls == []


def test_kubeadm_reset_removes_leftovers(cfg, tmp_path):
    cni = tmp_path / "cni" / "net.d"
    cni.mkdir(parents=True)
    (cni / "05-cilium.conflist").write_text("{}")
    for home in ("root", "home/alice", "home/bob"):
        kube = tmp_path / home / ".kube"
        kube.mkdir(parents=True)
        (kube / "config").write_text("x")
    (tmp_path / "home" / "carol").mkdir()

    runner = RecordingRunner()
    Kubeadm(cfg, runner).reset()

    assert runner.commands == ["kubeadm reset -f"]
    assert not cni.exists()
    for home in ("root", "home/alice", "home/bob"):
        assert not (tmp_path / home / ".kube").exists()
    assert (tmp_path / "home" / "carol").exists()


def test_kubeadm_reset_on_clean_host(cfg):
    runner = RecordingRunner()
    Kubeadm(cfg, runner).reset()
    assert runner.commands == ["kubeadm reset -f"]
