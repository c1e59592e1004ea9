import shlex
from pathlib import Path

import pytest

from node_bootstrap.common import CmdResult, StatusReport
from node_bootstrap.config import Config
from node_bootstrap.errors import ExternalCommandFailure
from node_bootstrap.models import (
    CONTROL_PLANE_TAINT_EFFECT,
    CONTROL_PLANE_TAINT_KEY,
    JoinCommand,
)
from node_bootstrap.remote import RemoteControlPlaneClient
from node_bootstrap.steps import Provisioner

JOIN_OUTPUT = (
    "kubeadm join 10.0.0.5:6443 --token abcdef.0123456789abcdef "
    "--discovery-token-ca-cert-hash sha256:1234\n"
)
TAINT = f"{CONTROL_PLANE_TAINT_KEY}:{CONTROL_PLANE_TAINT_EFFECT}"


class RecordingRunner:
    """Stand-in for run_cmd that records calls and returns canned output."""

    def __init__(self, outputs=None, fail_on=None):
        self.calls = []
        self.outputs = outputs or {}
        self.fail_on = fail_on

    def __call__(self, cmd, **kwargs):
        cmd_str = cmd if isinstance(cmd, str) else " ".join(cmd)
        self.calls.append((cmd_str, kwargs))

        if self.fail_on and cmd_str.startswith(self.fail_on):
            raise ExternalCommandFailure(cmd_str, 1, stderr="boom")

        # curl -o <path>: materialise the download
        if isinstance(cmd, list) and cmd[0] == "curl" and "-o" in cmd:
            dest = Path(cmd[cmd.index("-o") + 1])
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_text("binary")

        stdout = ""
        for prefix, out in self.outputs.items():
            if cmd_str.startswith(prefix):
                stdout = out
                break
        return CmdResult(0, stdout, "", cmd_str, 0.0)

    @property
    def commands(self):
        return [c for c, _ in self.calls]


class FakeProvisioner(Provisioner):
    def __init__(self, name, events, fail=False):
        self.name = name
        self.events = events
        self.fail = fail

    def install(self):
        self.events.append(("install", self.name))
        if self.fail:
            raise ExternalCommandFailure(f"install {self.name}", 1)


class FakeKubeadm:
    def __init__(self, events):
        self.events = events

    def init(self):
        self.events.append(("kubeadm", "init"))

    def join(self, join: JoinCommand):
        self.events.append(("kubeadm", "join", join.command))

    def reset(self):
        self.events.append(("kubeadm", "reset"))


class FakeCluster:
    def __init__(self, events, registered=True):
        self.events = events
        self.registered = registered

    def wait_for_node(self, hostname, timeout=90):
        self.events.append(("cluster", "wait", hostname))
        return self.registered

    def set_taint(self, hostname, present):
        self.events.append(("cluster", "taint", hostname, present))


class FakeRemote(RemoteControlPlaneClient):
    """In-memory control plane honouring the client postconditions."""

    def __init__(self, events, cp_name="cp-1", nodes=None):
        self.events = events
        self.cp_name = cp_name
        self.nodes = {cp_name: set()} if nodes is None else nodes
        self.closed = False

    def get_join_command(self):
        self.events.append(("remote", "token"))
        return JoinCommand.parse(JOIN_OUTPUT)

    def hostname(self):
        return self.cp_name

    def delete_node(self, hostname):
        self.events.append(("remote", "delete", hostname))
        self.nodes.pop(hostname, None)

    def set_taint(self, hostname, present):
        self.events.append(("remote", "taint", hostname, present))
        taints = self.nodes.setdefault(hostname, set())
        if present:
            taints.add(TAINT)
        else:
            taints.discard(TAINT)

    def close(self):
        self.closed = True


class FakeControlPlaneShell:
    """
    Interprets the kubectl/kubeadm command lines the SSH client sends and
    keeps node and taint state the way the API server would.
    """

    def __init__(self, hostname="cp-1"):
        self.hostname = hostname
        self.nodes = {hostname.lower(): set()}
        self.commands = []

    def handle(self, command):
        self.commands.append(command)
        argv = shlex.split(command)

        if argv == ["hostname"]:
            return 0, self.hostname + "\n", ""
        if argv[:3] == ["kubeadm", "token", "create"]:
            return 0, JOIN_OUTPUT, ""
        if argv[:3] == ["kubectl", "get", "node"]:
            name = argv[3]
            if name not in self.nodes:
                return 1, "", f'Error from server (NotFound): nodes "{name}" not found\n'
            return 0, "".join(f"{t}\n" for t in sorted(self.nodes[name])), ""
        if argv[:3] == ["kubectl", "delete", "node"]:
            name = argv[-1]
            if name not in self.nodes and "--ignore-not-found" not in argv:
                return 1, "", f'nodes "{name}" not found\n'
            self.nodes.pop(name, None)
            return 0, "", ""
        if argv[:3] == ["kubectl", "taint", "nodes"]:
            name, spec = argv[3], argv[4]
            taints = self.nodes[name]
            if spec.endswith("-"):
                key = spec[:-1]
                matching = {t for t in taints if t.split(":")[0] == key}
                if not matching:
                    return 1, "", f"error: taint {key!r} not found\n"
                taints.difference_update(matching)
            else:
                taints.add(spec)
            return 0, f"node/{name} tainted\n", ""
        return 127, "", f"unknown command: {command}\n"

    @property
    def mutations(self):
        return [
            c for c in self.commands
            if c.startswith("kubectl taint") or c.startswith("kubectl delete")
        ]


@pytest.fixture
def cfg(tmp_path):
    admin_conf = tmp_path / "admin.conf"
    admin_conf.write_text("apiVersion: v1\nkind: Config\n")
    return Config(
        containerd_url="https://example.invalid/containerd-2.1.4-linux-amd64.tar.gz",
        crictl_version="v1.31.0",
        kubernetes_version="v1.34.1",
        kubernetes_release_version="v0.16.2",
        arch="amd64",
        bin_dir=str(tmp_path / "bin"),
        status_file="",
        admin_conf=str(admin_conf),
        cni_conf_dir=str(tmp_path / "cni" / "net.d"),
        home_root=str(tmp_path / "home"),
        root_home=str(tmp_path / "root"),
    )


@pytest.fixture
def events():
    return []


@pytest.fixture
def report():
    return StatusReport(None)
