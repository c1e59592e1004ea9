"""
Node lifecycle controller.

Maps (role, count, endpoint) to exactly one provisioning action:

    role          count  action
    controlplane  1      provision → kubeadm init → kubeconfigs → CNI → untaint self
    controlplane  0      kubeadm reset
    worker        1      provision → fetch join command → kubeadm join → re-taint control plane
    worker        0      kubeadm reset → delete node remotely → untaint control plane

Inputs are validated before any side effect. The first failing step aborts
the run; there is no rollback and no retry. Re-running after fixing the
cause is safe because every step is idempotent.
"""

from __future__ import annotations

import socket
from typing import Callable, List, Optional

from .cluster import LocalClusterClient
from .common import StatusReport, StepRunner, log_info
from .config import Config
from .errors import InvalidParameters, LifecycleError
from .models import NodeRole, RemoteEndpoint, parse_count
from .remote import RemoteControlPlaneClient, SshControlPlaneClient
from .steps import InstallCilium, InstallKubeconfig, Kubeadm, Provisioner, default_provisioners

ClusterFactory = Callable[[str], LocalClusterClient]
RemoteFactory = Callable[[RemoteEndpoint], RemoteControlPlaneClient]


def local_hostname() -> str:
    """Node name kubeadm registers for this host."""
    return socket.gethostname().lower()


class NodeLifecycleController:
    def __init__(
        self,
        cfg: Config,
        *,
        provisioners: Optional[List[Provisioner]] = None,
        kubeadm: Optional[Kubeadm] = None,
        kubeconfig: Optional[Provisioner] = None,
        cni: Optional[Provisioner] = None,
        cluster_factory: ClusterFactory = LocalClusterClient.from_kubeconfig,
        remote_factory: RemoteFactory = SshControlPlaneClient,
        hostname: Callable[[], str] = local_hostname,
        report: Optional[StatusReport] = None,
        dry_run: bool = False,
    ):
        self.cfg = cfg
        self._provisioners = provisioners
        self.kubeadm = kubeadm or Kubeadm(cfg)
        self.kubeconfig = kubeconfig or InstallKubeconfig(cfg)
        self.cni = cni or InstallCilium(cfg)
        self.cluster_factory = cluster_factory
        self.remote_factory = remote_factory
        self.hostname = hostname
        self.report = report if report is not None else StatusReport(cfg.status_path)
        self.dry_run = dry_run

    @property
    def provisioners(self) -> List[Provisioner]:
        if self._provisioners is None:
            self._provisioners = default_provisioners(self.cfg)
        return self._provisioners

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def validate(self, role, count, endpoint: Optional[RemoteEndpoint]):
        """Check every input. Raises before anything touches the host."""
        role = NodeRole.parse(role)
        count = parse_count(count)

        if role is NodeRole.WORKER:
            if endpoint is None:
                raise InvalidParameters(
                    "initialising a worker node requires all of these must be present -h, -u, -s"
                )
            endpoint.validate()

        if count == 1:
            self.cfg.validate()

        return role, count

    def plan(self, role: NodeRole, count: int) -> Callable[[Optional[RemoteEndpoint]], None]:
        table = {
            (NodeRole.CONTROL_PLANE, 1): self.setup_control_plane,
            (NodeRole.CONTROL_PLANE, 0): self.remove_control_plane,
            (NodeRole.WORKER, 1): self.setup_worker,
            (NodeRole.WORKER, 0): self.remove_worker,
        }
        try:
            return table[(role, count)]
        except KeyError:
            raise InvalidParameters(f"unsupported role/count: {role.value}/{count}") from None

    def apply(self, role, count, endpoint: Optional[RemoteEndpoint] = None) -> None:
        role, count = self.validate(role, count, endpoint)
        action = self.plan(role, count)

        log_info(
            "manipulating nodes",
            role=role.value,
            count=count,
            action=action.__name__,
            endpoint=endpoint.host if endpoint else None,
        )
        if count == 1:
            self.cfg.print_banner()
        if self.dry_run:
            log_info("DRY RUN — no changes will be made")
            if count == 1:
                for i, step in enumerate(self.provisioners, 1):
                    log_info(f"  {i}. {step.name}")
            return

        action(endpoint)
        log_info("✓ Node lifecycle action complete", action=action.__name__)

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def _step(self, name: str) -> StepRunner:
        return StepRunner(name, self.report)

    def provision(self) -> None:
        """Install runtime and tooling. Safe to repeat on a provisioned host."""
        for provisioner in self.provisioners:
            with self._step(provisioner.name):
                provisioner.install()

    def setup_control_plane(self, endpoint: Optional[RemoteEndpoint] = None) -> None:
        log_info("setting up control plane node")
        self.provision()

        with self._step("kubeadm-init"):
            self.kubeadm.init()

        with self._step(self.kubeconfig.name):
            self.kubeconfig.install()

        with self._step(self.cni.name):
            self.cni.install()

        with self._step("untaint-control-plane") as step:
            node = self.hostname()
            step.details["node"] = node
            cluster = self.cluster_factory(self.cfg.admin_conf)
            if not cluster.wait_for_node(node, timeout=self.cfg.node_wait_timeout):
                raise LifecycleError(
                    f"node {node} not registered within {self.cfg.node_wait_timeout}s"
                )
            cluster.set_taint(node, present=False)

    def remove_control_plane(self, endpoint: Optional[RemoteEndpoint] = None) -> None:
        log_info("removing control plane node")
        with self._step("kubeadm-reset"):
            self.kubeadm.reset()

    def setup_worker(self, endpoint: RemoteEndpoint) -> None:
        log_info("setting up worker node", control_plane=endpoint.host)
        self.provision()

        with self.remote_factory(endpoint) as remote:
            with self._step("kubeadm-join") as step:
                join = remote.get_join_command()
                step.details["endpoint"] = join.endpoint
                self.kubeadm.join(join)

            with self._step("taint-control-plane") as step:
                control_plane = remote.hostname()
                step.details["node"] = control_plane
                remote.set_taint(control_plane, present=True)

    def remove_worker(self, endpoint: RemoteEndpoint) -> None:
        log_info("removing worker node", control_plane=endpoint.host)
        with self._step("kubeadm-reset"):
            self.kubeadm.reset()

        with self.remote_factory(endpoint) as remote:
            with self._step("delete-node") as step:
                node = self.hostname()
                step.details["node"] = node
                remote.delete_node(node)

            with self._step("untaint-control-plane") as step:
                control_plane = remote.hostname()
                step.details["node"] = control_plane
                remote.set_taint(control_plane, present=False)
