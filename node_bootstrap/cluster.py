"""Kubernetes API access on the control-plane node through admin.conf."""

from __future__ import annotations

import time

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config

from .common import log_info, log_warn
from .models import CONTROL_PLANE_TAINT_EFFECT, CONTROL_PLANE_TAINT_KEY


class LocalClusterClient:
    """Node readiness and taint management via the Kubernetes API."""

    def __init__(self, v1: k8s_client.CoreV1Api):
        self.v1 = v1

    @classmethod
    def from_kubeconfig(cls, path: str) -> "LocalClusterClient":
        k8s_config.load_kube_config(config_file=path)
        return cls(k8s_client.CoreV1Api())

    def wait_for_node(self, hostname: str, timeout: int = 90, interval: float = 2) -> bool:
        """Poll until the node object is registered or the timeout expires."""
        log_info("Waiting for control plane to register node", node=hostname)
        deadline = time.monotonic() + timeout

        while True:
            try:
                self.v1.read_node(name=hostname)
                log_info("Node registered", node=hostname)
                return True
            except k8s_client.ApiException as exc:
                if exc.status != 404:
                    log_warn("API not ready yet", node=hostname, reason=exc.reason)
            except Exception as exc:  # connection refused while apiserver starts
                log_warn("API not reachable yet", node=hostname, error=str(exc))

            if time.monotonic() >= deadline:
                log_warn(f"Node not registered within {timeout}s", node=hostname)
                return False
            time.sleep(interval)

    def set_taint(self, hostname: str, present: bool) -> None:
        """Ensure the control-plane NoSchedule taint is present or absent."""
        node = self.v1.read_node(name=hostname)
        taints = list(node.spec.taints or []) if node.spec else []

        others = [t for t in taints if t.key != CONTROL_PLANE_TAINT_KEY]
        has_wanted = any(
            t.key == CONTROL_PLANE_TAINT_KEY and t.effect == CONTROL_PLANE_TAINT_EFFECT
            for t in taints
        )

        if present:
            if has_wanted and len(others) == len(taints) - 1:
                log_info("Control-plane taint already present", node=hostname)
                return
            desired = others + [
                k8s_client.V1Taint(
                    key=CONTROL_PLANE_TAINT_KEY, effect=CONTROL_PLANE_TAINT_EFFECT
                )
            ]
        else:
            if len(others) == len(taints):
                log_info("Control-plane taint already absent", node=hostname)
                return
            desired = others

        log_info(
            "Adding control-plane taint" if present else "Removing control-plane taint",
            node=hostname,
        )
        self.v1.patch_node(
            name=hostname,
            body={"spec": {"taints": [_taint_body(t) for t in desired]}},
        )


def _taint_body(taint: k8s_client.V1Taint) -> dict:
    body = {"key": taint.key, "effect": taint.effect}
    if taint.value:
        body["value"] = taint.value
    return body
