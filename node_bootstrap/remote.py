"""
Remote control-plane client.

Runs privileged kubeadm/kubectl commands on the control-plane node over an
SSH session authenticated with a password. Each method states its
postcondition and is safe to repeat:

    get_join_command()        fresh 24h join command, never cached
    delete_node(name)         node absent afterwards (missing node is fine)
    set_taint(name, present)  control-plane taint present/absent afterwards
"""

from __future__ import annotations

import shlex
import socket
import sys
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import paramiko

from .common import CmdResult, log_debug, log_error, log_info
from .errors import ExternalCommandFailure
from .models import (
    CONTROL_PLANE_TAINT_EFFECT,
    CONTROL_PLANE_TAINT_KEY,
    JoinCommand,
    RemoteEndpoint,
)

TAINT_JSONPATH = '{range .spec.taints[*]}{.key}:{.effect}{"\\n"}{end}'


class RemoteControlPlaneClient(ABC):
    """Operations a worker performs against its control-plane node."""

    @abstractmethod
    def get_join_command(self) -> JoinCommand:
        """Create a new 24h bootstrap token and return its join command."""

    @abstractmethod
    def hostname(self) -> str:
        """Node name of the control-plane host itself."""

    @abstractmethod
    def delete_node(self, hostname: str) -> None:
        """Remove the node object. No error when it is already gone."""

    @abstractmethod
    def set_taint(self, hostname: str, present: bool) -> None:
        """Ensure the control-plane NoSchedule taint is present or absent."""

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class SshControlPlaneClient(RemoteControlPlaneClient):
    """RemoteControlPlaneClient over paramiko with password authentication."""

    def __init__(
        self,
        endpoint: RemoteEndpoint,
        *,
        timeout: Optional[float] = None,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self._client_factory = client_factory
        self._client: Optional[paramiko.SSHClient] = None

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _target(self) -> str:
        return f"{self.endpoint.username}@{self.endpoint.host}:{self.endpoint.port}"

    def connect(self) -> paramiko.SSHClient:
        if self._client is not None:
            return self._client

        log_info("Connecting to control plane", target=self._target())
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.endpoint.host,
                port=int(self.endpoint.port),
                username=self.endpoint.username,
                password=self.endpoint.credential,
                allow_agent=False,
                look_for_keys=False,
                timeout=self.timeout,
            )
        except paramiko.AuthenticationException as exc:
            client.close()
            raise ExternalCommandFailure(
                f"ssh {self._target()}", 255,
                stderr=f"authentication failed: {exc}", host=self.endpoint.host,
            ) from exc
        except (paramiko.SSHException, socket.error) as exc:
            client.close()
            raise ExternalCommandFailure(
                f"ssh {self._target()}", 255,
                stderr=str(exc), host=self.endpoint.host,
            ) from exc

        self._client = client
        return client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def run(self, cmd: List[str], *, check: bool = True) -> CmdResult:
        """Run a command on the control plane, raising on non-zero exit."""
        cmd_str = shlex.join(cmd)
        log_debug(f"Running remotely: {cmd_str}", host=self.endpoint.host)

        client = self.connect()
        start = time.monotonic()
        _, stdout, stderr = client.exec_command(cmd_str, timeout=self.timeout)
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace")
        returncode = stdout.channel.recv_exit_status()

        result = CmdResult(
            returncode=returncode,
            stdout=out,
            stderr=err,
            command=cmd_str,
            duration_seconds=round(time.monotonic() - start, 2),
        )
        if returncode != 0 and check:
            log_error(
                f"Remote command failed (exit {returncode})",
                command=cmd_str,
                host=self.endpoint.host,
                stderr=err[:500],
            )
            if err:
                sys.stderr.write(err)
            raise ExternalCommandFailure(
                cmd_str, returncode, stdout=out, stderr=err, host=self.endpoint.host,
            )
        return result

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def get_join_command(self) -> JoinCommand:
        cmd = ["kubeadm", "token", "create", "--ttl", "24h", "--print-join-command"]
        result = self.run(cmd)
        try:
            return JoinCommand.parse(result.stdout)
        except ValueError as exc:
            raise ExternalCommandFailure(
                shlex.join(cmd), 0, stdout=result.stdout, stderr=str(exc),
                host=self.endpoint.host,
            ) from exc

    def hostname(self) -> str:
        return self.run(["hostname"]).stdout.strip().lower()

    def taints(self, hostname: str) -> List[str]:
        """Current taints of a node as 'key:effect' strings."""
        result = self.run(
            ["kubectl", "get", "node", hostname, "-o", f"jsonpath={TAINT_JSONPATH}"]
        )
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def delete_node(self, hostname: str) -> None:
        log_info("Deleting node from API server", node=hostname)
        self.run(["kubectl", "delete", "node", "--ignore-not-found", hostname])

    def set_taint(self, hostname: str, present: bool) -> None:
        wanted = f"{CONTROL_PLANE_TAINT_KEY}:{CONTROL_PLANE_TAINT_EFFECT}"
        current = self.taints(hostname)

        if present:
            if wanted in current:
                log_info("Control-plane taint already present", node=hostname)
                return
            log_info("Adding control-plane taint", node=hostname)
            self.run(["kubectl", "taint", "nodes", hostname, wanted, "--overwrite"])
            return

        if not any(t.split(":", 1)[0] == CONTROL_PLANE_TAINT_KEY for t in current):
            log_info("Control-plane taint already absent", node=hostname)
            return
        log_info("Removing control-plane taint", node=hostname)
        self.run(["kubectl", "taint", "nodes", hostname, f"{CONTROL_PLANE_TAINT_KEY}-"])
