"""Value types shared by the lifecycle controller and its collaborators."""

from __future__ import annotations

import enum
import shlex
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidParameters

CONTROL_PLANE_TAINT_KEY = "node-role.kubernetes.io/control-plane"
CONTROL_PLANE_TAINT_EFFECT = "NoSchedule"
VALID_COUNTS = (0, 1)


class NodeRole(enum.Enum):
    CONTROL_PLANE = "controlplane"
    WORKER = "worker"

    @classmethod
    def parse(cls, value) -> "NodeRole":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidParameters(f"incorrect type passed: {value}") from None


def parse_count(value) -> int:
    """Validate a desired node count. Only 0 (remove) and 1 (ensure) exist."""
    try:
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise TypeError(type(value).__name__)
        count = int(value)
    except (TypeError, ValueError):
        raise InvalidParameters(f"incorrect count passed: {value}") from None
    if count not in VALID_COUNTS:
        raise InvalidParameters(
            f"incorrect count passed: {count} must be 0 or 1. "
            "More than 1 worker or control plane node is not supported"
        )
    return count


@dataclass(frozen=True)
class RemoteEndpoint:
    """SSH coordinates of the control-plane node."""
    host: str
    username: str
    credential: str
    port: int = 22

    def __repr__(self) -> str:
        return (
            f"RemoteEndpoint(host={self.host!r}, port={self.port}, "
            f"username={self.username!r}, credential='***')"
        )

    def missing_fields(self) -> list[str]:
        return [
            flag for flag, value in (
                ("-h", self.host), ("-u", self.username), ("-s", self.credential),
            ) if not value
        ]

    def validate(self) -> None:
        missing = self.missing_fields()
        if missing:
            raise InvalidParameters(
                "initialising a worker node requires all of these must be "
                f"present -h, -u, -s (missing: {', '.join(missing)})"
            )
        try:
            port = int(self.port)
        except (TypeError, ValueError):
            port = 0
        if not 0 < port < 65536:
            raise InvalidParameters(f"incorrect port passed: {self.port}")


@dataclass(frozen=True)
class JoinCommand:
    """
    A `kubeadm join ...` command line printed by the control plane.

    Valid for 24 hours. Consumed once; never persisted.
    """
    command: str

    @classmethod
    def parse(cls, output: str) -> "JoinCommand":
        lines = [line.strip() for line in output.splitlines() if line.strip()]
        for line in lines:
            if line.startswith("kubeadm join "):
                return cls(command=line)
        raise ValueError(f"no kubeadm join command in output: {output!r}")

    @property
    def argv(self) -> list[str]:
        return shlex.split(self.command)

    @property
    def endpoint(self) -> Optional[str]:
        argv = self.argv
        return argv[2] if len(argv) > 2 else None

    def __repr__(self) -> str:
        return f"JoinCommand(endpoint={self.endpoint!r})"
