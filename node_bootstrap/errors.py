"""
Exception taxonomy for node bootstrap runs.

Every error aborts the run. Nothing here is caught and retried; the CLI maps
all of them to exit code 1.
"""

from typing import List, Optional, Union


class LifecycleError(Exception):
    """Base class for all bootstrap failures."""


class InvalidParameters(LifecycleError, ValueError):
    """Role, count or worker endpoint rejected before any side effect."""


class PreconditionUnset(LifecycleError):
    """One or more required configuration values are missing."""

    def __init__(self, names: List[str]):
        self.names = list(names)
        super().__init__(
            f"required environment variable(s) unset: {', '.join(self.names)}"
        )


class ExternalCommandFailure(LifecycleError):
    """A local or remote command exited non-zero."""

    def __init__(
        self,
        command: Union[List[str], str],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
        host: Optional[str] = None,
    ):
        self.command = command if isinstance(command, str) else " ".join(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.host = host
        where = f" on {host}" if host else ""
        super().__init__(
            f"command failed{where} (exit {returncode}): {self.command}"
        )
