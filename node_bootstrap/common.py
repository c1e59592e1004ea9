"""
Common utilities for node bootstrap steps.

Provides structured logging, subprocess execution and step status reporting
used by every provisioning step and by the lifecycle controller.

Usage from a step module:
    from node_bootstrap.common import StepRunner, run_cmd, log_info
"""

import json
import logging
import os
import subprocess
import sys
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

from .errors import ExternalCommandFailure


# =============================================================================
# Structured Logging
# =============================================================================

LOGGER_NAME = "node-bootstrap"
log = logging.getLogger(LOGGER_NAME)

_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": _LEVEL_NAMES.get(record.levelno, record.levelname),
            "message": record.getMessage(),
            **getattr(record, "fields", {}),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(verbose: bool = False, stream=None) -> None:
    """Attach the JSON handler to the bootstrap logger."""
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter())
    log.handlers[:] = [handler]
    log.setLevel(logging.DEBUG if verbose else logging.INFO)
    log.propagate = False


def _emit(level: int, message: str, **kwargs) -> None:
    log.log(level, message, extra={"fields": kwargs})


def log_debug(message: str, **kwargs) -> None:
    _emit(logging.DEBUG, message, **kwargs)


def log_info(message: str, **kwargs) -> None:
    _emit(logging.INFO, message, **kwargs)


def log_warn(message: str, **kwargs) -> None:
    _emit(logging.WARNING, message, **kwargs)


def log_error(message: str, **kwargs) -> None:
    _emit(logging.ERROR, message, **kwargs)


# =============================================================================
# Command Execution
# =============================================================================

@dataclass
class CmdResult:
    """Result of a subprocess execution."""
    returncode: int
    stdout: str
    stderr: str
    command: str
    duration_seconds: float


def run_cmd(
    cmd: Union[List[str], str],
    *,
    shell: bool = False,
    check: bool = True,
    timeout: Optional[int] = 600,
    env: Optional[dict] = None,
    capture: bool = True,
    cwd: Optional[str] = None,
) -> CmdResult:
    """
    Execute a command with structured logging and timing.

    Args:
        cmd: Command as list of args or string (if shell=True).
        shell: Run through shell interpreter.
        check: Raise on non-zero exit code.
        timeout: Seconds before killing the process (None waits forever).
        env: Additional environment variables (merged with os.environ).
        capture: Capture stdout/stderr (False to stream live).
        cwd: Working directory for the command.

    Returns:
        CmdResult with exit code, output, and timing.

    Raises:
        ExternalCommandFailure: If check=True and command fails.
        subprocess.TimeoutExpired: If the command outlives the timeout.
    """
    cmd_str = cmd if isinstance(cmd, str) else " ".join(cmd)
    log_debug(f"Running: {cmd_str}")

    merged_env = {**os.environ, **(env or {})}
    start = time.monotonic()

    try:
        result = subprocess.run(
            cmd,
            shell=shell,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=merged_env,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired:
        log_error(f"Command timed out after {timeout}s", command=cmd_str)
        raise

    duration = time.monotonic() - start

    cmd_result = CmdResult(
        returncode=result.returncode,
        stdout=result.stdout if capture else "",
        stderr=result.stderr if capture else "",
        command=cmd_str,
        duration_seconds=round(duration, 2),
    )

    if result.returncode != 0:
        if check:
            log_error(
                f"Command failed (exit {result.returncode})",
                command=cmd_str,
                duration=cmd_result.duration_seconds,
            )
            if capture and cmd_result.stderr:
                sys.stderr.write(cmd_result.stderr)
            raise ExternalCommandFailure(
                cmd_str, result.returncode,
                stdout=cmd_result.stdout, stderr=cmd_result.stderr,
            )
        log_debug(
            f"Command exited {result.returncode}",
            command=cmd_str,
            duration=cmd_result.duration_seconds,
        )
    else:
        log_debug(
            "Command succeeded",
            command=cmd_str,
            duration=cmd_result.duration_seconds,
        )

    return cmd_result


# =============================================================================
# Step Status Reporting
# =============================================================================

@dataclass
class StepStatus:
    """Status of a single bootstrap step."""
    step_name: str
    status: str  # "running", "success", "failed"
    started_at: str = ""
    completed_at: str = ""
    duration_seconds: float = 0.0
    error: str = ""
    details: dict = field(default_factory=dict)


class StatusReport:
    """Collects step statuses and mirrors them to a JSON file."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self.steps: List[StepStatus] = []

    def record(self, status: StepStatus) -> None:
        self.steps.append(status)
        self.write()

    def write(self) -> None:
        if self.path is None:
            return
        data = {
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "steps": [asdict(s) for s in self.steps],
        }
        self.path.write_text(json.dumps(data, indent=2))


# =============================================================================
# Step Runner
# =============================================================================

class StepRunner:
    """
    Context manager for running a bootstrap step with timing and status reporting.

    Usage:
        with StepRunner("install-containerd", report) as step:
            # ... step logic ...
            step.details["archive"] = url

        # On success: status "success"
        # On exception: status "failed", error = str(exception), re-raised
    """

    def __init__(self, step_name: str, report: Optional[StatusReport] = None):
        self.step_name = step_name
        self.report = report
        self._status = StepStatus(step_name=step_name, status="running")
        self._start_time = 0.0
        self.details: Dict[str, object] = {}

    def __enter__(self):
        log_info(f"=== Starting step: {self.step_name} ===")
        self._status.started_at = datetime.now(timezone.utc).isoformat()
        self._start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.monotonic() - self._start_time
        self._status.duration_seconds = round(duration, 2)
        self._status.completed_at = datetime.now(timezone.utc).isoformat()
        self._status.details = self.details

        if exc_type is not None:
            self._status.status = "failed"
            self._status.error = str(exc_val)
            log_error(
                f"Step '{self.step_name}' FAILED in {duration:.1f}s",
                error=str(exc_val),
            )
        else:
            self._status.status = "success"
            log_info(f"Step '{self.step_name}' completed in {duration:.1f}s")

        if self.report is not None:
            self.report.record(self._status)

        return False  # Propagate exception

    @property
    def status(self) -> StepStatus:
        return self._status
