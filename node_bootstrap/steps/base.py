"""Capability interface shared by every provisioning step."""

from __future__ import annotations

import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable

from ..common import CmdResult, run_cmd
from ..config import Config

Runner = Callable[..., CmdResult]


class Provisioner(ABC):
    """
    One idempotent install action with host side effects.

    Subclasses set `name` and implement install(). External commands go
    through `self.run` so tests can substitute a recording runner.
    """

    name: str = ""

    def __init__(self, cfg: Config, runner: Runner = run_cmd):
        self.cfg = cfg
        self.run = runner

    @abstractmethod
    def install(self) -> None:
        ...

    def download(self, url: str, dest: Path) -> Path:
        """Fetch a URL to a local file, following redirects."""
        self.run(
            ["curl", "-fsSL", "--retry", "3", "-o", str(dest), url],
            capture=False, timeout=self.cfg.cmd_timeout,
        )
        return dest

    def fetch_text(self, url: str) -> str:
        """Fetch a URL and return its body."""
        return self.run(
            ["curl", "-fsSL", url], timeout=self.cfg.cmd_timeout,
        ).stdout

    def extract(self, url: str, dest_dir: str, *members: str) -> None:
        """Download a .tar.gz and unpack it into dest_dir."""
        Path(dest_dir).mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory() as tmp:
            archive = self.download(url, Path(tmp) / "archive.tar.gz")
            self.run(["tar", "-C", dest_dir, "-xzf", str(archive), *members])

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
