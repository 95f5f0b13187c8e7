"""Subprocess wrapper for every external tool boxctl drives.

All docker, nginx, mkcert, systemctl and friends calls go through one
:class:`CommandRunner` so that failures surface uniformly as
:class:`~boxctl.domain.errors.ExternalToolError` carrying the exact command
line, and so tests can substitute a recording fake.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Sequence
from pathlib import Path

from boxctl.domain.errors import ExternalToolError

logger = logging.getLogger(__name__)


class CommandRunner:
    """Run external commands, raising :class:`ExternalToolError` on failure.

    Args:
        sudo: Prefix privileged commands with ``sudo`` (skipped when already root).
        timeout: Per-command timeout in seconds.
    """

    def __init__(self, *, sudo: bool = True, timeout: float = 300.0) -> None:
        self.sudo = sudo
        self.timeout = timeout

    def _argv(self, args: Sequence[str], privileged: bool) -> list[str]:
        argv = list(args)
        if privileged and self.sudo and hasattr(os, "geteuid") and os.geteuid() != 0:
            argv = ["sudo", *argv]
        return argv

    def run(
        self,
        component: str,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        input: str | None = None,
        privileged: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Run *args* and return the completed process.

        Raises:
            ExternalToolError: If the binary is missing, the command times
                out, or it exits non-zero.
        """
        argv = self._argv(args, privileged)
        logger.debug("run %s: %s", component, " ".join(argv))
        try:
            return subprocess.run(
                argv,
                cwd=cwd,
                input=input,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise ExternalToolError(
                component, f"{argv[0]} is not installed", command=argv
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ExternalToolError(
                component, f"timed out after {self.timeout:g}s", command=argv
            ) from exc
        except subprocess.CalledProcessError as exc:
            output = (exc.stderr or exc.stdout or "").strip()
            raise ExternalToolError(
                component,
                f"command exited with status {exc.returncode}",
                command=argv,
                output=output,
            ) from exc

    def succeeds(self, args: Sequence[str], *, cwd: Path | None = None) -> bool:
        """True when *args* runs and exits zero. Never raises."""
        try:
            self.run("probe", args, cwd=cwd)
        except ExternalToolError as exc:
            logger.debug("probe failed: %s", exc.command_line)
            return False
        return True

    def output(self, component: str, args: Sequence[str], *, cwd: Path | None = None) -> str:
        return self.run(component, args, cwd=cwd).stdout

    def which(self, name: str) -> str | None:
        return shutil.which(name)
