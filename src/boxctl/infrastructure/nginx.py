"""Reverse-proxy vhosts and the per-project materialization marker.

Layout under ``<state>/nginx/vhosts/`` (include ``*.conf`` from nginx.conf):

- ``<project>.upstream.conf``: the upstream bound to the project's pool
  socket, headed by ``# boxctl-project``/``# boxctl-path``/``# boxctl-php``
  lines. Its presence is the marker :mod:`boxctl.infrastructure.discovery`
  reads.
- ``<project>-<host>.conf``: one server block per domain.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from pathlib import Path

from boxctl.domain.errors import ExternalToolError
from boxctl.domain.project import ProjectConfig
from boxctl.infrastructure.php.pool import PoolGenerator
from boxctl.infrastructure.platform import Platform
from boxctl.infrastructure.runner import CommandRunner
from boxctl.infrastructure.ssl import SslManager
from boxctl.infrastructure.templates import build_template_environment

logger = logging.getLogger(__name__)

COMPONENT = "nginx"
MARKER_SUFFIX = ".upstream.conf"
PROJECT_HEADER = "# boxctl-project:"
PATH_HEADER = "# boxctl-path:"
PHP_HEADER = "# boxctl-php:"

_UNSAFE = re.compile(r"[^A-Za-z0-9_]")


class ConfigTestError(ExternalToolError):
    """``nginx -t`` rejected the configuration on disk."""


def upstream_name(project: str) -> str:
    return "boxctl_php_" + _UNSAFE.sub("_", project)


def read_headers(path: Path) -> dict[str, str]:
    """Leading ``# boxctl-<key>: value`` comment lines of a generated file."""
    headers: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.startswith("# boxctl-"):
            if headers:
                break
            continue
        key, _, value = line[len("# boxctl-") :].partition(":")
        headers[key.strip()] = value.strip()
    return headers


class VhostGenerator:
    def __init__(self, state_dir: Path, pools: PoolGenerator, ssl: SslManager) -> None:
        self.state_dir = state_dir
        self.pools = pools
        self.ssl = ssl
        self._env = build_template_environment("nginx", state_dir=state_dir)

    @property
    def vhosts_dir(self) -> Path:
        return self.state_dir / "nginx" / "vhosts"

    def marker_path(self, project: str) -> Path:
        return self.vhosts_dir / f"{project}{MARKER_SUFFIX}"

    def vhost_path(self, project: str, host: str) -> Path:
        return self.vhosts_dir / f"{project}-{host}.conf"

    def include_directive(self) -> str:
        return f"include {self.vhosts_dir}/*.conf;"

    def render_upstream(self, config: ProjectConfig, project_path: Path) -> str:
        return self._env.get_template("upstream.conf.j2").render(
            project=config.name,
            project_path=project_path,
            php_version=config.php,
            upstream=upstream_name(config.name),
            socket=self.pools.socket_path(config.name, config.php),
        )

    def render_vhost(self, config: ProjectConfig, project_path: Path, index: int) -> str:
        domain = config.domains[index]
        certs = self.ssl.cert_paths(domain.host) if domain.ssl else None
        return self._env.get_template("vhost.conf.j2").render(
            project=config.name,
            host=domain.host,
            root=project_path / domain.root,
            ssl=domain.ssl,
            certs=certs,
            upstream=upstream_name(config.name),
        )

    def generate(self, config: ProjectConfig, project_path: Path) -> list[Path]:
        """Write the marker and every vhost; drop vhosts for removed domains."""
        self.vhosts_dir.mkdir(parents=True, exist_ok=True)
        written = [self.marker_path(config.name)]
        written[0].write_text(self.render_upstream(config, project_path), encoding="utf-8")
        for index, domain in enumerate(config.domains):
            path = self.vhost_path(config.name, domain.host)
            path.write_text(self.render_vhost(config, project_path, index), encoding="utf-8")
            written.append(path)
        for stale in set(self.project_files(config.name)) - set(written):
            logger.debug("Removing stale vhost %s", stale)
            stale.unlink()
        return written

    def project_files(self, project: str) -> list[Path]:
        """Marker plus vhosts whose project header names *project*."""
        if not self.vhosts_dir.is_dir():
            return []
        files = []
        for path in sorted(self.vhosts_dir.glob("*.conf")):
            if read_headers(path).get("project") == project:
                files.append(path)
        return files

    def backup(self, project: str) -> dict[Path, str]:
        """Current contents of *project*'s files, for :meth:`restore`."""
        return {path: path.read_text(encoding="utf-8") for path in self.project_files(project)}

    def restore(self, project: str, saved: Mapping[Path, str]) -> None:
        """Put *project*'s files back exactly as :meth:`backup` saw them."""
        for path in self.project_files(project):
            if path not in saved:
                path.unlink(missing_ok=True)
        for path, content in saved.items():
            path.write_text(content, encoding="utf-8")

    def remove(self, project: str, *, dry_run: bool = False) -> list[Path]:
        removed = self.project_files(project)
        if not dry_run:
            for path in removed:
                path.unlink(missing_ok=True)
        return removed


class NginxController:
    def __init__(self, runner: CommandRunner, platform: Platform) -> None:
        self.runner = runner
        self.platform = platform

    def is_running(self) -> bool:
        return self.runner.succeeds(["pgrep", "nginx"])

    def test(self) -> None:
        self.runner.run(COMPONENT, ["nginx", "-t"], privileged=True)

    def start(self) -> None:
        argv, privileged = self.platform.service_command("start", "nginx")
        self.runner.run(COMPONENT, argv, privileged=privileged)

    def reload(self) -> None:
        self.runner.run(COMPONENT, ["nginx", "-s", "reload"], privileged=True)

    def test_and_reload(self, *, start_if_stopped: bool = True) -> str:
        """Dry-run the configuration, then reload (or start) nginx.

        Returns the action taken: ``reload``, ``start`` or ``none``.

        Raises:
            ConfigTestError: When the dry-run fails; nothing is reloaded,
                so the previously loaded configuration stays live.
        """
        running = self.is_running()
        if not running and not start_if_stopped:
            return "none"
        try:
            self.test()
        except ExternalToolError as exc:
            raise ConfigTestError(
                COMPONENT,
                "configuration test failed, reload skipped",
                command=exc.command,
                output=exc.output,
            ) from exc
        if running:
            self.reload()
            return "reload"
        self.start()
        return "start"
