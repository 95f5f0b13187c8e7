"""Host — the single entry point to every host-level collaborator.

Services receive a :class:`Host` at construction time and never build
generators or controllers themselves. Tests build one with a recording
runner and a fixed :class:`Platform`.
"""

from __future__ import annotations

from pathlib import Path

from boxctl.config.settings import BoxSettings
from boxctl.domain.errors import StateDirectoryError
from boxctl.infrastructure.compose import ComposeGenerator, DockerController
from boxctl.infrastructure.discovery import ProjectDiscovery
from boxctl.infrastructure.dns import DnsManager
from boxctl.infrastructure.nginx import NginxController, VhostGenerator
from boxctl.infrastructure.php import FPMController, PoolGenerator, SystemIniManager
from boxctl.infrastructure.platform import Platform
from boxctl.infrastructure.runner import CommandRunner
from boxctl.infrastructure.ssl import SslManager

STATE_SUBDIRS = ("docker", "php", "nginx/vhosts", "certs", "run", "logs")


class Host:
    def __init__(
        self,
        settings: BoxSettings,
        *,
        runner: CommandRunner | None = None,
        platform: Platform | None = None,
    ) -> None:
        self.settings = settings
        self.state_dir: Path = settings.state_dir
        self.runner = runner or CommandRunner(
            sudo=settings.tools.sudo, timeout=settings.tools.timeout
        )
        self.platform = platform or Platform.detect()

        self.ssl = SslManager(self.state_dir, self.runner, self.platform)
        self.pools = PoolGenerator(self.state_dir, settings.php)
        self.system_ini = SystemIniManager(self.state_dir, self.platform, self.runner)
        self.vhosts = VhostGenerator(self.state_dir, self.pools, self.ssl)
        self.nginx = NginxController(self.runner, self.platform)
        self.compose = ComposeGenerator(self.state_dir)
        self.docker = DockerController(
            self.runner,
            self.compose.compose_file_path,
            compose_command=settings.docker.compose_command,
        )
        self.dns = DnsManager(settings.dns, self.state_dir, self.runner, self.platform)
        self.discovery = ProjectDiscovery(self.vhosts.vhosts_dir)

    def fpm(self, php_version: str) -> FPMController:
        return FPMController(self.runner, self.platform, php_version)

    def ensure_state_dirs(self) -> None:
        """Create the state directory tree.

        Raises:
            StateDirectoryError: If any directory cannot be created.
        """
        for sub in STATE_SUBDIRS:
            path = self.state_dir / sub
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StateDirectoryError(f"cannot create {path}: {exc}") from exc
