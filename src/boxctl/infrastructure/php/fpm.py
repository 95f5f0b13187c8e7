"""PHP-FPM service control for one PHP version."""

from __future__ import annotations

from boxctl.infrastructure.platform import Platform
from boxctl.infrastructure.runner import CommandRunner

COMPONENT = "php-fpm"


class FPMController:
    def __init__(self, runner: CommandRunner, platform: Platform, php_version: str) -> None:
        self.runner = runner
        self.platform = platform
        self.php_version = php_version

    @property
    def service(self) -> str:
        return self.platform.fpm_service(self.php_version)

    def _control(self, action: str) -> None:
        argv, privileged = self.platform.service_command(action, self.service)
        self.runner.run(COMPONENT, argv, privileged=privileged)

    def is_running(self) -> bool:
        return self.runner.succeeds(self.platform.service_status_command(self.service))

    def start(self) -> None:
        self._control("start")

    def stop(self) -> None:
        self._control("stop")

    def reload(self) -> None:
        self._control("reload")

    def reload_if_running(self) -> bool:
        if not self.is_running():
            return False
        self.reload()
        return True

    def reload_or_start(self) -> str:
        """Reload when running, start otherwise. Returns the action taken."""
        if self.is_running():
            self.reload()
            return "reload"
        self.start()
        return "start"
