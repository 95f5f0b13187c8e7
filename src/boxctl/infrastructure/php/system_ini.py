"""Host-global PHP settings: one ini file per PHP version, one owner at a time.

``PHP_INI_SYSTEM`` directives cannot be set per pool, so every project on a
PHP version shares a single ``<state>/php/php-system-<php>.ini``. Ownership
is recorded next to it in ``php-system-<php>.owner.json``:

- the current owner re-running rewrites its own record (and leaves it alone
  when nothing changed, keeping reruns byte-identical);
- a different project claiming the file replaces the previous settings
  wholesale (last write wins, never merged) and the caller receives an
  :class:`~boxctl.domain.errors.OwnershipOverrideWarning`.

Staging and activation are separate. Writing the ini never makes it live;
only :meth:`SystemIniManager.enable` (``boxctl php system enable``) links it
into PHP's scan directory, and that requires elevated privileges.
"""

from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from boxctl.domain.errors import ExternalToolError, OwnershipOverrideWarning
from boxctl.domain.phpini import diff_settings, validate_ini_value
from boxctl.infrastructure.platform import Platform
from boxctl.infrastructure.runner import CommandRunner
from boxctl.infrastructure.templates import build_template_environment

logger = logging.getLogger(__name__)

SYMLINK_NAME = "99-boxctl-system.ini"
COMPONENT = "php-system"
UNKNOWN_SCAN_DIR = "cannot determine PHP scan directory on this platform"


class SystemIniOwner(BaseModel):
    """Who currently populates a PHP version's host-global ini."""

    project_name: str
    project_path: str
    php_version: str
    settings: dict[str, str] = Field(default_factory=dict)
    updated_at: datetime

    def same_project(self, project_name: str, project_path: str) -> bool:
        return self.project_name == project_name and self.project_path == project_path


@dataclass
class ClaimResult:
    """Outcome of :meth:`SystemIniManager.claim`.

    Attributes:
        owner: The record now on disk.
        previous: The record that was replaced, if any.
        changed: False when the ini and owner record were left untouched.
        warning: Set when ownership moved to a different project.
    """

    owner: SystemIniOwner
    previous: SystemIniOwner | None
    changed: bool
    warning: OwnershipOverrideWarning | None = None


class SystemIniManager:
    def __init__(self, state_dir: Path, platform: Platform, runner: CommandRunner) -> None:
        self.state_dir = state_dir
        self.platform = platform
        self.runner = runner
        self._env = build_template_environment("php", state_dir=state_dir)

    @property
    def php_dir(self) -> Path:
        return self.state_dir / "php"

    def ini_path(self, php_version: str) -> Path:
        return self.php_dir / f"php-system-{php_version}.ini"

    def owner_path(self, php_version: str) -> Path:
        return self.php_dir / f"php-system-{php_version}.owner.json"

    def staged_versions(self) -> list[str]:
        """PHP versions with a staged ini or owner record."""
        if not self.php_dir.is_dir():
            return []
        versions = {
            path.name.removeprefix("php-system-").split(".owner.json")[0].removesuffix(".ini")
            for path in self.php_dir.glob("php-system-*")
        }
        return sorted(versions)

    def get_current_owner(self, php_version: str) -> SystemIniOwner | None:
        path = self.owner_path(php_version)
        if not path.is_file():
            return None
        try:
            return SystemIniOwner.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as exc:
            logger.warning("Ignoring unreadable owner record %s: %s", path, exc)
            return None

    def render(self, owner: SystemIniOwner) -> str:
        return self._env.get_template("system.ini.j2").render(
            owner=owner,
            settings=sorted(owner.settings.items()),
        )

    def claim(
        self,
        project_name: str,
        project_path: Path | str,
        php_version: str,
        settings: dict[str, str],
    ) -> ClaimResult:
        """Write *settings* as the host-global ini and record the owner.

        Raises:
            InvalidIniValueError: If any value is malformed. Nothing is written.
        """
        for key, value in settings.items():
            validate_ini_value(key, value)

        project_path = str(project_path)
        previous = self.get_current_owner(php_version)
        ini = self.ini_path(php_version)
        if (
            previous is not None
            and previous.same_project(project_name, project_path)
            and previous.settings == settings
            and ini.is_file()
        ):
            return ClaimResult(owner=previous, previous=previous, changed=False)

        owner = SystemIniOwner(
            project_name=project_name,
            project_path=project_path,
            php_version=php_version,
            settings=dict(sorted(settings.items())),
            updated_at=datetime.now(UTC),
        )
        self.php_dir.mkdir(parents=True, exist_ok=True)
        ini.write_text(self.render(owner), encoding="utf-8")
        self.owner_path(php_version).write_text(
            owner.model_dump_json(indent=2) + "\n", encoding="utf-8"
        )

        warning = None
        if previous is not None and not previous.same_project(project_name, project_path):
            warning = OwnershipOverrideWarning(
                php_version,
                previous.project_name,
                previous.project_path,
                project_name,
                diff_settings(previous.settings, settings),
            )
            logger.warning(warning.describe())
        return ClaimResult(owner=owner, previous=previous, changed=True, warning=warning)

    def clear(self, php_version: str) -> bool:
        """Delete the ini and owner record. Returns False if neither existed."""
        existed = False
        for path in (self.ini_path(php_version), self.owner_path(php_version)):
            if path.exists():
                path.unlink()
                existed = True
        return existed

    # -- activation ---------------------------------------------------------

    def symlink_path(self, php_version: str) -> Path | None:
        scan_dir = self.platform.php_scan_dir(php_version)
        if scan_dir is None:
            return None
        return scan_dir / SYMLINK_NAME

    def is_active(self, php_version: str) -> bool:
        link = self.symlink_path(php_version)
        if link is None or not link.is_symlink():
            return False
        return Path(os.readlink(link)) == self.ini_path(php_version)

    def _enable_argv(self, php_version: str) -> list[str] | None:
        link = self.symlink_path(php_version)
        if link is None:
            return None
        return ["ln", "-sf", str(self.ini_path(php_version)), str(link)]

    def _disable_argv(self, php_version: str) -> list[str] | None:
        link = self.symlink_path(php_version)
        if link is None:
            return None
        return ["rm", "-f", str(link)]

    def enable_command(self, php_version: str) -> str | None:
        """Exact shell command that activates the ini, for manual use."""
        argv = self._enable_argv(php_version)
        return shlex.join(["sudo", *argv]) if argv else None

    def disable_command(self, php_version: str) -> str | None:
        argv = self._disable_argv(php_version)
        return shlex.join(["sudo", *argv]) if argv else None

    def enable(self, php_version: str) -> Path:
        """Link the staged ini into PHP's scan directory.

        Raises:
            ExternalToolError: If no ini is staged, the scan directory is
                unknown on this platform, or the link command fails.
        """
        if not self.ini_path(php_version).is_file():
            raise ExternalToolError(
                COMPONENT, f"no system settings staged for PHP {php_version}"
            )
        argv = self._enable_argv(php_version)
        if argv is None:
            raise ExternalToolError(COMPONENT, UNKNOWN_SCAN_DIR)
        self.runner.run(COMPONENT, argv, privileged=True)
        return Path(argv[-1])

    def disable(self, php_version: str) -> Path:
        argv = self._disable_argv(php_version)
        if argv is None:
            raise ExternalToolError(COMPONENT, UNKNOWN_SCAN_DIR)
        self.runner.run(COMPONENT, argv, privileged=True)
        return Path(argv[-1])
