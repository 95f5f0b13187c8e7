"""PhpSystemService — explicit control over host-global PHP settings.

Reconciliation only stages ``php-system-<php>.ini``; these operations are the
only ones that activate, deactivate or delete it. When no PHP version is
given, the version declared by the project around *cwd* is used.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from boxctl.config.descriptor import load_descriptor
from boxctl.config.discovery import find_project_root
from boxctl.domain.errors import BoxError, ConfigError, ExternalToolError
from boxctl.services.base import BaseService
from boxctl.services.result import ServiceError, ServiceResult
from boxctl.services.telemetry import traced


class PhpSystemService(BaseService):
    def resolve_version(self, php_version: str | None, cwd: Path | None = None) -> str:
        """Explicit *php_version*, else the current project's ``php``.

        Raises:
            ConfigError: If no version was given and no descriptor is found.
        """
        if php_version:
            return php_version
        root = find_project_root(cwd or Path.cwd())
        if root is None:
            raise ConfigError("no PHP version given and no project descriptor found")
        return load_descriptor(root).php

    def _describe(self, php_version: str) -> dict[str, Any]:
        manager = self._host.system_ini
        owner = manager.get_current_owner(php_version)
        link = manager.symlink_path(php_version)
        return {
            "php_version": php_version,
            "ini_path": str(manager.ini_path(php_version)),
            "staged": manager.ini_path(php_version).is_file(),
            "owner": owner.model_dump(mode="json") if owner else None,
            "active": manager.is_active(php_version),
            "symlink": str(link) if link else None,
            "enable_command": manager.enable_command(php_version),
            "disable_command": manager.disable_command(php_version),
        }

    @traced
    def show(self, php_version: str | None = None) -> ServiceResult:
        """Status of one PHP version, or of every staged version."""
        versions = [php_version] if php_version else self._host.system_ini.staged_versions()
        return ServiceResult(
            ok=True,
            op="php_system_show",
            data={"versions": [self._describe(v) for v in versions]},
        )

    @traced
    def enable(self, php_version: str | None = None, *, cwd: Path | None = None) -> ServiceResult:
        try:
            version = self.resolve_version(php_version, cwd)
            self._host.system_ini.enable(version)
        except BoxError as exc:
            return ServiceResult.failure("php_system_enable", exc)
        return ServiceResult(
            ok=True,
            op="php_system_enable",
            data=self._describe(version),
            warnings=self._reload(version),
        )

    @traced
    def disable(self, php_version: str | None = None, *, cwd: Path | None = None) -> ServiceResult:
        try:
            version = self.resolve_version(php_version, cwd)
            self._host.system_ini.disable(version)
        except BoxError as exc:
            return ServiceResult.failure("php_system_disable", exc)
        return ServiceResult(
            ok=True,
            op="php_system_disable",
            data=self._describe(version),
            warnings=self._reload(version),
        )

    @traced
    def clear(self, php_version: str | None = None, *, cwd: Path | None = None) -> ServiceResult:
        """Delete the staged ini and owner record.

        Refuses while the ini is still linked into the scan directory, which
        would leave PHP loading a dangling file.
        """
        try:
            version = self.resolve_version(php_version, cwd)
        except ConfigError as exc:
            return ServiceResult.failure("php_system_clear", exc)
        manager = self._host.system_ini
        if manager.is_active(version):
            return ServiceResult(
                ok=False,
                op="php_system_clear",
                error=ServiceError(
                    code="ACTIVE",
                    message=f"PHP {version} system settings are active; disable them first",
                    detail={"command": manager.disable_command(version)},
                ),
            )
        removed = manager.clear(version)
        warnings = [] if removed else [f"nothing staged for PHP {version}"]
        return ServiceResult(
            ok=True,
            op="php_system_clear",
            data={"php_version": version, "removed": removed},
            warnings=warnings,
        )

    def _reload(self, php_version: str) -> list[str]:
        """FPM only reads the scan directory at startup."""
        try:
            self._host.fpm(php_version).reload_if_running()
        except ExternalToolError as exc:
            return [str(exc.to_issue())]
        return []
