"""ProjectService — list materialized projects and scaffold new descriptors."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import ValidationError

from boxctl.config.descriptor import write_descriptor
from boxctl.domain.errors import ConfigError
from boxctl.domain.project import ProjectConfig, validate_structure
from boxctl.services.base import BaseService
from boxctl.services.result import ServiceResult
from boxctl.services.telemetry import traced


class ProjectService(BaseService):
    @traced
    def list_projects(self) -> ServiceResult:
        """Every project with a reverse-proxy marker on this host."""
        projects = self._host.discovery.discover()
        warnings = [
            f"{p.name}: descriptor missing at {p.path}" for p in projects if not p.has_config
        ]
        return ServiceResult(
            ok=True,
            op="list",
            data={
                "count": len(projects),
                "projects": [p.model_dump(mode="json") for p in projects],
            },
            warnings=warnings,
        )

    @traced
    def init_project(
        self,
        project_dir: Path,
        *,
        name: str | None = None,
        php: str = "8.3",
        services: dict[str, Any] | None = None,
        force: bool = False,
    ) -> ServiceResult:
        """Write a starter ``.boxctl.yaml`` into *project_dir*.

        The domain uses the configured TLD, so dnsmasq users get a name that
        resolves without touching the hosts file.
        """
        project_dir = project_dir.resolve()
        try:
            config = ProjectConfig.scaffold(
                name or project_dir.name,
                tld=self._host.settings.dns.tld,
                php=php,
                services=services,
            )
        except ValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            error = ConfigError(f"{location}: {first['msg']}")
            return ServiceResult.failure("init", error, path=str(project_dir))
        try:
            validate_structure(config)
            project_dir.mkdir(parents=True, exist_ok=True)
            path = write_descriptor(config, project_dir, force=force)
        except ConfigError as exc:
            return ServiceResult.failure("init", exc, path=str(project_dir))
        return ServiceResult(
            ok=True,
            op="init",
            data={
                "project": config.name,
                "path": str(path),
                "domains": config.hosts,
                "php": config.php,
                "services": [kind.value for kind, _ in config.services.enabled()],
            },
        )
