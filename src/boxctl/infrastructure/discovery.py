"""Project discovery from generated reverse-proxy artifacts.

The set of "known projects" is whatever has a ``<project>.upstream.conf``
marker in the vhosts directory. It is a rebuildable cache, not a registry:
deleting the markers only means the next ``boxctl start`` in each project
re-creates them.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel, Field

from boxctl.config.discovery import DESCRIPTOR_FILENAME
from boxctl.domain.services import ServiceInstance
from boxctl.infrastructure.nginx import MARKER_SUFFIX, read_headers

logger = logging.getLogger(__name__)

_SERVER_NAME = re.compile(r"^\s*server_name\s+([^;]+);")


class ProjectInfo(BaseModel):
    """A project materialized on this host."""

    model_config = {"frozen": True}

    name: str
    path: Path
    php_version: str = ""
    domains: list[str] = Field(default_factory=list)
    has_config: bool = False


class ProjectDiscovery:
    def __init__(self, vhosts_dir: Path) -> None:
        self.vhosts_dir = vhosts_dir

    def _domains_for(self, project: str) -> list[str]:
        domains: set[str] = set()
        for path in self.vhosts_dir.glob("*.conf"):
            if path.name.endswith(MARKER_SUFFIX):
                continue
            if read_headers(path).get("project") != project:
                continue
            for line in path.read_text(encoding="utf-8").splitlines():
                match = _SERVER_NAME.match(line)
                if match:
                    domains.update(match.group(1).split())
        return sorted(domains)

    def discover(self) -> list[ProjectInfo]:
        """Every project with a marker, sorted by name."""
        if not self.vhosts_dir.is_dir():
            return []
        projects: list[ProjectInfo] = []
        for marker in sorted(self.vhosts_dir.glob(f"*{MARKER_SUFFIX}")):
            headers = read_headers(marker)
            name = headers.get("project")
            raw_path = headers.get("path")
            if not name or not raw_path:
                logger.debug("Skipping marker without headers: %s", marker)
                continue
            path = Path(raw_path)
            projects.append(
                ProjectInfo(
                    name=name,
                    path=path,
                    php_version=headers.get("php", ""),
                    domains=self._domains_for(name),
                    has_config=(path / DESCRIPTOR_FILENAME).is_file(),
                )
            )
        return sorted(projects, key=lambda p: p.name)


def orphaned_services(defined: Iterable[str], required: Iterable[ServiceInstance]) -> list[str]:
    """Compose services that no discovered project requires any more."""
    needed = {instance.service_name for instance in required}
    return sorted(set(defined) - needed)
