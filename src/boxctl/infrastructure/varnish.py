"""Varnish VCL generation for the shared HTTP cache container."""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path

from boxctl.domain.ports import ServiceKind
from boxctl.domain.project import ProjectConfig
from boxctl.infrastructure.templates import build_template_environment

_UNSAFE = re.compile(r"[^A-Za-z0-9_]")

# Varnish runs in a container; nginx listens on the host.
BACKEND_HOST = "host.docker.internal"
BACKEND_PORT = 80


def backend_name(project: str) -> str:
    return "p_" + _UNSAFE.sub("_", project)


class VclGenerator:
    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir
        self._env = build_template_environment("varnish", state_dir=state_dir)

    @property
    def vcl_path(self) -> Path:
        return self.state_dir / "varnish" / "default.vcl"

    def render(self, configs: Iterable[ProjectConfig]) -> str:
        projects = sorted(
            (c for c in configs if c.services.has(ServiceKind.VARNISH)),
            key=lambda c: c.name,
        )
        backends = [
            {"name": backend_name(c.name), "hosts": sorted(c.hosts)} for c in projects
        ]
        return self._env.get_template("default.vcl.j2").render(
            backends=backends,
            backend_host=BACKEND_HOST,
            backend_port=BACKEND_PORT,
        )

    def generate(self, configs: Iterable[ProjectConfig]) -> Path:
        self.vcl_path.parent.mkdir(parents=True, exist_ok=True)
        self.vcl_path.write_text(self.render(configs), encoding="utf-8")
        return self.vcl_path
