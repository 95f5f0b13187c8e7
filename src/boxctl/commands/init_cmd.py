"""Command: project scaffolding (named init_cmd to avoid shadowing builtins)."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from boxctl.commands._base import BoxCommand

if TYPE_CHECKING:
    from boxctl.commands._context import AppContext

_INIT_EXAMPLES = """\
  boxctl init
  boxctl init ~/sites/shop --name shop --php 8.2
  boxctl init . --service mysql=8.4 --service redis --service opensearch=2.19
  boxctl init . --no-services --force"""


def _parse_services(values: tuple[str, ...]) -> dict[str, Any]:
    """``kind`` or ``kind=version`` pairs into a descriptor ``services`` map."""
    services: dict[str, Any] = {}
    for value in values:
        kind, sep, version = value.partition("=")
        services[kind.strip().lower()] = version.strip() if sep else True
    return services


@click.command("init", cls=BoxCommand, examples=_INIT_EXAMPLES)
@click.argument(
    "path",
    required=False,
    default=".",
    type=click.Path(file_okay=False, path_type=Path),
)
@click.option("--name", default=None, help="Project name (defaults to the directory name).")
@click.option("--php", "php_version", default="8.3", show_default=True, help="PHP version.")
@click.option(
    "--service",
    "services",
    multiple=True,
    help="Service to enable, as KIND or KIND=VERSION. Repeatable.",
)
@click.option("--no-services", is_flag=True, help="Declare no container services.")
@click.option("--force", is_flag=True, help="Overwrite an existing descriptor.")
@click.pass_obj
def init_cmd(
    app: AppContext,
    path: Path,
    name: str | None,
    php_version: str,
    services: tuple[str, ...],
    no_services: bool,
    force: bool,
) -> None:
    """Write a starter .boxctl.yaml for a project."""
    from boxctl.services.projects import ProjectService

    declared: dict[str, Any] | None = None
    if no_services:
        declared = {}
    elif services:
        declared = _parse_services(services)

    app.emit(
        ProjectService(app.host).init_project(
            path,
            name=name,
            php=php_version,
            services=declared,
            force=force,
        )
    )
