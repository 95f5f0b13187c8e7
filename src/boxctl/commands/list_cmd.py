"""Command: list projects materialized on this host."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from boxctl.commands._base import BoxCommand

if TYPE_CHECKING:
    from boxctl.commands._context import AppContext


@click.command(
    "list",
    cls=BoxCommand,
    examples="""\
  boxctl list
  boxctl -q list
  boxctl --json list""",
)
@click.pass_obj
def list_cmd(app: AppContext) -> None:
    """List projects discovered from the generated vhost markers."""
    from boxctl.services.projects import ProjectService

    app.emit(ProjectService(app.host).list_projects())
