"""Command: bring a project (or every project) up."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click

from boxctl.commands._base import BoxCommand, all_projects_option, project_path_argument

if TYPE_CHECKING:
    from boxctl.commands._context import AppContext


@click.command(
    cls=BoxCommand,
    examples="""\
  boxctl start
  boxctl start ~/sites/shop
  boxctl start --all
  boxctl --json start""",
)
@project_path_argument
@all_projects_option
@click.pass_obj
def start(app: AppContext, path: Path, all_projects: bool) -> None:
    """Start containers, PHP pool, vhosts, certificates and DNS for a project."""
    from boxctl.services.reconciler import ReconcileService

    svc = ReconcileService(app.host)
    if all_projects:
        app.emit(svc.start_all())
    else:
        app.emit(svc.start(path))
