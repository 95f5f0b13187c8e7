"""Command: stop then start."""

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
  boxctl restart
  boxctl restart --all""",
)
@project_path_argument
@all_projects_option
@click.pass_obj
def restart(app: AppContext, path: Path, all_projects: bool) -> None:
    """Stop and start a project again. Stop failures are reported as warnings."""
    from boxctl.services.reconciler import ReconcileService

    svc = ReconcileService(app.host)
    if all_projects:
        app.emit(svc.restart_all())
    else:
        app.emit(svc.restart(path))
