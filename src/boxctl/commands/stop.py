"""Command: take a project (or every project) down."""

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
  boxctl stop
  boxctl stop --dry-run
  boxctl stop ~/sites/shop
  boxctl stop --all""",
)
@project_path_argument
@all_projects_option
@click.option(
    "--dry-run", is_flag=True, help="Report what would be removed without changing anything."
)
@click.pass_obj
def stop(app: AppContext, path: Path, all_projects: bool, dry_run: bool) -> None:
    """Remove a project's vhosts, pool and hosts entries; stop unshared containers.

    Containers still used by another project keep running.
    """
    from boxctl.services.reconciler import ReconcileService

    svc = ReconcileService(app.host)
    if all_projects:
        app.emit(svc.stop_all(dry_run=dry_run))
    else:
        app.emit(svc.stop(path, dry_run=dry_run))
