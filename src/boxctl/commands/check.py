"""Command: read-only report of a project's reconciled state."""

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
  boxctl check
  boxctl -v check ~/sites/shop
  boxctl check --all
  boxctl --json check | jq .data.services""",
)
@project_path_argument
@all_projects_option
@click.pass_obj
def check(app: AppContext, path: Path, all_projects: bool) -> None:
    """Report services, ports, vhosts, certificates and system settings.

    Nothing is started, stopped or written.
    """
    from boxctl.services.reconciler import ReconcileService

    svc = ReconcileService(app.host)
    if all_projects:
        app.emit(svc.check_all())
    else:
        app.emit(svc.check(path))
