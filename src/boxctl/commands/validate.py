"""Command: validate a descriptor without touching the host."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click

from boxctl.commands._base import BoxCommand, project_path_argument

if TYPE_CHECKING:
    from boxctl.commands._context import AppContext


@click.command(
    cls=BoxCommand,
    examples="""\
  boxctl validate
  boxctl validate ~/sites/shop""",
)
@project_path_argument
@click.pass_obj
def validate(app: AppContext, path: Path) -> None:
    """Check the descriptor and its port usage against every known project."""
    from boxctl.services.reconciler import ReconcileService

    app.emit(ReconcileService(app.host).validate(path))
