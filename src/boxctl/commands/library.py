"""Command group: the template library used by the generators."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from boxctl.commands._base import BoxGroup
from boxctl.infrastructure.templates import TEMPLATE_GROUPS

if TYPE_CHECKING:
    from boxctl.commands._context import AppContext

_LIBRARY_EXAMPLES = """\
  boxctl library list
  boxctl library list --group nginx
  boxctl library show nginx/vhost.conf.j2"""


@click.group(cls=BoxGroup, examples=_LIBRARY_EXAMPLES)
@click.pass_obj
def library(app: AppContext) -> None:
    """Inspect templates and their host overrides."""


@library.command(
    "list",
    examples="""\
  boxctl library list
  boxctl -q library list --group php""",
)
@click.option(
    "--group", type=click.Choice(TEMPLATE_GROUPS), default=None, help="Only this group."
)
@click.pass_obj
def list_templates(app: AppContext, group: str | None) -> None:
    """List templates, marking those replaced by a host override."""
    from boxctl.services.library import LibraryService

    app.emit(LibraryService(app.host).list_templates(group))


@library.command(
    examples="""\
  boxctl library show nginx/vhost.conf.j2
  boxctl library show php/pool.conf.j2 > ~/.boxctl/templates/php/pool.conf.j2""",
)
@click.argument("ref")
@click.pass_obj
def show(app: AppContext, ref: str) -> None:
    """Print the template GROUP/NAME as the generators load it."""
    from boxctl.services.library import LibraryService

    result = LibraryService(app.host).show_template(ref)
    if result.ok and not app.settings.json_output and app.settings.quiet:
        # Raw source, suitable for redirecting into an override file.
        click.echo(result.data["source"], nl=False)
        return
    app.emit(result)
