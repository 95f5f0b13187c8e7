"""Command group: PHP host-global settings (``php system ...``)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from boxctl.commands._base import BoxGroup

if TYPE_CHECKING:
    from boxctl.commands._context import AppContext


@click.group(
    cls=BoxGroup,
    examples="""\
  boxctl php system show
  boxctl php system enable 8.3""",
)
@click.pass_obj
def php(app: AppContext) -> None:
    """PHP runtime management."""


@php.group(
    examples="""\
  boxctl php system show
  boxctl php system enable
  boxctl php system enable 8.3
  boxctl php system disable 8.3
  boxctl php system clear 8.3"""
)
@click.pass_obj
def system(app: AppContext) -> None:
    """Host-global PHP settings staged by start.

    These directives cannot be set per pool, so each PHP version shares one
    ini file owned by the project that last declared them. Activating it is
    always an explicit step. PHP_VERSION defaults to the version declared by
    the project in the current directory.
    """


@system.command()
@click.argument("php_version", required=False)
@click.pass_obj
def show(app: AppContext, php_version: str | None) -> None:
    """Owner, staged settings and activation state (all staged versions by default)."""
    from boxctl.services.php_system import PhpSystemService

    app.emit(PhpSystemService(app.host).show(php_version))


@system.command()
@click.argument("php_version", required=False)
@click.pass_obj
def enable(app: AppContext, php_version: str | None) -> None:
    """Link the staged ini into PHP's scan directory (uses sudo)."""
    from boxctl.services.php_system import PhpSystemService

    app.emit(PhpSystemService(app.host).enable(php_version))


@system.command()
@click.argument("php_version", required=False)
@click.pass_obj
def disable(app: AppContext, php_version: str | None) -> None:
    """Remove the scan-directory link (uses sudo)."""
    from boxctl.services.php_system import PhpSystemService

    app.emit(PhpSystemService(app.host).disable(php_version))


@system.command()
@click.argument("php_version", required=False)
@click.pass_obj
def clear(app: AppContext, php_version: str | None) -> None:
    """Delete the staged ini and its owner record."""
    from boxctl.services.php_system import PhpSystemService

    app.emit(PhpSystemService(app.host).clear(php_version))
