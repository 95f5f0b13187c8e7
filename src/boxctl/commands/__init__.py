"""Subcommand modules for boxctl.

Provides register_commands() which uses deferred imports to keep
``boxctl --help`` fast as the codebase grows.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register all command groups and standalone commands on the root CLI group.

    Uses deferred imports so modules are only loaded when actually invoked.
    3 groups (have subcommands) + 7 standalone commands.
    """
    # --- Groups ---
    from boxctl.commands.dns import dns
    from boxctl.commands.library import library
    from boxctl.commands.php import php

    cli.add_command(library)
    cli.add_command(php)
    cli.add_command(dns)

    # --- Standalone commands ---
    from boxctl.commands.check import check
    from boxctl.commands.init_cmd import init_cmd
    from boxctl.commands.list_cmd import list_cmd
    from boxctl.commands.restart import restart
    from boxctl.commands.start import start
    from boxctl.commands.stop import stop
    from boxctl.commands.validate import validate

    cli.add_command(start)
    cli.add_command(stop)
    cli.add_command(restart)
    cli.add_command(check)
    cli.add_command(validate)
    cli.add_command(list_cmd)
    cli.add_command(init_cmd)
