"""Custom Click base classes and shared options.

BoxCommand and BoxGroup accept an ``examples`` parameter; passing
``--examples`` prints them and exits, which keeps ``--help`` concise.
The reconcile commands share the ``PATH`` argument and ``--all`` flag
defined here.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import click


def _add_examples_option(cmd: click.Command, examples: str) -> None:
    """Attach an eager ``--examples`` flag to a Click command or group."""

    def show_examples(ctx: click.Context, _param: click.Parameter, value: bool) -> None:
        if not value:
            return
        click.echo(f"Examples for '{ctx.command_path}':\n")
        click.echo(examples)
        ctx.exit(0)

    cmd.params.append(
        click.Option(
            ["--examples"],
            is_flag=True,
            expose_value=False,
            is_eager=True,
            callback=show_examples,
            help="Show usage examples.",
        )
    )


class BoxCommand(click.Command):
    """Click Command subclass that supports an ``--examples`` flag."""

    def __init__(self, *args: Any, examples: str | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.examples = examples
        if examples:
            _add_examples_option(self, examples)


class BoxGroup(click.Group):
    """Click Group subclass that supports an ``--examples`` flag.

    Subcommands default to :class:`BoxCommand`, and nested groups to
    :class:`BoxGroup`, so ``examples=`` works without ``cls=`` each time.
    """

    command_class = BoxCommand

    def __init__(self, *args: Any, examples: str | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.examples = examples
        if examples:
            _add_examples_option(self, examples)


BoxGroup.group_class = BoxGroup


def project_path_argument[**P, R](func: Callable[P, R]) -> Callable[P, R]:
    """Optional ``PATH`` argument; the descriptor is searched upward from it."""
    return click.argument(
        "path",
        required=False,
        default=".",
        type=click.Path(file_okay=False, path_type=Path),
    )(func)


def all_projects_option[**P, R](func: Callable[P, R]) -> Callable[P, R]:
    return click.option(
        "--all",
        "all_projects",
        is_flag=True,
        help="Act on every project discovered on this host.",
    )(func)
