"""Root CLI group for boxctl with global flags and command registration."""

from __future__ import annotations

from pathlib import Path

import click

from boxctl import __version__
from boxctl.commands import register_commands
from boxctl.commands._context import AppContext
from boxctl.config.settings import BoxSettings


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="boxctl")
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output.")
@click.option("-q", "--quiet", is_flag=True, help="Minimal output.")
@click.option("-v", "--verbose", is_flag=True, help="Detailed output with debug info.")
@click.option("--log-json", is_flag=True, help="Structured JSON log output to stderr.")
@click.option("-c", "--config", "config_path", default=None, help="Override config file path.")
@click.option(
    "--state-dir",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Override the host state directory.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    json_output: bool,
    quiet: bool,
    verbose: bool,
    log_json: bool,
    config_path: str | None,
    state_dir: Path | None,
) -> None:
    """boxctl — local PHP development environment orchestrator."""
    ctx.ensure_object(dict)
    overrides = ctx.obj if isinstance(ctx.obj, dict) else {}
    settings = BoxSettings.from_cli(
        config_path=config_path,
        state_dir=state_dir,
        json_output=json_output,
        quiet=quiet,
        verbose=verbose,
        log_json=log_json,
    )
    ctx.obj = AppContext(
        settings,
        runner=overrides.get("runner"),
        platform=overrides.get("platform"),
    )
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


register_commands(cli)
