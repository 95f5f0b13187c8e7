"""AppContext — shared Click context for all commands.

Created once by the root CLI group and flows to all subcommands via
``@click.pass_obj``.  Provides lazy Host initialization and centralized
result emission (stdout/stderr routing + exit codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from boxctl.output.formatters import OutputSettings, format_result

if TYPE_CHECKING:
    from boxctl.config.settings import BoxSettings
    from boxctl.infrastructure.host import Host
    from boxctl.infrastructure.platform import Platform
    from boxctl.infrastructure.runner import CommandRunner
    from boxctl.services.result import ServiceResult


class AppContext:
    """Shared context flowing through Click's command hierarchy.

    Subcommands access it via ``@click.pass_obj``.  The host is lazily
    initialized on first use so ``--help`` and ``--version`` never probe
    the platform.  *runner* and *platform* replace the real ones when
    given (tests pass them through ``CliRunner.invoke(obj=...)``).
    """

    def __init__(
        self,
        settings: BoxSettings,
        *,
        runner: CommandRunner | None = None,
        platform: Platform | None = None,
    ) -> None:
        self.settings = settings
        self._runner = runner
        self._platform = platform
        self._host: Host | None = None

        # Configure structured logging
        from boxctl.config.logging import configure_logging

        configure_logging(verbose=settings.verbose, log_json=settings.log_json)

        # Enable telemetry context var when verbose
        if settings.verbose:
            from boxctl.services.telemetry import enable_telemetry

            enable_telemetry()

    @property
    def host(self) -> Host:
        """The host instance (created lazily on first access)."""
        if self._host is None:
            from boxctl.infrastructure.host import Host

            self._host = Host(self.settings, runner=self._runner, platform=self._platform)
        return self._host

    def emit(self, result: ServiceResult) -> None:
        """Format and output a ServiceResult with correct exit semantics.

        * Success (``result.ok``): writes to stdout, returns normally, even
          when the run accumulated warnings or errors along the way.
          Warnings are emitted to stderr so they don't pollute piped output.
        * Failure: writes to stderr, exits with code 1.
        """
        settings = OutputSettings(
            json_output=self.settings.json_output,
            quiet=self.settings.quiet,
            verbose=self.settings.verbose,
        )
        output = format_result(result, settings=settings)
        if result.ok:
            click.echo(output)
            # In JSON mode, warnings are already in the serialized payload.
            if not settings.json_output:
                for warning in result.warnings:
                    click.echo(f"WARNING: {warning}", err=True)
        else:
            click.echo(output, err=True)
            raise SystemExit(1)
