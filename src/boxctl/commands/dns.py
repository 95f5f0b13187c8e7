"""Command group: local name resolution."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from boxctl.commands._base import BoxGroup

if TYPE_CHECKING:
    from boxctl.commands._context import AppContext

_DNS_EXAMPLES = """\
  boxctl dns status
  boxctl dns tld localhost"""


@click.group(cls=BoxGroup, examples=_DNS_EXAMPLES)
@click.pass_obj
def dns(app: AppContext) -> None:
    """Hosts-file entries or the dnsmasq wildcard resolver."""


@dns.command()
@click.pass_obj
def status(app: AppContext) -> None:
    """Show the strategy, TLD and managed hosts entries."""
    from boxctl.services.dns import DnsService

    app.emit(DnsService(app.host).status())


@dns.command()
@click.argument("new_tld")
@click.pass_obj
def tld(app: AppContext, new_tld: str) -> None:
    """Point the wildcard resolver at NEW_TLD, dropping the old resolver rule."""
    from boxctl.services.dns import DnsService

    app.emit(DnsService(app.host).change_tld(new_tld))
