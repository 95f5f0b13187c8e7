"""Loopback name resolution for project domains.

Two strategies, picked by ``[dns] mode`` in the host settings:

``hosts``
    One ``127.0.0.1 <domain>`` line per domain inside a managed block of the
    hosts file. Lines outside the block are never touched.
``dnsmasq``
    A wildcard ``address=/<tld>/127.0.0.1`` rule plus an OS resolver
    registration that sends ``*.<tld>`` queries to dnsmasq.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from boxctl.config.models import DnsConfig
from boxctl.infrastructure.platform import OSType, Platform
from boxctl.infrastructure.runner import CommandRunner
from boxctl.infrastructure.templates import build_template_environment

logger = logging.getLogger(__name__)

COMPONENT = "dns"
BEGIN_MARKER = "# >>> boxctl managed hosts - do not edit manually >>>"
END_MARKER = "# <<< boxctl managed hosts <<<"
LOOPBACK = "127.0.0.1"
_ADDRESS_RE = re.compile(r"^address=/([^/]+)/", re.MULTILINE)


def managed_domains(content: str) -> list[str]:
    """Domains listed inside the managed block of a hosts file."""
    domains: list[str] = []
    inside = False
    for line in content.splitlines():
        stripped = line.strip()
        if stripped == BEGIN_MARKER:
            inside = True
        elif stripped == END_MARKER:
            inside = False
        elif inside and stripped and not stripped.startswith("#"):
            domains.extend(stripped.split()[1:])
    return domains


def render_hosts(content: str, domains: Iterable[str]) -> str:
    """Replace the managed block of *content* with *domains* (sorted).

    Examples:
        >>> print(render_hosts("127.0.0.1 localhost\\n", ["b.test", "a.test"]), end="")
        127.0.0.1 localhost
        # >>> boxctl managed hosts - do not edit manually >>>
        127.0.0.1 a.test
        127.0.0.1 b.test
        # <<< boxctl managed hosts <<<
    """
    kept: list[str] = []
    inside = False
    for line in content.splitlines():
        stripped = line.strip()
        if stripped == BEGIN_MARKER:
            inside = True
            continue
        if stripped == END_MARKER:
            inside = False
            continue
        if not inside:
            kept.append(line)
    while kept and not kept[-1].strip():
        kept.pop()

    unique = sorted(set(domains))
    if unique:
        kept.append(BEGIN_MARKER)
        kept.extend(f"{LOOPBACK} {domain}" for domain in unique)
        kept.append(END_MARKER)
    return "\n".join(kept) + "\n" if kept else ""


def _write_file(runner: CommandRunner, path: Path, content: str) -> None:
    """Write *path* directly when allowed, else through ``sudo tee``."""
    writable = os.access(path, os.W_OK) if path.exists() else os.access(path.parent, os.W_OK)
    if writable:
        path.write_text(content, encoding="utf-8")
        return
    runner.run(COMPONENT, ["tee", str(path)], input=content, privileged=True)


class HostsManager:
    def __init__(self, hosts_file: Path, runner: CommandRunner) -> None:
        self.hosts_file = hosts_file
        self.runner = runner

    def _read(self) -> str:
        if not self.hosts_file.is_file():
            return ""
        return self.hosts_file.read_text(encoding="utf-8")

    def list_domains(self) -> list[str]:
        return managed_domains(self._read())

    def add_domains(self, domains: Iterable[str]) -> list[str]:
        """Ensure *domains* are in the managed block. Returns those added."""
        content = self._read()
        current = managed_domains(content)
        added = sorted(set(domains) - set(current))
        if added:
            _write_file(self.runner, self.hosts_file, render_hosts(content, [*current, *added]))
        return added

    def remove_domains(self, domains: Iterable[str], *, dry_run: bool = False) -> list[str]:
        content = self._read()
        current = managed_domains(content)
        removed = sorted(set(current) & set(domains))
        if removed and not dry_run:
            remaining = [d for d in current if d not in removed]
            _write_file(self.runner, self.hosts_file, render_hosts(content, remaining))
        return removed


class DnsmasqManager:
    def __init__(self, state_dir: Path, runner: CommandRunner, platform: Platform) -> None:
        self.runner = runner
        self.platform = platform
        self._env = build_template_environment("dns", state_dir=state_dir)

    @property
    def config_path(self) -> Path:
        if self.platform.os_type is OSType.DARWIN:
            return self.platform.brew_prefix / "etc" / "dnsmasq.d" / "boxctl.conf"
        return Path("/etc/dnsmasq.d/boxctl.conf")

    def resolver_path(self, tld: str) -> Path:
        if self.platform.os_type is OSType.DARWIN:
            return Path("/etc/resolver") / tld
        return Path("/etc/systemd/resolved.conf.d") / f"boxctl-{tld}.conf"

    def render(self, tld: str) -> str:
        return self._env.get_template("dnsmasq.conf.j2").render(
            tld=tld, linux=self.platform.os_type is OSType.LINUX
        )

    def configured_tld(self) -> str | None:
        """TLD of the wildcard rule currently on disk, if any."""
        path = self.config_path
        if not path.is_file():
            return None
        match = _ADDRESS_RE.search(path.read_text(encoding="utf-8"))
        return match.group(1) if match else None

    def is_configured(self, tld: str) -> bool:
        return self.configured_tld() == tld

    def _resolver_content(self, tld: str) -> str:
        if self.platform.os_type is OSType.DARWIN:
            return f"nameserver {LOOPBACK}\n"
        return f"[Resolve]\nDNS=127.0.0.2\nDomains=~{tld}\n"

    def register_resolver(self, tld: str) -> None:
        path = self.resolver_path(tld)
        self.runner.run(COMPONENT, ["mkdir", "-p", str(path.parent)], privileged=True)
        _write_file(self.runner, path, self._resolver_content(tld))

    def unregister_resolver(self, tld: str) -> bool:
        path = self.resolver_path(tld)
        if not path.exists():
            return False
        self.runner.run(COMPONENT, ["rm", "-f", str(path)], privileged=True)
        return True

    def restart(self) -> None:
        argv, privileged = self.platform.service_command("restart", "dnsmasq")
        self.runner.run(COMPONENT, argv, privileged=privileged)

    def configure(self, tld: str) -> None:
        if not self.config_path.parent.is_dir():
            self.runner.run(
                COMPONENT, ["mkdir", "-p", str(self.config_path.parent)], privileged=True
            )
        _write_file(self.runner, self.config_path, self.render(tld))
        self.register_resolver(tld)
        self.restart()


@dataclass
class DnsStatus:
    mode: str
    tld: str
    managed_domains: list[str] = field(default_factory=list)
    configured: bool = False


class DnsManager:
    """Facade over both strategies, driven by :class:`DnsConfig`."""

    def __init__(
        self,
        config: DnsConfig,
        state_dir: Path,
        runner: CommandRunner,
        platform: Platform,
    ) -> None:
        self.config = config
        self.hosts = HostsManager(config.hosts_file, runner)
        self.dnsmasq = DnsmasqManager(state_dir, runner, platform)

    @property
    def mode(self) -> str:
        return self.config.mode

    def outside_tld(self, domains: Iterable[str]) -> list[str]:
        suffix = "." + self.config.tld
        return [d for d in domains if not d.endswith(suffix)]

    def ensure(self, domains: Iterable[str]) -> list[str]:
        """Make *domains* resolve to loopback. Returns newly added entries."""
        domains = list(domains)
        if self.mode == "hosts":
            return self.hosts.add_domains(domains)
        current = self.dnsmasq.configured_tld()
        if current is None:
            self.dnsmasq.configure(self.config.tld)
        elif current != self.config.tld:
            # The TLD setting changed since the rule was written.
            self.change_tld(current, self.config.tld)
        # Domains outside the wildcard still need static entries.
        outside = self.outside_tld(domains)
        return self.hosts.add_domains(outside) if outside else []

    def remove(self, domains: Iterable[str], *, dry_run: bool = False) -> list[str]:
        return self.hosts.remove_domains(domains, dry_run=dry_run)

    def change_tld(self, old: str, new: str) -> None:
        """Point the wildcard at *new*, dropping the resolver rule for *old* first."""
        if old and old != new:
            self.dnsmasq.unregister_resolver(old)
        if self.mode == "dnsmasq":
            self.dnsmasq.configure(new)

    def status(self) -> DnsStatus:
        configured = (
            bool(self.hosts.list_domains())
            if self.mode == "hosts"
            else self.dnsmasq.is_configured(self.config.tld)
        )
        return DnsStatus(
            mode=self.mode,
            tld=self.config.tld,
            managed_domains=self.hosts.list_domains(),
            configured=configured,
        )
