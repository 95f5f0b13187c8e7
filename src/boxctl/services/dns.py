"""DnsService — report and retarget local name resolution."""

from __future__ import annotations

from dataclasses import asdict

from boxctl.domain.errors import ExternalToolError
from boxctl.services.base import BaseService
from boxctl.services.result import ServiceResult
from boxctl.services.telemetry import traced


class DnsService(BaseService):
    @traced
    def status(self) -> ServiceResult:
        dns = self._host.dns
        data = asdict(dns.status())
        data["hosts_file"] = str(dns.config.hosts_file)
        if dns.mode == "dnsmasq":
            data["config_path"] = str(dns.dnsmasq.config_path)
            data["resolver_path"] = str(dns.dnsmasq.resolver_path(dns.config.tld))
        return ServiceResult(ok=True, op="dns_status", data=data)

    @traced
    def change_tld(self, new_tld: str) -> ServiceResult:
        """Point the wildcard resolver at *new_tld*.

        Host settings are read-only to boxctl; the caller is told which key
        to set so later runs keep using the new TLD.
        """
        new_tld = new_tld.strip().lstrip(".").lower()
        old_tld = self._host.settings.dns.tld
        try:
            self._host.dns.change_tld(old_tld, new_tld)
        except ExternalToolError as exc:
            return ServiceResult.failure("dns_tld", exc, old_tld=old_tld, new_tld=new_tld)
        warnings: list[str] = []
        if new_tld != old_tld:
            warnings.append(
                f"set [dns] tld = \"{new_tld}\" in config.toml (or BOXCTL_DNS__TLD) "
                "and update project domains"
            )
        return ServiceResult(
            ok=True,
            op="dns_tld",
            data={"mode": self._host.dns.mode, "old_tld": old_tld, "new_tld": new_tld},
            warnings=warnings,
        )
