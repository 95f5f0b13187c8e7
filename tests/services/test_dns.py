"""Tests for DnsService."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from boxctl.domain.errors import ExternalToolError
from boxctl.infrastructure.host import Host
from boxctl.services.dns import DnsService


def test_status_hosts_mode(host: Host) -> None:
    host.dns.ensure(["shop.test"])
    result = DnsService(host).status()
    assert result.ok
    assert result.op == "dns_status"
    assert result.data["mode"] == "hosts"
    assert result.data["managed_domains"] == ["shop.test"]
    assert result.data["hosts_file"] == str(host.settings.dns.hosts_file)
    assert "config_path" not in result.data


def test_status_dnsmasq_mode(make_host: Callable[..., Host]) -> None:
    result = DnsService(make_host(dns__mode="dnsmasq")).status()
    assert result.data["mode"] == "dnsmasq"
    assert result.data["resolver_path"].endswith("boxctl-test.conf")


def test_change_tld_hints_setting(host: Host) -> None:
    result = DnsService(host).change_tld(".Local")
    assert result.ok
    assert result.data == {"mode": "hosts", "old_tld": "test", "new_tld": "local"}
    assert "BOXCTL_DNS__TLD" in result.warnings[0]


def test_change_tld_same_is_quiet(host: Host) -> None:
    assert DnsService(host).change_tld("test").warnings == []


def test_change_tld_failure(
    make_host: Callable[..., Host], monkeypatch: pytest.MonkeyPatch
) -> None:
    host = make_host(dns__mode="dnsmasq")

    def refuse(tld: str) -> None:
        raise ExternalToolError("dns", f"cannot configure .{tld}", command=["systemctl"])

    monkeypatch.setattr(host.dns.dnsmasq, "configure", refuse)
    result = DnsService(host).change_tld("local")
    assert not result.ok
    assert result.error is not None
    assert result.error.code == "EXTERNAL_TOOL_ERROR"
    assert result.error.detail["new_tld"] == "local"

