"""Pydantic host-settings models with code-baked defaults.

Sparse TOML contract: defaults baked here, ``~/.boxctl/config.toml`` only
contains overrides. A fresh host needs no file at all.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel


class DnsConfig(BaseModel):
    """[dns] section."""

    model_config = {"frozen": True}

    mode: Literal["hosts", "dnsmasq"] = "hosts"
    tld: str = "test"
    hosts_file: Path = Path("/etc/hosts")


class DockerConfig(BaseModel):
    """[docker] section."""

    model_config = {"frozen": True}

    enabled: bool = True
    compose_command: list[str] | None = None


class PhpConfig(BaseModel):
    """[php] section — FPM pool process-manager sizing."""

    model_config = {"frozen": True}

    user: str | None = None
    group: str | None = None
    max_children: int = 10
    start_servers: int = 2
    min_spare_servers: int = 1
    max_spare_servers: int = 3
    max_requests: int = 500


class ToolsConfig(BaseModel):
    """[tools] section."""

    model_config = {"frozen": True}

    sudo: bool = True
    timeout: float = 300.0
