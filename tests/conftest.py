"""Shared pytest fixtures and test helpers for boxctl tests."""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Callable, Generator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner
from ruamel.yaml import YAML

from boxctl.config.settings import BoxSettings
from boxctl.domain.errors import ExternalToolError
from boxctl.infrastructure.host import Host
from boxctl.infrastructure.platform import Distro, OSType, Platform
from boxctl.infrastructure.runner import CommandRunner
from boxctl.services.telemetry import disable_telemetry

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Call:
    component: str
    argv: list[str]
    privileged: bool
    input: str | None

    @property
    def line(self) -> str:
        return shlex.join(self.argv)


def _contains(argv: Sequence[str], tokens: Sequence[str]) -> bool:
    """True when *tokens* appear in *argv* as a contiguous run."""
    width = len(tokens)
    return any(list(argv[i : i + width]) == list(tokens) for i in range(len(argv) - width + 1))


class FakeRunner(CommandRunner):
    """Records every command instead of running it.

    Commands succeed with empty output unless a failure or canned response
    was registered for a contiguous run of their argv tokens. ``mkcert``
    leaf issuance creates the certificate files so reruns see them.
    """

    def __init__(self, *, missing: Sequence[str] = ()) -> None:
        super().__init__(sudo=False)
        self.calls: list[Call] = []
        self.missing = set(missing)
        self._failures: list[tuple[tuple[str, ...], str]] = []
        self._responses: list[tuple[tuple[str, ...], str]] = []

    def fail(self, *tokens: str, output: str = "simulated failure") -> None:
        self._failures.append((tokens, output))

    def respond(self, *tokens: str, stdout: str) -> None:
        self._responses.append((tokens, stdout))

    def run(
        self,
        component: str,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        input: str | None = None,
        privileged: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        argv = list(args)
        self.calls.append(Call(component, argv, privileged, input))
        for tokens, output in self._failures:
            if _contains(argv, tokens):
                raise ExternalToolError(
                    component, "command exited with status 1", command=argv, output=output
                )
        if argv[:2] == ["mkcert", "-cert-file"]:
            Path(argv[2]).write_text(f"cert {argv[-1]}\n", encoding="utf-8")
            Path(argv[4]).write_text(f"key {argv[-1]}\n", encoding="utf-8")
        stdout = ""
        for tokens, canned in self._responses:
            if _contains(argv, tokens):
                stdout = canned
        return subprocess.CompletedProcess(argv, 0, stdout=stdout, stderr="")

    def which(self, name: str) -> str | None:
        return None if name in self.missing else f"/usr/bin/{name}"

    def ran(self, *tokens: str) -> bool:
        return any(_contains(call.argv, tokens) for call in self.calls)

    def lines(self) -> list[str]:
        return [call.line for call in self.calls]

    def reset(self) -> None:
        self.calls.clear()


@dataclass(frozen=True)
class ScanDirPlatform(Platform):
    """Debian-like platform whose PHP scan directories live under *scan_root*."""

    scan_root: Path | None = None

    def php_scan_dir(self, php_version: str) -> Path | None:
        if self.scan_root is None:
            return super().php_scan_dir(php_version)
        return self.scan_root / php_version / "conf.d"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "state"


@pytest.fixture
def hosts_file(tmp_path: Path) -> Path:
    path = tmp_path / "hosts"
    path.write_text("127.0.0.1 localhost\n", encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _isolated_host(
    monkeypatch: pytest.MonkeyPatch, state_dir: Path, hosts_file: Path
) -> None:
    """Point every settings source at the temp directory.

    Applies to fixtures and to ``boxctl`` invoked through CliRunner alike, so
    no test ever reads ``~/.boxctl`` or writes ``/etc/hosts``.
    """
    monkeypatch.delenv("BOXCTL_CONFIG", raising=False)
    monkeypatch.setenv("BOXCTL_STATE_DIR", str(state_dir))
    monkeypatch.setenv("BOXCTL_DNS__HOSTS_FILE", str(hosts_file))
    monkeypatch.setenv("BOXCTL_PHP__USER", "dev")
    monkeypatch.setenv("BOXCTL_PHP__GROUP", "staff")


@pytest.fixture(autouse=True)
def _reset_cli_state() -> Generator[None]:
    """Undo what a ``-v`` or ``--log-json`` invocation configures process-wide."""
    yield
    disable_telemetry()
    logging.getLogger().handlers.clear()


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def platform(tmp_path: Path) -> ScanDirPlatform:
    return ScanDirPlatform(OSType.LINUX, Distro.DEBIAN, scan_root=tmp_path / "scan")


@pytest.fixture
def make_host(
    monkeypatch: pytest.MonkeyPatch, fake_runner: FakeRunner, platform: ScanDirPlatform
) -> Callable[..., Host]:
    """Build a Host after applying ``BOXCTL_*`` overrides, e.g. ``dns__mode="dnsmasq"``."""

    def _make(**env: str) -> Host:
        for key, value in env.items():
            monkeypatch.setenv(f"BOXCTL_{key.upper()}", value)
        return Host(BoxSettings.from_cli(), runner=fake_runner, platform=platform)

    return _make


@pytest.fixture
def host(make_host: Callable[..., Host]) -> Host:
    """Host wired to the recording runner and a temp state directory."""
    return make_host()


@pytest.fixture
def cli_obj(fake_runner: FakeRunner, platform: ScanDirPlatform) -> dict[str, Any]:
    """``obj=`` for ``CliRunner.invoke`` so commands use the fakes."""
    return {"runner": fake_runner, "platform": platform}


# ---------------------------------------------------------------------------
# Shared test helpers (used across service and command test modules)
# ---------------------------------------------------------------------------


def write_project(parent: Path, name: str, **fields: Any) -> Path:
    """Write ``<parent>/<name>/.boxctl.yaml`` and return the project directory.

    Defaults to one ``<name>.test`` domain on PHP 8.3; *fields* replace keys.
    """
    project_dir = (parent / name).resolve()
    project_dir.mkdir(parents=True, exist_ok=True)
    data: dict[str, Any] = {
        "name": name,
        "domains": [{"host": f"{name}.test"}],
        "php": "8.3",
    }
    data.update(fields)
    yaml = YAML()
    with (project_dir / ".boxctl.yaml").open("w", encoding="utf-8") as fh:
        yaml.dump(data, fh)
    return project_dir


def snapshot(*roots: Path) -> dict[str, bytes]:
    """Bytes of every file under *roots* (files given directly are included)."""
    files: dict[str, bytes] = {}
    for root in roots:
        paths = [root] if root.is_file() else sorted(p for p in root.rglob("*") if p.is_file())
        for path in paths:
            files[str(path)] = path.read_bytes()
    return files
