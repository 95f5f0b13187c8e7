"""Tests for FPM pools, host-global ini ownership and FPM control."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from boxctl.config.models import PhpConfig
from boxctl.domain.errors import ExternalToolError, InvalidIniValueError
from boxctl.domain.project import ProjectConfig
from boxctl.infrastructure.php import FPMController, PoolGenerator, SystemIniManager
from boxctl.infrastructure.platform import Distro, OSType, Platform
from tests.conftest import FakeRunner, ScanDirPlatform


def _project(name: str = "shop", **fields: object) -> ProjectConfig:
    data: dict[str, object] = {"name": name, "domains": [{"host": f"{name}.test"}], "php": "8.3"}
    data.update(fields)
    return ProjectConfig.model_validate(data)


@pytest.fixture
def pools(state_dir: Path) -> PoolGenerator:
    return PoolGenerator(state_dir, PhpConfig(user="dev", group="staff", max_children=7))


@pytest.fixture
def system_ini(
    state_dir: Path, platform: ScanDirPlatform, fake_runner: FakeRunner
) -> SystemIniManager:
    return SystemIniManager(state_dir, platform, fake_runner)


def _activate(manager: SystemIniManager, php_version: str) -> Path:
    """Create the scan-directory symlink the way ``php system enable`` would."""
    link = manager.symlink_path(php_version)
    assert link is not None
    link.parent.mkdir(parents=True, exist_ok=True)
    os.symlink(manager.ini_path(php_version), link)
    return link


# ---------------------------------------------------------------------------
# Pools
# ---------------------------------------------------------------------------


class TestPoolGenerator:
    def test_paths(self, pools: PoolGenerator, state_dir: Path) -> None:
        assert pools.pool_path("shop", "8.3") == state_dir / "php" / "pools" / "8.3" / "shop.conf"
        assert pools.socket_path("shop", "8.3") == state_dir / "run" / "shop-php8.3.sock"
        assert pools.include_directive("8.3") == f"include={state_dir}/php/pools/8.3/*.conf"

    def test_render_values(self, pools: PoolGenerator) -> None:
        content = pools.render(
            _project(php_ini={"memory_limit": "2G", "display_errors": "1"}, env={"APP_ENV": "dev"})
        )
        assert "[shop]" in content
        assert "user = dev" in content
        assert "group = staff" in content
        assert "pm.max_children = 7" in content
        assert "php_value[memory_limit] = 2G" in content
        assert "php_value[display_errors] = 1" in content
        assert "php_admin_value[opcache.enable] = 1" in content
        assert "php_admin_value[realpath_cache_size] = 10M" in content
        assert "env[APP_ENV] = dev" in content

    def test_system_directives_excluded(self, pools: PoolGenerator) -> None:
        content = pools.render(
            _project(php_ini={"opcache.preload": "/srv/preload.php", "opcache.jit": "tracing"})
        )
        assert "opcache.preload" not in content
        assert "opcache.jit" not in content

    def test_invalid_override_raises(self, pools: PoolGenerator) -> None:
        with pytest.raises(InvalidIniValueError):
            pools.render(_project(php_ini={"memory_limit": "a lot"}))

    def test_generate_and_remove(self, pools: PoolGenerator) -> None:
        path = pools.generate(_project())
        assert path.is_file()
        pools.generate(_project(php="8.2"))
        assert [p.parent.name for p in pools.find_pools("shop")] == ["8.2", "8.3"]

        assert pools.remove("shop", dry_run=True) == pools.find_pools("shop")
        assert path.is_file()
        removed = pools.remove("shop")
        assert len(removed) == 2
        assert pools.find_pools("shop") == []

    def test_other_projects_untouched(self, pools: PoolGenerator) -> None:
        pools.generate(_project("shop"))
        other = pools.generate(_project("blog"))
        pools.remove("shop")
        assert other.is_file()


# ---------------------------------------------------------------------------
# Host-global ini
# ---------------------------------------------------------------------------


class TestSystemIniClaim:
    def test_first_claim(self, system_ini: SystemIniManager, tmp_path: Path) -> None:
        claim = system_ini.claim("a", tmp_path / "a", "8.3", {"opcache.jit": "tracing"})
        assert claim.changed is True
        assert claim.previous is None
        assert claim.warning is None
        content = system_ini.ini_path("8.3").read_text(encoding="utf-8")
        assert "opcache.jit = tracing" in content
        assert "Owner: a" in content
        owner = system_ini.get_current_owner("8.3")
        assert owner is not None
        assert owner.project_name == "a"

    def test_same_owner_rerun_is_byte_identical(
        self, system_ini: SystemIniManager, tmp_path: Path
    ) -> None:
        settings = {"opcache.jit": "tracing"}
        system_ini.claim("a", tmp_path / "a", "8.3", settings)
        before = (
            system_ini.ini_path("8.3").read_bytes(),
            system_ini.owner_path("8.3").read_bytes(),
        )
        claim = system_ini.claim("a", tmp_path / "a", "8.3", dict(settings))
        assert claim.changed is False
        assert claim.warning is None
        after = (
            system_ini.ini_path("8.3").read_bytes(),
            system_ini.owner_path("8.3").read_bytes(),
        )
        assert after == before

    def test_other_project_replaces_wholesale(
        self, system_ini: SystemIniManager, tmp_path: Path
    ) -> None:
        system_ini.claim(
            "a", tmp_path / "a", "8.3", {"opcache.jit": "tracing", "opcache.preload": "/a.php"}
        )
        claim = system_ini.claim("b", tmp_path / "b", "8.3", {"opcache.jit": "off"})
        content = system_ini.ini_path("8.3").read_text(encoding="utf-8")
        assert "opcache.jit = off" in content
        assert "opcache.preload" not in content
        assert claim.warning is not None
        assert claim.warning.previous_project == "a"
        assert claim.warning.new_project == "b"
        assert "opcache.jit: tracing -> off" in claim.warning.changes
        issue = claim.warning.to_issue()
        assert issue.component == "php-system"
        assert "now owned by 'b'" in issue.message

    def test_versions_are_independent(self, system_ini: SystemIniManager, tmp_path: Path) -> None:
        system_ini.claim("a", tmp_path / "a", "8.2", {"opcache.jit": "off"})
        claim = system_ini.claim("b", tmp_path / "b", "8.3", {"opcache.jit": "off"})
        assert claim.warning is None
        assert system_ini.staged_versions() == ["8.2", "8.3"]

    def test_invalid_value_writes_nothing(
        self, system_ini: SystemIniManager, tmp_path: Path
    ) -> None:
        with pytest.raises(InvalidIniValueError):
            system_ini.claim("a", tmp_path / "a", "8.3", {"opcache.memory_consumption": "lots"})
        assert not system_ini.ini_path("8.3").exists()

    def test_unreadable_owner_record_ignored(self, system_ini: SystemIniManager) -> None:
        system_ini.php_dir.mkdir(parents=True)
        system_ini.owner_path("8.3").write_text("{not json", encoding="utf-8")
        assert system_ini.get_current_owner("8.3") is None

    def test_clear(self, system_ini: SystemIniManager, tmp_path: Path) -> None:
        system_ini.claim("a", tmp_path / "a", "8.3", {"opcache.jit": "off"})
        assert system_ini.clear("8.3") is True
        assert system_ini.clear("8.3") is False
        assert system_ini.staged_versions() == []


class TestSystemIniActivation:
    def test_claim_never_activates(
        self, system_ini: SystemIniManager, fake_runner: FakeRunner, tmp_path: Path
    ) -> None:
        system_ini.claim("a", tmp_path / "a", "8.3", {"opcache.jit": "off"})
        assert system_ini.is_active("8.3") is False
        assert fake_runner.calls == []

    def test_enable_links_into_scan_dir(
        self, system_ini: SystemIniManager, fake_runner: FakeRunner, tmp_path: Path
    ) -> None:
        system_ini.claim("a", tmp_path / "a", "8.3", {"opcache.jit": "off"})
        link = system_ini.enable("8.3")
        assert link == tmp_path / "scan" / "8.3" / "conf.d" / "99-boxctl-system.ini"
        call = fake_runner.calls[-1]
        assert call.argv == ["ln", "-sf", str(system_ini.ini_path("8.3")), str(link)]
        assert call.privileged is True

    def test_enable_requires_staged_ini(self, system_ini: SystemIniManager) -> None:
        with pytest.raises(ExternalToolError, match="no system settings staged"):
            system_ini.enable("8.3")

    def test_is_active_follows_symlink(
        self, system_ini: SystemIniManager, tmp_path: Path
    ) -> None:
        system_ini.claim("a", tmp_path / "a", "8.3", {"opcache.jit": "off"})
        _activate(system_ini, "8.3")
        assert system_ini.is_active("8.3") is True
        assert system_ini.is_active("8.2") is False

    def test_owner_change_keeps_activation(
        self, system_ini: SystemIniManager, tmp_path: Path
    ) -> None:
        system_ini.claim("a", tmp_path / "a", "8.3", {"opcache.jit": "off"})
        _activate(system_ini, "8.3")
        system_ini.claim("b", tmp_path / "b", "8.3", {"opcache.jit": "tracing"})
        assert system_ini.is_active("8.3") is True

    def test_commands_for_manual_use(self, system_ini: SystemIniManager) -> None:
        link = system_ini.symlink_path("8.3")
        assert system_ini.enable_command("8.3") == (
            f"sudo ln -sf {system_ini.ini_path('8.3')} {link}"
        )
        assert system_ini.disable_command("8.3") == f"sudo rm -f {link}"

    def test_unknown_platform(
        self, state_dir: Path, fake_runner: FakeRunner, tmp_path: Path
    ) -> None:
        manager = SystemIniManager(state_dir, Platform(OSType.UNKNOWN), fake_runner)
        manager.claim("a", tmp_path / "a", "8.3", {"opcache.jit": "off"})
        assert manager.enable_command("8.3") is None
        with pytest.raises(ExternalToolError, match="scan directory"):
            manager.enable("8.3")
        with pytest.raises(ExternalToolError, match="scan directory"):
            manager.disable("8.3")


# ---------------------------------------------------------------------------
# FPM
# ---------------------------------------------------------------------------


class TestFPMController:
    def test_reload_when_running(self, fake_runner: FakeRunner) -> None:
        fpm = FPMController(fake_runner, Platform(OSType.LINUX, Distro.DEBIAN), "8.3")
        assert fpm.reload_or_start() == "reload"
        assert fake_runner.lines() == [
            "systemctl is-active --quiet php8.3-fpm",
            "systemctl reload php8.3-fpm",
        ]
        assert fake_runner.calls[-1].privileged is True

    def test_start_when_stopped(self, fake_runner: FakeRunner) -> None:
        fake_runner.fail("is-active")
        fpm = FPMController(fake_runner, Platform(OSType.LINUX, Distro.FEDORA), "8.3")
        assert fpm.reload_or_start() == "start"
        assert fake_runner.lines()[-1] == "systemctl start php83-php-fpm"

    def test_reload_if_running_skips_stopped(self, fake_runner: FakeRunner) -> None:
        fake_runner.fail("is-active")
        fpm = FPMController(fake_runner, Platform(OSType.LINUX, Distro.DEBIAN), "8.3")
        assert fpm.reload_if_running() is False
        assert not fake_runner.ran("reload")

    def test_darwin_uses_brew_services(self, fake_runner: FakeRunner) -> None:
        fpm = FPMController(fake_runner, Platform(OSType.DARWIN), "8.3")
        fpm.reload()
        assert fake_runner.calls[-1].argv == ["brew", "services", "restart", "php@8.3"]
        assert fake_runner.calls[-1].privileged is False
