"""Tests for ReconcileService — start, stop, restart, check and validate."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pytest

from boxctl.infrastructure import dns as dns_module
from boxctl.infrastructure.host import Host
from boxctl.services.reconciler import ReconcileService
from tests.conftest import FakeRunner, snapshot, write_project

SYSTEM_INI = {"memory_limit": "512M", "opcache.preload": "/srv/preload.php"}


def _issues(result: Any, bucket: str = "warnings") -> list[dict[str, Any]]:
    return result.data[bucket]


def _messages(result: Any, bucket: str = "warnings") -> list[str]:
    return [issue["message"] for issue in _issues(result, bucket)]


def _activate(host: Host, php_version: str) -> None:
    """Link the staged ini the way ``php system enable`` would."""
    link = host.system_ini.symlink_path(php_version)
    assert link is not None
    link.parent.mkdir(parents=True, exist_ok=True)
    os.symlink(host.system_ini.ini_path(php_version), link)


@pytest.fixture
def service(host: Host) -> ReconcileService:
    return ReconcileService(host)


class TestStart:
    def test_materializes_project(
        self, service: ReconcileService, host: Host, fake_runner: FakeRunner, tmp_path: Path
    ) -> None:
        shop = write_project(
            tmp_path, "shop", php_ini=SYSTEM_INI, services={"mysql": "8.0", "redis": True}
        )
        result = service.start(shop)
        assert result.ok
        assert result.op == "start"
        assert result.data["project"] == "shop"
        assert result.data["errors"] == []

        pool = host.pools.pool_path("shop", "8.3").read_text(encoding="utf-8")
        assert "memory_limit] = 512M" in pool
        assert "opcache.preload" not in pool

        ini = host.system_ini.ini_path("8.3").read_text(encoding="utf-8")
        assert "opcache.preload = /srv/preload.php" in ini
        assert "memory_limit" not in ini

        assert host.vhosts.marker_path("shop").is_file()
        assert host.vhosts.vhost_path("shop", "shop.test").is_file()
        assert host.ssl.cert_paths("shop.test").exist()
        assert host.dns.hosts.list_domains() == ["shop.test"]
        assert host.compose.defined_services() == ["mysql-8.0", "redis-7.2"]

        assert fake_runner.ran("up", "-d", "mysql-8.0")
        assert fake_runner.ran("CREATE DATABASE IF NOT EXISTS `shop`")
        assert fake_runner.ran("systemctl", "reload", "php8.3-fpm")
        assert fake_runner.ran("nginx", "-t")
        assert fake_runner.ran("nginx", "-s", "reload")
        services = {s["name"]: s for s in result.data["services"]}
        assert services["mysql-8.0"]["running"] is True
        assert services["mysql-8.0"]["users"] == ["shop"]
        assert result.data["states"] == ["not_validated", "validated", "starting", "started"]

    def test_staged_settings_warn_until_enabled(
        self, service: ReconcileService, host: Host, tmp_path: Path
    ) -> None:
        shop = write_project(tmp_path, "shop", php_ini=SYSTEM_INI)
        result = service.start(shop)
        (staged,) = [w for w in _issues(result) if w["component"] == "php-system"]
        assert "staged but not active" in staged["message"]
        assert staged["command"] == host.system_ini.enable_command("8.3")

        _activate(host, "8.3")
        rerun = service.start(shop)
        assert not [w for w in _issues(rerun) if w["component"] == "php-system"]

    def test_no_system_ini_without_system_settings(
        self, service: ReconcileService, host: Host, tmp_path: Path
    ) -> None:
        service.start(write_project(tmp_path, "blog", php_ini={"memory_limit": "256M"}))
        assert not host.system_ini.ini_path("8.3").exists()

    def test_rerun_is_byte_identical(
        self, service: ReconcileService, state_dir: Path, hosts_file: Path, tmp_path: Path
    ) -> None:
        shop = write_project(
            tmp_path, "shop", php_ini=SYSTEM_INI, services={"mysql": "8.0", "varnish": True}
        )
        service.start(shop)
        before = snapshot(state_dir, hosts_file)
        rerun = service.start(shop)
        assert rerun.ok
        assert rerun.data["errors"] == []
        assert snapshot(state_dir, hosts_file) == before

    def test_ownership_moves_to_last_starter(
        self, service: ReconcileService, host: Host, tmp_path: Path
    ) -> None:
        alpha = write_project(tmp_path, "alpha", php_ini={"opcache.jit": "tracing"})
        beta = write_project(tmp_path, "beta", php_ini={"opcache.jit_buffer_size": "64M"})
        service.start(alpha)
        _activate(host, "8.3")

        result = service.start(beta)
        assert any("now owned by 'beta'" in m for m in _messages(result))
        ini = host.system_ini.ini_path("8.3").read_text(encoding="utf-8")
        assert "opcache.jit_buffer_size = 64M" in ini
        assert "opcache.jit = tracing" not in ini
        owner = host.system_ini.get_current_owner("8.3")
        assert owner is not None
        assert owner.project_name == "beta"
        assert host.system_ini.is_active("8.3")

    def test_switching_php_version_drops_old_pool(
        self, service: ReconcileService, host: Host, fake_runner: FakeRunner, tmp_path: Path
    ) -> None:
        shop = write_project(tmp_path, "shop", php="8.2")
        service.start(shop)
        write_project(tmp_path, "shop", php="8.3")
        fake_runner.reset()
        result = service.start(shop)
        assert result.data["errors"] == []
        assert host.pools.find_pools("shop") == [host.pools.pool_path("shop", "8.3")]
        assert fake_runner.ran("systemctl", "reload", "php8.2-fpm")
        assert fake_runner.ran("systemctl", "reload", "php8.3-fpm")

    def test_undeletable_stale_pool_is_error(
        self, service: ReconcileService, host: Host, fake_runner: FakeRunner, tmp_path: Path
    ) -> None:
        host.pools.pool_path("shop", "8.2").mkdir(parents=True)
        result = service.start(write_project(tmp_path, "shop", php="8.3"))
        assert result.ok
        (error,) = _issues(result, "errors")
        assert error["component"] == "php-pool"
        assert error["message"].startswith("cannot remove stale pool")
        assert not fake_runner.ran("systemctl", "reload", "php8.2-fpm")
        assert host.pools.pool_path("shop", "8.3").is_file()

    def test_shared_instances_deduplicated(
        self, service: ReconcileService, host: Host, tmp_path: Path
    ) -> None:
        service.start(write_project(tmp_path, "alpha", services={"mysql": "8.0"}))
        result = service.start(
            write_project(tmp_path, "beta", services={"mysql": "8.0", "redis": True})
        )
        assert host.compose.defined_services() == ["mysql-8.0", "redis-7.2"]
        services = {s["name"]: s for s in result.data["services"]}
        assert services["mysql-8.0"]["users"] == ["alpha", "beta"]


class TestStartFailures:
    def test_port_conflict_is_fatal(
        self, service: ReconcileService, host: Host, tmp_path: Path
    ) -> None:
        service.start(write_project(tmp_path, "current", services={"mysql": "8.4"}))
        result = service.start(write_project(tmp_path, "future", services={"mysql": "9.9"}))
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "RESOURCE_CONFLICT"
        assert "port 33084" in result.error.detail["conflicts"][0]
        assert not host.vhosts.marker_path("future").exists()
        assert not host.pools.pool_path("future", "8.3").exists()

    def test_shared_service_port_disagreement_is_fatal(
        self, service: ReconcileService, host: Host, tmp_path: Path
    ) -> None:
        alpha = write_project(tmp_path, "alpha", services={"mysql": {"version": "8.0", "port": 3306}})
        assert service.start(alpha).ok
        beta = write_project(tmp_path, "beta", services={"mysql": "8.0"})

        validated = service.validate(beta)
        assert validated.error is not None
        assert validated.error.code == "RESOURCE_CONFLICT"

        result = service.start(beta)
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "RESOURCE_CONFLICT"
        assert result.error.detail["conflicts"] == [
            "MySQL 8.0: port 3306 for 'alpha' and port 33080 for 'beta'"
        ]
        assert not host.vhosts.marker_path("beta").exists()

    def test_duplicate_host_writes_nothing(
        self,
        service: ReconcileService,
        fake_runner: FakeRunner,
        state_dir: Path,
        hosts_file: Path,
        tmp_path: Path,
    ) -> None:
        before = hosts_file.read_bytes()
        project = write_project(
            tmp_path, "dup", domains=[{"host": "dup.test"}, {"host": "DUP.test"}]
        )
        result = service.start(project)
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "CONFIG_ERROR"
        assert "declared twice" in result.error.message
        assert not state_dir.exists()
        assert hosts_file.read_bytes() == before
        assert fake_runner.calls == []

    def test_missing_descriptor(self, service: ReconcileService, tmp_path: Path) -> None:
        result = service.start(tmp_path / "nowhere")
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "CONFIG_NOT_FOUND"

    def test_failed_proxy_test_skips_reload(
        self, service: ReconcileService, host: Host, fake_runner: FakeRunner, tmp_path: Path
    ) -> None:
        fake_runner.fail("nginx", "-t")
        result = service.start(write_project(tmp_path, "shop"))
        assert result.ok
        (error,) = _issues(result, "errors")
        assert error["component"] == "nginx"
        assert "reload skipped" in error["message"]
        assert not fake_runner.ran("nginx", "-s", "reload")
        assert host.dns.hosts.list_domains() == ["shop.test"]
        assert not host.vhosts.marker_path("shop").exists()
        assert "rejected vhosts rolled back to the previous version" in _messages(result)

    def test_rejected_vhosts_restore_previous_files(
        self,
        service: ReconcileService,
        host: Host,
        fake_runner: FakeRunner,
        state_dir: Path,
        tmp_path: Path,
    ) -> None:
        shop = write_project(tmp_path, "shop")
        service.start(shop)
        before = snapshot(state_dir / "nginx")

        write_project(tmp_path, "shop", domains=[{"host": "shop.test"}, {"host": "admin.test"}])
        fake_runner.fail("nginx", "-t")
        result = service.start(shop)
        assert len(_issues(result, "errors")) == 1
        assert snapshot(state_dir / "nginx") == before
        assert not host.vhosts.vhost_path("shop", "admin.test").exists()

    def test_hosts_write_failure_is_warning(
        self,
        service: ReconcileService,
        host: Host,
        fake_runner: FakeRunner,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(dns_module.os, "access", lambda *_args: False)
        fake_runner.fail("tee")
        result = service.start(write_project(tmp_path, "shop"))
        assert result.ok
        assert result.data["errors"] == []
        assert [w["component"] for w in _issues(result)] == ["dns"]
        assert host.vhosts.marker_path("shop").is_file()

    def test_unreachable_daemon_is_error(
        self, service: ReconcileService, host: Host, fake_runner: FakeRunner, tmp_path: Path
    ) -> None:
        fake_runner.fail("docker", "info")
        result = service.start(write_project(tmp_path, "shop", services={"redis": True}))
        assert result.ok
        assert "container daemon is not reachable" in _messages(result, "errors")[0]
        assert result.data["services"][0]["running"] is False
        assert not fake_runner.ran("up", "-d")
        assert host.pools.pool_path("shop", "8.3").is_file()
        assert fake_runner.ran("nginx", "-s", "reload")

    def test_single_container_failure_is_warning(
        self, service: ReconcileService, fake_runner: FakeRunner, tmp_path: Path
    ) -> None:
        fake_runner.fail("up", "-d", "redis-7.2")
        result = service.start(
            write_project(tmp_path, "shop", services={"mysql": "8.0", "redis": True})
        )
        assert result.data["errors"] == []
        assert [w["component"] for w in _issues(result)] == ["docker"]
        running = {s["name"]: s["running"] for s in result.data["services"]}
        assert running == {"mysql-8.0": True, "redis-7.2": False}

    def test_env_newline_rejected_before_writing(
        self, service: ReconcileService, host: Host, tmp_path: Path
    ) -> None:
        shop = write_project(tmp_path, "shop", env={"APP_ENV": "dev\nuser = root"})
        result = service.start(shop)
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "CONFIG_ERROR"
        assert host.pools.find_pools("shop") == []

    def test_invalid_ini_value_is_pool_error(
        self, service: ReconcileService, host: Host, tmp_path: Path
    ) -> None:
        result = service.start(write_project(tmp_path, "shop", php_ini={"memory_limit": "lots"}))
        assert result.ok
        (error,) = _issues(result, "errors")
        assert error["component"] == "php-pool"
        assert not host.pools.pool_path("shop", "8.3").exists()

    def test_docker_disabled(self, make_host: Any, fake_runner: FakeRunner, tmp_path: Path) -> None:
        host = make_host(docker__enabled="false")
        result = ReconcileService(host).start(
            write_project(tmp_path, "shop", services={"redis": True})
        )
        assert "docker is disabled" in _messages(result)[0]
        assert not fake_runner.ran("docker")


class TestStop:
    def test_shared_service_kept(
        self, service: ReconcileService, host: Host, fake_runner: FakeRunner, tmp_path: Path
    ) -> None:
        alpha = write_project(tmp_path, "alpha", services={"mysql": "8.0", "redis": True})
        service.start(alpha)
        service.start(write_project(tmp_path, "beta", services={"mysql": "8.0"}))
        fake_runner.reset()

        result = service.stop(alpha)
        assert result.ok
        assert result.data["stopped_services"] == ["redis-7.2"]
        assert result.data["kept_services"] == {"mysql-8.0": ["beta"]}
        assert fake_runner.ran("stop", "redis-7.2")
        assert not fake_runner.ran("stop", "mysql-8.0")
        assert host.compose.defined_services() == ["mysql-8.0"]
        assert not host.vhosts.marker_path("alpha").exists()
        assert host.pools.find_pools("alpha") == []
        assert host.dns.hosts.list_domains() == ["beta.test"]
        assert result.data["states"] == ["not_validated", "validated", "stopping", "stopped"]

    def test_dry_run_changes_nothing(
        self,
        service: ReconcileService,
        fake_runner: FakeRunner,
        state_dir: Path,
        hosts_file: Path,
        tmp_path: Path,
    ) -> None:
        shop = write_project(tmp_path, "shop", services={"redis": True})
        service.start(shop)
        before = snapshot(state_dir, hosts_file)
        fake_runner.reset()

        result = service.stop(shop, dry_run=True)
        assert result.data["dry_run"] is True
        assert result.data["stopped_services"] == ["redis-7.2"]
        assert "hosts: shop.test" in result.data["removed"]
        assert snapshot(state_dir, hosts_file) == before
        assert fake_runner.calls == []

    def test_unremovable_vhosts_recorded(
        self,
        service: ReconcileService,
        host: Host,
        monkeypatch: pytest.MonkeyPatch,
        tmp_path: Path,
    ) -> None:
        shop = write_project(tmp_path, "shop")
        service.start(shop)

        def refuse(project: str, *, dry_run: bool = False) -> list[Path]:
            raise PermissionError(13, "Permission denied", project)

        monkeypatch.setattr(host.vhosts, "remove", refuse)
        result = service.stop(shop)
        assert result.ok
        (error,) = _issues(result, "errors")
        assert error["component"] == "nginx"
        assert "Permission denied" in error["message"]
        assert host.pools.find_pools("shop") == []
        assert host.dns.hosts.list_domains() == []
        assert result.data["states"][-1] == "stopped"

    def test_stop_never_started(self, service: ReconcileService, tmp_path: Path) -> None:
        result = service.stop(write_project(tmp_path, "idle"))
        assert result.ok
        assert result.data["removed"] == []


class TestRestart:
    def test_restart_ends_started(
        self, service: ReconcileService, host: Host, tmp_path: Path
    ) -> None:
        shop = write_project(tmp_path, "shop", services={"redis": True})
        service.start(shop)
        result = service.restart(shop)
        assert result.ok
        assert result.op == "restart"
        assert result.data["states"][-1] == "started"
        assert host.vhosts.marker_path("shop").is_file()

    def test_stop_errors_carried_as_warnings(
        self, service: ReconcileService, fake_runner: FakeRunner, tmp_path: Path
    ) -> None:
        shop = write_project(tmp_path, "shop")
        service.start(shop)
        fake_runner.fail("nginx", "-t")
        result = service.restart(shop)
        assert any(m.startswith("stop: ") for m in _messages(result))


class TestCheck:
    def test_reports_orphans_and_running(
        self, service: ReconcileService, fake_runner: FakeRunner, tmp_path: Path
    ) -> None:
        shop = write_project(tmp_path, "shop", services={"mysql": "8.0", "redis": True})
        service.start(shop)
        write_project(tmp_path, "shop", services={"redis": True})
        fake_runner.respond("ps", "--services", stdout="mysql-8.0\nredis-7.2\n")

        result = service.check(shop)
        assert result.ok
        assert result.data["orphaned_services"] == ["mysql-8.0"]
        assert result.data["services"][0]["running"] is True
        assert any("not required by any known project" in w for w in result.warnings)
        assert result.data["pool"]["present"] is True
        (vhost,) = result.data["vhosts"]
        assert vhost == {
            "host": "shop.test",
            "file": vhost["file"],
            "present": True,
            "ssl": True,
            "certificate": True,
            "dns": True,
        }
        assert result.data["includes"]["nginx"].startswith("include ")

    def test_reports_foreign_owner(
        self, service: ReconcileService, host: Host, tmp_path: Path
    ) -> None:
        alpha = write_project(tmp_path, "alpha", php_ini={"opcache.jit": "tracing"})
        service.start(alpha)
        service.start(write_project(tmp_path, "beta", php_ini={"opcache.jit": "off"}))
        result = service.check(alpha)
        assert result.data["system_ini"]["owner"] == "beta"
        assert result.data["system_ini"]["owned_by_project"] is False
        assert any("owned by 'beta'" in w for w in result.warnings)

    def test_before_start(self, service: ReconcileService, tmp_path: Path) -> None:
        result = service.check(write_project(tmp_path, "shop"))
        assert result.data["marker"] is False
        assert result.data["vhosts"][0]["present"] is False
        assert result.data["vhosts"][0]["dns"] is False


class TestValidate:
    def test_fallback_version_warns(self, service: ReconcileService, tmp_path: Path) -> None:
        result = service.validate(write_project(tmp_path, "shop", services={"mysql": "9.1"}))
        assert result.ok
        assert result.data["services"] == ["mysql-9.1"]
        assert any(
            "MySQL 9.1 is not a known version; using the latest stable port 33084" in w
            for w in result.warnings
        )

    def test_two_relational_engines(self, service: ReconcileService, tmp_path: Path) -> None:
        project = write_project(tmp_path, "shop", services={"mysql": "8.0", "mariadb": "11.4"})
        result = service.validate(project)
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "CONFIG_ERROR"

    def test_deprecated_php(self, service: ReconcileService, tmp_path: Path) -> None:
        result = service.validate(write_project(tmp_path, "legacy", php="7.4"))
        assert any("past end of life" in w for w in result.warnings)


class TestAllProjects:
    def test_start_all_partial_failure(self, service: ReconcileService, tmp_path: Path) -> None:
        service.start(write_project(tmp_path, "alpha"))
        beta = write_project(tmp_path, "beta")
        service.start(beta)
        (beta / ".boxctl.yaml").write_text("name: [unclosed\n", encoding="utf-8")

        result = service.start_all()
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "PARTIAL_FAILURE"
        assert result.error.message == "1 of 2 projects failed"
        outcome = {p["project"]: p["ok"] for p in result.data["projects"]}
        assert outcome == {"alpha": True, "beta": False}

    def test_stop_all(self, service: ReconcileService, host: Host, tmp_path: Path) -> None:
        service.start(write_project(tmp_path, "alpha"))
        service.start(write_project(tmp_path, "beta"))
        result = service.stop_all()
        assert result.ok
        assert len(result.data["projects"]) == 2
        assert host.discovery.discover() == []

    def test_check_all_empty(self, service: ReconcileService) -> None:
        result = service.check_all()
        assert result.ok
        assert result.data["projects"] == []
