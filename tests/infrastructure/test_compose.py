"""Tests for the shared compose file and the docker compose controller."""

from __future__ import annotations

from pathlib import Path

import pytest
from ruamel.yaml import YAML

from boxctl.domain.errors import ExternalToolError, ResourceConflictError
from boxctl.domain.project import ProjectConfig
from boxctl.domain.services import derive_instances
from boxctl.infrastructure.compose import (
    ComposeGenerator,
    DockerController,
    relational_instance,
    service_definition,
)
from tests.conftest import FakeRunner


def _project(name: str, **services: object) -> ProjectConfig:
    return ProjectConfig.model_validate(
        {"name": name, "domains": [{"host": f"{name}.test"}], "php": "8.3", "services": services}
    )


def _load(path: Path) -> dict:
    return YAML(typ="safe").load(path.read_text(encoding="utf-8"))


class TestServiceDefinition:
    def test_mysql(self, tmp_path: Path) -> None:
        (instance,) = derive_instances(_project("shop", mysql={"version": "8.0", "memory": "1G"}))
        definition = service_definition(instance, vcl_path=tmp_path / "default.vcl")
        assert definition["container_name"] == "boxctl-mysql-8.0"
        assert definition["image"] == "mysql:8.0"
        assert definition["ports"] == ["33080:3306"]
        assert definition["environment"]["MYSQL_INNODB_BUFFER_POOL_SIZE"] == "1G"
        assert definition["volumes"] == ["mysql-80_data:/var/lib/mysql"]
        assert list(definition) == sorted(definition)

    def test_secondary_ports_paired(self, tmp_path: Path) -> None:
        (instance,) = derive_instances(_project("shop", rabbitmq=True))
        definition = service_definition(instance, vcl_path=tmp_path / "default.vcl")
        assert definition["ports"] == ["5672:5672", "15672:15672"]

    def test_varnish_mounts_vcl(self, tmp_path: Path) -> None:
        (instance,) = derive_instances(_project("shop", varnish=True))
        vcl = tmp_path / "default.vcl"
        definition = service_definition(instance, vcl_path=vcl)
        assert f"{vcl}:/etc/varnish/default.vcl:ro" in definition["volumes"]


class TestComposeGenerator:
    def test_union_written_once_per_identity(self, tmp_path: Path) -> None:
        generator = ComposeGenerator(tmp_path)
        generator.generate(
            [_project("a", mysql="8.0", redis=True), _project("b", mysql="8.0", redis="6.2")]
        )
        data = _load(generator.compose_file_path)
        assert sorted(data["services"]) == ["mysql-8.0", "redis-6.2", "redis-7.2"]
        assert data["name"] == "boxctl"
        assert "mysql-80_data" in data["volumes"]

    def test_output_is_deterministic(self, tmp_path: Path) -> None:
        generator = ComposeGenerator(tmp_path)
        projects = [_project("a", mysql="8.0", redis=True), _project("b", opensearch=True)]
        generator.generate(projects)
        first = generator.compose_file_path.read_bytes()
        generator.generate(list(reversed(projects)))
        assert generator.compose_file_path.read_bytes() == first

    def test_conflict_writes_nothing(self, tmp_path: Path) -> None:
        generator = ComposeGenerator(tmp_path)
        with pytest.raises(ResourceConflictError):
            generator.generate([_project("a", mysql="8.4"), _project("b", mysql="9.1")])
        assert not generator.compose_file_path.exists()

    def test_varnish_generates_vcl(self, tmp_path: Path) -> None:
        generator = ComposeGenerator(tmp_path)
        generator.generate([_project("shop", varnish=True)])
        vcl = generator.vcl.vcl_path.read_text(encoding="utf-8")
        assert "backend p_shop" in vcl
        assert 'req.http.host == "shop.test"' in vcl

    def test_defined_services(self, tmp_path: Path) -> None:
        generator = ComposeGenerator(tmp_path)
        assert generator.defined_services() == []
        generator.generate([_project("a", redis=True, mailpit=True)])
        assert generator.defined_services() == ["mailpit-1.21", "redis-7.2"]

    def test_empty_union_has_no_volumes(self, tmp_path: Path) -> None:
        generator = ComposeGenerator(tmp_path)
        generator.generate([])
        data = _load(generator.compose_file_path)
        assert data["services"] == {}
        assert "volumes" not in data


class TestDockerController:
    def test_prefers_compose_v2(self, tmp_path: Path, fake_runner: FakeRunner) -> None:
        docker = DockerController(fake_runner, tmp_path / "docker-compose.yml")
        docker.start_service("redis-7.2")
        assert fake_runner.lines()[-1] == (
            f"docker compose -f {tmp_path / 'docker-compose.yml'} up -d redis-7.2"
        )

    def test_falls_back_to_docker_compose(self, tmp_path: Path, fake_runner: FakeRunner) -> None:
        fake_runner.fail("docker", "compose", "version")
        docker = DockerController(fake_runner, tmp_path / "docker-compose.yml")
        assert docker.compose_command == ["docker-compose"]

    def test_configured_command(self, tmp_path: Path, fake_runner: FakeRunner) -> None:
        docker = DockerController(
            fake_runner, tmp_path / "c.yml", compose_command=["podman", "compose"]
        )
        docker.stop_service("redis-7.2")
        assert fake_runner.calls[0].argv[:2] == ["podman", "compose"]

    def test_daemon_unreachable(self, tmp_path: Path, fake_runner: FakeRunner) -> None:
        fake_runner.fail("docker", "info", output="Cannot connect to the Docker daemon")
        docker = DockerController(fake_runner, tmp_path / "c.yml")
        with pytest.raises(ExternalToolError, match="not reachable") as excinfo:
            docker.ensure_daemon()
        assert excinfo.value.command_line == "docker info"
        assert "Cannot connect" in excinfo.value.output

    def test_is_service_running(self, tmp_path: Path, fake_runner: FakeRunner) -> None:
        fake_runner.respond("ps", "--services", stdout="redis-7.2\n\n")
        docker = DockerController(fake_runner, tmp_path / "c.yml")
        assert docker.is_service_running("redis-7.2")
        assert fake_runner.calls[-1].argv[-3:] == ["--filter", "status=running", "redis-7.2"]
        assert not docker.is_service_running("mysql-8.0")

    def test_is_service_running_propagates_tool_failure(
        self, tmp_path: Path, fake_runner: FakeRunner
    ) -> None:
        fake_runner.fail("ps", "--services")
        docker = DockerController(fake_runner, tmp_path / "c.yml")
        with pytest.raises(ExternalToolError):
            docker.is_service_running("redis-7.2")

    def test_database_exists(self, tmp_path: Path, fake_runner: FakeRunner) -> None:
        fake_runner.respond("-N", "-e", stdout="shop\n")
        docker = DockerController(fake_runner, tmp_path / "c.yml")
        assert docker.database_exists("mysql-8.0", "shop")
        assert not docker.database_exists("mysql-8.0", "blog")

    def test_create_database(self, tmp_path: Path, fake_runner: FakeRunner) -> None:
        docker = DockerController(fake_runner, tmp_path / "c.yml")
        docker.create_database("mysql-8.0", "shop")
        argv = fake_runner.calls[-1].argv
        assert argv[-1] == "CREATE DATABASE IF NOT EXISTS `shop`"
        assert "exec" in argv


class TestRelationalInstance:
    def test_finds_engine(self) -> None:
        instance = relational_instance(derive_instances(_project("a", redis=True, mariadb=True)))
        assert instance is not None
        assert instance.service_name == "mariadb-11.4"

    def test_none(self) -> None:
        assert relational_instance(derive_instances(_project("a", redis=True))) is None
