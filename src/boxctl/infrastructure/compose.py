"""Shared container definition — one ``docker-compose.yml`` for every project.

The file is regenerated wholesale from the union of all known descriptors on
every run. Nothing is diffed or patched: the same set of descriptors always
produces the same bytes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from io import StringIO
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from boxctl.domain.errors import ExternalToolError
from boxctl.domain.ports import RELATIONAL_KINDS, ServiceKind
from boxctl.domain.project import ProjectConfig
from boxctl.domain.services import (
    CONTAINER_PREFIX,
    ServiceInstance,
    check_conflicts,
    union_instances,
)
from boxctl.infrastructure.runner import CommandRunner
from boxctl.infrastructure.varnish import VclGenerator

logger = logging.getLogger(__name__)

COMPOSE_FILENAME = "docker-compose.yml"
NETWORK = CONTAINER_PREFIX
DB_ROOT_PASSWORD = "boxctl"
RABBITMQ_USER = "boxctl"
RABBITMQ_PASSWORD = "boxctl"

# Ports the service listens on inside its container, paired with host ports.
CONTAINER_PORTS: dict[ServiceKind, tuple[int, ...]] = {
    ServiceKind.MYSQL: (3306,),
    ServiceKind.MARIADB: (3306,),
    ServiceKind.REDIS: (6379,),
    ServiceKind.OPENSEARCH: (9200,),
    ServiceKind.ELASTICSEARCH: (9200,),
    ServiceKind.RABBITMQ: (5672, 15672),
    ServiceKind.MAILPIT: (1025, 8025),
    ServiceKind.VARNISH: (80, 6082),
}

_DATA_DIRS: dict[ServiceKind, str] = {
    ServiceKind.MYSQL: "/var/lib/mysql",
    ServiceKind.MARIADB: "/var/lib/mysql",
    ServiceKind.OPENSEARCH: "/usr/share/opensearch/data",
    ServiceKind.ELASTICSEARCH: "/usr/share/elasticsearch/data",
    ServiceKind.RABBITMQ: "/var/lib/rabbitmq",
}


def _healthcheck(*test: str, retries: int = 5) -> dict[str, Any]:
    return {"test": ["CMD", *test], "interval": "10s", "timeout": "5s", "retries": retries}


def _volume_name(instance: ServiceInstance) -> str:
    return f"{instance.service_name.replace('.', '')}_data"


def _kind_specific(instance: ServiceInstance, vcl_path: Path) -> dict[str, Any]:
    kind = instance.kind
    if kind is ServiceKind.MYSQL:
        env = {"MYSQL_ROOT_PASSWORD": DB_ROOT_PASSWORD}
        if instance.memory:
            env["MYSQL_INNODB_BUFFER_POOL_SIZE"] = instance.memory
        return {
            "environment": env,
            "healthcheck": _healthcheck(
                "mysqladmin", "ping", "-h", "localhost", "-uroot", f"-p{DB_ROOT_PASSWORD}"
            ),
        }
    if kind is ServiceKind.MARIADB:
        env = {"MARIADB_ROOT_PASSWORD": DB_ROOT_PASSWORD}
        if instance.memory:
            env["MARIADB_INNODB_BUFFER_POOL_SIZE"] = instance.memory
        return {
            "environment": env,
            "healthcheck": _healthcheck("healthcheck.sh", "--connect", "--innodb_initialized"),
        }
    if kind is ServiceKind.REDIS:
        return {"healthcheck": _healthcheck("redis-cli", "ping")}
    if kind in (ServiceKind.OPENSEARCH, ServiceKind.ELASTICSEARCH):
        memory = instance.memory or "1g"
        heap = f"-Xms{memory} -Xmx{memory}"
        if kind is ServiceKind.OPENSEARCH:
            env = {
                "DISABLE_SECURITY_PLUGIN": "true",
                "OPENSEARCH_JAVA_OPTS": heap,
                "discovery.type": "single-node",
            }
        else:
            env = {
                "ES_JAVA_OPTS": heap,
                "discovery.type": "single-node",
                "xpack.security.enabled": "false",
            }
        return {"environment": env}
    if kind is ServiceKind.RABBITMQ:
        return {
            "environment": {
                "RABBITMQ_DEFAULT_PASS": RABBITMQ_PASSWORD,
                "RABBITMQ_DEFAULT_USER": RABBITMQ_USER,
            }
        }
    if kind is ServiceKind.VARNISH:
        return {
            "command": "-p feature=+http2 -f /etc/varnish/default.vcl",
            "environment": {"VARNISH_SIZE": instance.memory or "256m"},
            "extra_hosts": ["host.docker.internal:host-gateway"],
            "healthcheck": _healthcheck("varnishadm", "ping", retries=3),
            "volumes": [f"{vcl_path}:/etc/varnish/default.vcl:ro"],
        }
    return {}


def service_definition(instance: ServiceInstance, *, vcl_path: Path) -> dict[str, Any]:
    """Compose service mapping for one instance, keys sorted."""
    ports = [
        f"{host}:{container}"
        for host, container in zip(
            instance.host_ports, CONTAINER_PORTS[instance.kind], strict=False
        )
    ]
    definition: dict[str, Any] = {
        "container_name": instance.container_name,
        "image": instance.image,
        "networks": [NETWORK],
        "ports": ports,
        "restart": "unless-stopped",
    }
    definition.update(_kind_specific(instance, vcl_path))
    data_dir = _DATA_DIRS.get(instance.kind)
    if data_dir is not None:
        definition.setdefault("volumes", []).append(f"{_volume_name(instance)}:{data_dir}")
    return dict(sorted(definition.items()))


class ComposeGenerator:
    """Builds and writes ``<state>/docker/docker-compose.yml``."""

    def __init__(self, state_dir: Path, *, vcl: VclGenerator | None = None) -> None:
        self.state_dir = state_dir
        self.vcl = vcl or VclGenerator(state_dir)

    @property
    def compose_file_path(self) -> Path:
        return self.state_dir / "docker" / COMPOSE_FILENAME

    def build(self, instances: Sequence[ServiceInstance]) -> dict[str, Any]:
        services = {
            i.service_name: service_definition(i, vcl_path=self.vcl.vcl_path)
            for i in sorted(instances, key=lambda i: i.service_name)
        }
        volumes = {
            _volume_name(i): None
            for i in sorted(instances, key=lambda i: i.service_name)
            if i.kind in _DATA_DIRS
        }
        document: dict[str, Any] = {
            "name": CONTAINER_PREFIX,
            "networks": {NETWORK: {"driver": "bridge"}},
            "services": services,
        }
        if volumes:
            document["volumes"] = volumes
        return document

    def render(self, instances: Sequence[ServiceInstance]) -> str:
        y = YAML()
        y.default_flow_style = False
        buf = StringIO()
        y.dump(self.build(instances), buf)
        return buf.getvalue()

    def generate(self, configs: Iterable[ProjectConfig]) -> list[ServiceInstance]:
        """Regenerate the compose file (and VCL) from *configs*.

        Raises:
            ResourceConflictError: If the union binds one host port twice.
        """
        configs = list(configs)
        instances = union_instances(configs)
        check_conflicts(instances)
        if any(i.kind is ServiceKind.VARNISH for i in instances):
            self.vcl.generate(configs)
        path = self.compose_file_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render(instances), encoding="utf-8")
        logger.debug("Wrote %s with %d services", path, len(instances))
        return instances

    def defined_services(self) -> list[str]:
        """Service names in the current compose file (empty if none)."""
        path = self.compose_file_path
        if not path.is_file():
            return []
        try:
            data = YAML(typ="safe").load(path.read_text(encoding="utf-8")) or {}
        except YAMLError as exc:
            logger.warning("Cannot parse %s: %s", path, exc)
            return []
        return sorted((data.get("services") or {}).keys())


class DockerController:
    """Drives ``docker compose`` against the shared compose file."""

    def __init__(
        self,
        runner: CommandRunner,
        compose_file: Path,
        *,
        compose_command: Sequence[str] | None = None,
    ) -> None:
        self.runner = runner
        self.compose_file = compose_file
        self._compose_command = list(compose_command) if compose_command else None

    @property
    def compose_command(self) -> list[str]:
        """``docker compose`` (V2) when available, else ``docker-compose``."""
        if self._compose_command is None:
            if self.runner.succeeds(["docker", "compose", "version"]):
                self._compose_command = ["docker", "compose"]
            else:
                self._compose_command = ["docker-compose"]
        return self._compose_command

    def _compose(self, *args: str) -> list[str]:
        return [*self.compose_command, "-f", str(self.compose_file), *args]

    def ensure_daemon(self) -> None:
        """Raises ExternalToolError when the container daemon is unreachable."""
        try:
            self.runner.run("docker", ["docker", "info"])
        except ExternalToolError as exc:
            raise ExternalToolError(
                "docker",
                "container daemon is not reachable",
                command=exc.command,
                output=exc.output,
            ) from exc

    def start_service(self, service: str) -> None:
        self.runner.run("docker", self._compose("up", "-d", service))

    def stop_service(self, service: str) -> None:
        self.runner.run("docker", self._compose("stop", service))

    def is_service_running(self, service: str) -> bool:
        argv = self._compose("ps", "--services", "--filter", "status=running", service)
        return service in self.runner.output("docker", argv).split()

    def _mysql(self, service: str, sql: str) -> list[str]:
        return self._compose(
            "exec", "-T", service, "mysql", "-uroot", f"-p{DB_ROOT_PASSWORD}", "-N", "-e", sql
        )

    def database_exists(self, service: str, database: str) -> bool:
        try:
            argv = self._mysql(service, f"SHOW DATABASES LIKE '{database}'")
            out = self.runner.output("docker", argv)
        except ExternalToolError:
            return False
        return database in out.split()

    def create_database(self, service: str, database: str) -> None:
        sql = f"CREATE DATABASE IF NOT EXISTS `{database}`"
        self.runner.run("docker", self._mysql(service, sql))


def relational_instance(instances: Iterable[ServiceInstance]) -> ServiceInstance | None:
    """The project's database engine instance, if it declares one."""
    for instance in instances:
        if instance.kind in RELATIONAL_KINDS:
            return instance
    return None
