"""ServiceInstance derivation — descriptor + port table -> container identity.

Instances are never persisted. They are recomputed from the descriptors on
every invocation, which is what makes reconciliation idempotent: the same set
of descriptors always yields the same instances, in the same order.

Multiplexing: two projects declaring the same ``(kind, version)`` share one
instance. :func:`union_instances` deduplicates by that identity and
:func:`usage_counts` tells the reconciler which projects still need it.
"""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel

from boxctl.domain.errors import ResourceConflictError
from boxctl.domain.ports import KIND_LABELS, ServiceKind, allocate
from boxctl.domain.project import ProjectConfig, ServiceConfig

CONTAINER_PREFIX = "boxctl"

IMAGES: dict[ServiceKind, str] = {
    ServiceKind.MYSQL: "mysql:{version}",
    ServiceKind.MARIADB: "mariadb:{version}",
    ServiceKind.REDIS: "redis:{version}-alpine",
    ServiceKind.OPENSEARCH: "opensearchproject/opensearch:{version}",
    ServiceKind.ELASTICSEARCH: "elasticsearch:{version}",
    ServiceKind.RABBITMQ: "rabbitmq:{version}-management-alpine",
    ServiceKind.MAILPIT: "axllent/mailpit:v{version}",
    ServiceKind.VARNISH: "varnish:{version}",
}

Identity = tuple[ServiceKind, str]


class ServiceInstance(BaseModel):
    """One running container derived from a descriptor entry."""

    model_config = {"frozen": True}

    kind: ServiceKind
    version: str
    service_name: str
    container_name: str
    image: str
    port: int
    extra_ports: tuple[int, ...] = ()
    memory: str | None = None
    fallback: bool = False

    @property
    def identity(self) -> Identity:
        return (self.kind, self.version)

    @property
    def label(self) -> str:
        return f"{KIND_LABELS[self.kind]} {self.version}"

    @property
    def host_ports(self) -> tuple[int, ...]:
        return (self.port, *self.extra_ports)


def service_name_for(kind: ServiceKind, version: str) -> str:
    """Compose service key, e.g. ``mysql-8.0``."""
    return f"{kind.value}-{version}"


def container_name_for(kind: ServiceKind, version: str) -> str:
    """Container name, e.g. ``boxctl-mysql-8.0``."""
    return f"{CONTAINER_PREFIX}-{kind.value}-{version}"


def instance_for(kind: ServiceKind, cfg: ServiceConfig) -> ServiceInstance:
    """Build the instance for one enabled descriptor entry."""
    allocation = allocate(kind, cfg.version)
    port = cfg.port if cfg.port is not None else allocation.port
    return ServiceInstance(
        kind=kind,
        version=allocation.version,
        service_name=service_name_for(kind, allocation.version),
        container_name=container_name_for(kind, allocation.version),
        image=IMAGES[kind].format(version=allocation.version),
        port=port,
        extra_ports=allocation.extra_ports,
        memory=cfg.memory,
        fallback=allocation.fallback,
    )


def derive_instances(config: ProjectConfig) -> list[ServiceInstance]:
    """All instances a single project needs, in kind order."""
    return [instance_for(kind, cfg) for kind, cfg in config.services.enabled()]


def union_instances(configs: Iterable[ProjectConfig]) -> list[ServiceInstance]:
    """Deduplicated instances required by *configs*.

    The first project (in name order) declaring an identity decides its
    per-instance options such as ``memory``.
    """
    by_identity: dict[Identity, ServiceInstance] = {}
    for config in sorted(configs, key=lambda c: c.name):
        for instance in derive_instances(config):
            by_identity.setdefault(instance.identity, instance)
    return sorted(by_identity.values(), key=lambda i: (list(ServiceKind).index(i.kind), i.version))


def usage_counts(configs: Iterable[ProjectConfig]) -> dict[Identity, list[str]]:
    """Map each identity to the names of the projects declaring it."""
    usage: dict[Identity, list[str]] = {}
    for config in configs:
        for instance in derive_instances(config):
            users = usage.setdefault(instance.identity, [])
            if config.name not in users:
                users.append(config.name)
    return {identity: sorted(names) for identity, names in usage.items()}


def check_conflicts(instances: Iterable[ServiceInstance]) -> None:
    """Verify that distinct identities never bind the same host port.

    Raises:
        ResourceConflictError: Listing each clash, e.g. an unknown version that
            fell back onto the latest-stable port already used by that version.
    """
    owners: dict[int, ServiceInstance] = {}
    conflicts: list[str] = []
    for instance in instances:
        for port in instance.host_ports:
            other = owners.get(port)
            if other is None:
                owners[port] = instance
            elif other.identity != instance.identity:
                conflicts.append(f"port {port}: {other.label} and {instance.label}")
    if conflicts:
        raise ResourceConflictError(
            "Services would bind the same host port: " + "; ".join(conflicts),
            conflicts=conflicts,
        )


def check_shared_ports(configs: Iterable[ProjectConfig]) -> None:
    """Verify that projects sharing an identity request the same host port.

    :func:`union_instances` keeps one instance per identity, so a second
    project asking for a different port would be told a port nothing binds.

    Raises:
        ResourceConflictError: Listing each identity with disagreeing ports.
    """
    declared: dict[Identity, tuple[int, str]] = {}
    conflicts: list[str] = []
    for config in sorted(configs, key=lambda c: c.name):
        for instance in derive_instances(config):
            first = declared.setdefault(instance.identity, (instance.port, config.name))
            if first[0] != instance.port:
                conflicts.append(
                    f"{instance.label}: port {first[0]} for {first[1]!r} "
                    f"and port {instance.port} for {config.name!r}"
                )
    if conflicts:
        raise ResourceConflictError(
            "Projects sharing a service disagree on its host port: " + "; ".join(conflicts),
            conflicts=conflicts,
        )
