"""Port/resource allocator — a pure ``(kind, version) -> port`` table.

Every versioned service binds a fixed host port so that several versions of
the same engine can run side by side. The table is injective: no two
``(kind, version)`` entries share a host port, including secondary ports
(management UIs, admin consoles). :func:`validate_port_table` enforces this.

Versions missing from the table fall back to the kind's latest-stable entry
(``Allocation.fallback``) so newly released upstream images stay usable; the
caller surfaces that as a warning.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum

from boxctl.domain.errors import ResourceConflictError


class ServiceKind(StrEnum):
    """Container-backed service kinds a project may declare."""

    MYSQL = "mysql"
    MARIADB = "mariadb"
    REDIS = "redis"
    OPENSEARCH = "opensearch"
    ELASTICSEARCH = "elasticsearch"
    RABBITMQ = "rabbitmq"
    MAILPIT = "mailpit"
    VARNISH = "varnish"


RELATIONAL_KINDS = frozenset({ServiceKind.MYSQL, ServiceKind.MARIADB})
SEARCH_KINDS = frozenset({ServiceKind.OPENSEARCH, ServiceKind.ELASTICSEARCH})

KIND_LABELS: dict[ServiceKind, str] = {
    ServiceKind.MYSQL: "MySQL",
    ServiceKind.MARIADB: "MariaDB",
    ServiceKind.REDIS: "Redis",
    ServiceKind.OPENSEARCH: "OpenSearch",
    ServiceKind.ELASTICSEARCH: "Elasticsearch",
    ServiceKind.RABBITMQ: "RabbitMQ",
    ServiceKind.MAILPIT: "Mailpit",
    ServiceKind.VARNISH: "Varnish",
}


@dataclass(frozen=True)
class PortSpec:
    """Host ports bound by one ``(kind, version)``: primary plus secondaries."""

    port: int
    extra: tuple[int, ...] = ()

    @property
    def all_ports(self) -> tuple[int, ...]:
        return (self.port, *self.extra)


PORT_TABLE: dict[ServiceKind, dict[str, PortSpec]] = {
    ServiceKind.MYSQL: {
        "5.7": PortSpec(33057),
        "8.0": PortSpec(33080),
        "8.4": PortSpec(33084),
    },
    ServiceKind.MARIADB: {
        "10.4": PortSpec(33104),
        "10.5": PortSpec(33105),
        "10.6": PortSpec(33106),
        "10.11": PortSpec(33111),
        "11.0": PortSpec(33110),
        "11.4": PortSpec(33114),
    },
    ServiceKind.REDIS: {
        "6.2": PortSpec(6380),
        "7.2": PortSpec(6379),
    },
    ServiceKind.OPENSEARCH: {
        "1.3": PortSpec(9213),
        "2.5": PortSpec(9225),
        "2.12": PortSpec(9212),
        "2.19": PortSpec(9200),
    },
    ServiceKind.ELASTICSEARCH: {
        "7.17": PortSpec(9217),
        "8.11": PortSpec(9281),
        "8.17": PortSpec(9287),
    },
    ServiceKind.RABBITMQ: {
        "3.13": PortSpec(5672, (15672,)),
    },
    ServiceKind.MAILPIT: {
        "1.21": PortSpec(1025, (8025,)),
    },
    ServiceKind.VARNISH: {
        "7.5": PortSpec(6081, (6082,)),
    },
}

# Latest-stable version per kind: the default for ``kind: true`` and the
# fallback target for versions missing from the table.
LATEST_STABLE: dict[ServiceKind, str] = {
    ServiceKind.MYSQL: "8.4",
    ServiceKind.MARIADB: "11.4",
    ServiceKind.REDIS: "7.2",
    ServiceKind.OPENSEARCH: "2.19",
    ServiceKind.ELASTICSEARCH: "8.17",
    ServiceKind.RABBITMQ: "3.13",
    ServiceKind.MAILPIT: "1.21",
    ServiceKind.VARNISH: "7.5",
}


@dataclass(frozen=True)
class Allocation:
    """Result of a port lookup.

    Attributes:
        kind: Service kind.
        version: The requested version (what the container image runs).
        port: Primary host port.
        extra_ports: Secondary host ports.
        fallback: True when *version* was not in the table and the
            latest-stable entry's ports were used instead.
    """

    kind: ServiceKind
    version: str
    port: int
    extra_ports: tuple[int, ...] = ()
    fallback: bool = False


def known_versions(kind: ServiceKind) -> list[str]:
    """Versions with a fixed table entry for *kind*."""
    return list(PORT_TABLE[kind])


def allocate(kind: ServiceKind | str, version: str | None = None) -> Allocation:
    """Map ``(kind, version)`` to its fixed host ports.

    An empty *version* selects the kind's latest-stable version. Unknown
    versions fall back to the latest-stable ports with ``fallback=True``.

    Raises:
        ValueError: If *kind* is not a known service kind.
    """
    kind = ServiceKind(kind)
    table = PORT_TABLE[kind]
    resolved = version or LATEST_STABLE[kind]
    spec = table.get(resolved)
    if spec is not None:
        return Allocation(kind=kind, version=resolved, port=spec.port, extra_ports=spec.extra)
    latest = table[LATEST_STABLE[kind]]
    return Allocation(
        kind=kind,
        version=resolved,
        port=latest.port,
        extra_ports=latest.extra,
        fallback=True,
    )


def validate_port_table(table: Mapping[ServiceKind, Mapping[str, PortSpec]] | None = None) -> None:
    """Verify that no two ``(kind, version)`` entries share a host port.

    Raises:
        ResourceConflictError: Listing every colliding pair.
    """
    table = PORT_TABLE if table is None else table
    owners: dict[int, str] = {}
    conflicts: list[str] = []
    for kind, versions in table.items():
        for version, spec in versions.items():
            identity = f"{kind}:{version}"
            for port in spec.all_ports:
                previous = owners.get(port)
                if previous is not None:
                    conflicts.append(f"port {port}: {previous} and {identity}")
                else:
                    owners[port] = identity
    if conflicts:
        raise ResourceConflictError(
            "Port table maps distinct services to the same host port",
            conflicts=conflicts,
        )
