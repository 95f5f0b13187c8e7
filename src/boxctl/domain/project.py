"""Project descriptor models — the typed form of ``.boxctl.yaml``.

Model attributes map 1:1 to descriptor keys. Service entries accept the
three shorthand forms the descriptor allows::

    services:
      redis: true            # latest-stable version
      mysql: "8.0"           # explicit version
      opensearch:            # mapping with extra options
        version: "2.19"
        memory: 2g

Structural validation that needs the whole descriptor (unique hosts, a
single relational engine) lives in :func:`validate_structure`.
"""

from __future__ import annotations

import re
from typing import Any, Self

from pydantic import BaseModel, Field, field_validator, model_validator

from boxctl.domain.errors import ConfigError
from boxctl.domain.phpini import has_control_chars
from boxctl.domain.ports import RELATIONAL_KINDS, ServiceKind

_DB_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9_]")
_PROJECT_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _scalar_to_str(value: Any) -> Any:
    """Coerce YAML scalars (``8.0`` parses as a float) to strings."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    return value


class ServiceConfig(BaseModel):
    """One service entry under ``services:``."""

    model_config = {"frozen": True, "extra": "forbid"}

    enabled: bool = True
    version: str | None = None
    port: int | None = None
    memory: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _expand_shorthand(cls, data: Any) -> Any:
        if data is None or isinstance(data, bool):
            return {"enabled": bool(data)}
        if isinstance(data, (str, int, float)):
            return {"enabled": True, "version": str(data)}
        if isinstance(data, dict):
            expanded = dict(data)
            if "version" in expanded:
                expanded["version"] = _scalar_to_str(expanded["version"])
            expanded.setdefault("enabled", True)
            return expanded
        return data


class Services(BaseModel):
    """The ``services:`` map. Unknown service kinds are rejected."""

    model_config = {"frozen": True, "extra": "forbid"}

    mysql: ServiceConfig | None = None
    mariadb: ServiceConfig | None = None
    redis: ServiceConfig | None = None
    opensearch: ServiceConfig | None = None
    elasticsearch: ServiceConfig | None = None
    rabbitmq: ServiceConfig | None = None
    mailpit: ServiceConfig | None = None
    varnish: ServiceConfig | None = None

    def get(self, kind: ServiceKind) -> ServiceConfig | None:
        cfg: ServiceConfig | None = getattr(self, kind.value)
        if cfg is None or not cfg.enabled:
            return None
        return cfg

    def enabled(self) -> list[tuple[ServiceKind, ServiceConfig]]:
        """Enabled services in declaration-independent, kind order."""
        result: list[tuple[ServiceKind, ServiceConfig]] = []
        for kind in ServiceKind:
            cfg = self.get(kind)
            if cfg is not None:
                result.append((kind, cfg))
        return result

    def has(self, kind: ServiceKind) -> bool:
        return self.get(kind) is not None


class Domain(BaseModel):
    """One entry under ``domains:``."""

    model_config = {"frozen": True, "extra": "forbid"}

    host: str
    root: str = "pub"
    ssl: bool = True


class Command(BaseModel):
    """A custom project command (``commands:``), string or mapping form."""

    model_config = {"frozen": True}

    run: str
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _expand_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"run": data}
        return data


class ProjectConfig(BaseModel):
    """Root descriptor model."""

    model_config = {"frozen": True, "extra": "forbid"}

    name: str = ""
    domains: list[Domain] = Field(default_factory=list)
    php: str = ""
    services: Services = Field(default_factory=Services)
    php_ini: dict[str, str] = Field(default_factory=dict)
    env: dict[str, str] = Field(default_factory=dict)
    commands: dict[str, Command] = Field(default_factory=dict)

    @field_validator("php", mode="before")
    @classmethod
    def _php_to_str(cls, value: Any) -> Any:
        return _scalar_to_str(value)

    @field_validator("php_ini", "env", mode="before")
    @classmethod
    def _values_to_str(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): _scalar_to_str(v) for k, v in value.items()}
        return value

    @property
    def hosts(self) -> list[str]:
        return [d.host for d in self.domains]

    @property
    def database_name(self) -> str:
        """Logical database name inside the shared relational engine."""
        return _DB_NAME_UNSAFE.sub("_", self.name)

    @classmethod
    def scaffold(
        cls,
        name: str,
        *,
        tld: str = "test",
        php: str = "8.3",
        services: dict[str, Any] | None = None,
    ) -> Self:
        """Build a starter descriptor without any interactive input."""
        if services is None:
            services = {"mysql": "8.0", "redis": True}
        return cls.model_validate(
            {
                "name": name,
                "domains": [{"host": f"{name}.{tld}"}],
                "php": php,
                "services": services,
            }
        )


def validate_structure(config: ProjectConfig) -> None:
    """Reject descriptors that cannot be reconciled at all.

    Raises:
        ConfigError: On the first structural problem found.
    """
    if not config.name:
        raise ConfigError("name is required", field="name")
    if not _PROJECT_NAME.match(config.name):
        raise ConfigError(
            f"{config.name!r} must start with a letter or digit and contain only "
            "letters, digits, '.', '_' or '-'",
            field="name",
        )
    if not config.domains:
        raise ConfigError("at least one domain is required", field="domains")

    seen: dict[str, int] = {}
    for index, domain in enumerate(config.domains):
        host = domain.host.strip().lower()
        if not host:
            raise ConfigError("domain host is required", field="domains", index=index)
        if host in seen:
            raise ConfigError(
                f"host {domain.host!r} is declared twice (also at index {seen[host]})",
                field="domains",
                index=index,
            )
        seen[host] = index

    if not config.php:
        raise ConfigError("php version is required", field="php")

    for key, value in config.env.items():
        if not _ENV_NAME.match(key):
            raise ConfigError(f"{key!r} is not a valid variable name", field="env")
        if has_control_chars(value):
            raise ConfigError(f"{key}: control characters are not allowed", field="env")

    relational = [kind.value for kind in RELATIONAL_KINDS if config.services.has(kind)]
    if len(relational) > 1:
        raise ConfigError(
            "only one relational engine may be enabled (found: "
            + ", ".join(sorted(relational))
            + ")",
            field="services",
        )
