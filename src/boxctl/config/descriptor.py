"""Project descriptor I/O — ``.boxctl.yaml`` plus ``.boxctl.local.yaml``.

The local file is merged over the main one before validation: scalar
top-level keys and ``domains`` replace, while ``services``, ``env``,
``commands`` and ``php_ini`` merge key by key.
"""

from __future__ import annotations

import logging
from io import StringIO
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from boxctl.config.discovery import DESCRIPTOR_FILENAME, LOCAL_DESCRIPTOR_FILENAME
from boxctl.domain.errors import ConfigError, ConfigNotFoundError
from boxctl.domain.project import ProjectConfig, ServiceConfig

logger = logging.getLogger(__name__)

_MERGED_MAPS = ("services", "env", "commands", "php_ini")


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = YAML(typ="safe").load(path.read_text(encoding="utf-8"))
    except YAMLError as exc:
        raise ConfigError(f"cannot parse {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def merge_local(main: dict[str, Any], local: dict[str, Any]) -> dict[str, Any]:
    """Apply a local override document on top of the main descriptor.

    Examples:
        >>> merge_local({"php": "8.2", "env": {"A": "1"}}, {"php": "8.3", "env": {"B": "2"}})
        {'php': '8.3', 'env': {'A': '1', 'B': '2'}}
    """
    merged = dict(main)
    for key, value in local.items():
        if key in _MERGED_MAPS and isinstance(value, dict):
            base = merged.get(key) or {}
            merged[key] = {**base, **value}
        elif value not in (None, "", []):
            merged[key] = value
    return merged


def load_descriptor(project_dir: Path) -> ProjectConfig:
    """Parse the descriptor in *project_dir* into a :class:`ProjectConfig`.

    Only typing happens here; cross-field rules are applied by
    :func:`boxctl.domain.project.validate_structure`.

    Raises:
        ConfigNotFoundError: If ``.boxctl.yaml`` does not exist.
        ConfigError: If either file cannot be parsed or typed.
    """
    main_path = project_dir / DESCRIPTOR_FILENAME
    if not main_path.is_file():
        raise ConfigNotFoundError(f"no {DESCRIPTOR_FILENAME} found in {project_dir}")

    data = _read_yaml(main_path)
    local_path = project_dir / LOCAL_DESCRIPTOR_FILENAME
    if local_path.is_file():
        logger.debug("Merging local overrides from %s", local_path)
        data = merge_local(data, _read_yaml(local_path))

    try:
        return ProjectConfig.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ConfigError(f"{main_path.name}: {location}: {first['msg']}") from exc


def _service_entry(cfg: ServiceConfig) -> Any:
    """Shortest descriptor form for a service entry."""
    if not cfg.enabled:
        return False
    if cfg.port is None and cfg.memory is None:
        return cfg.version if cfg.version else True
    return cfg.model_dump(exclude_none=True, exclude={"enabled"})


def to_descriptor_data(config: ProjectConfig) -> dict[str, Any]:
    """Plain dict in descriptor key order, omitting empty sections."""
    data: dict[str, Any] = {
        "name": config.name,
        "domains": [d.model_dump() for d in config.domains],
        "php": config.php,
    }
    services = {
        name: _service_entry(cfg)
        for name, cfg in config.services
        if cfg is not None
    }
    if services:
        data["services"] = services
    if config.php_ini:
        data["php_ini"] = dict(config.php_ini)
    if config.env:
        data["env"] = dict(config.env)
    if config.commands:
        data["commands"] = {
            name: cmd.model_dump(exclude_defaults=True) if cmd.description else cmd.run
            for name, cmd in config.commands.items()
        }
    return data


def dump_descriptor(config: ProjectConfig) -> str:
    y = YAML()
    y.default_flow_style = False
    buf = StringIO()
    y.dump(to_descriptor_data(config), buf)
    return buf.getvalue()


def write_descriptor(config: ProjectConfig, project_dir: Path, *, force: bool = False) -> Path:
    """Write ``.boxctl.yaml`` into *project_dir*.

    Raises:
        ConfigError: If a descriptor already exists and *force* is not set.
    """
    path = project_dir / DESCRIPTOR_FILENAME
    if path.exists() and not force:
        raise ConfigError(f"{path} already exists")
    path.write_text(dump_descriptor(config), encoding="utf-8")
    return path
