"""Unified settings — CLI flags, env vars, and TOML config in one object.

Priority chain (highest to lowest):
  1. Init kwargs  — CLI flags passed by Click
  2. Env vars     — ``BOXCTL_*`` prefix (``BOXCTL_DNS__TLD=local``)
  3. TOML file    — ``<state_dir>/config.toml`` or ``BOXCTL_CONFIG``
  4. Code defaults — baked into the section models

Uses Pydantic Settings v2 with a custom :class:`TomlSettingsSource` that
reuses :func:`boxctl.config.discovery.find_config`.
"""

from __future__ import annotations

import threading
import tomllib
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from boxctl.config.discovery import default_state_dir, find_config
from boxctl.config.models import DnsConfig, DockerConfig, PhpConfig, ToolsConfig


class TomlSettingsSource(PydanticBaseSettingsSource):
    """Read settings from the host ``config.toml``."""

    def __init__(self, settings_cls: type[BaseSettings], toml_path: Path | None) -> None:
        super().__init__(settings_cls)
        self._data: dict[str, Any] = {}
        if toml_path and toml_path.is_file():
            raw = toml_path.read_text(encoding="utf-8")
            try:
                self._data = tomllib.loads(raw)
            except tomllib.TOMLDecodeError as exc:
                import click

                msg = f"Invalid TOML in {toml_path}: {exc}"
                raise click.ClickException(msg) from exc

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        """Return ``(value, field_name, value_is_complex)``."""
        val = self._data.get(field_name)
        return val, field_name, field_name in self._data

    def __call__(self) -> dict[str, Any]:
        return self._data


# Thread-local storage for TOML path during construction.
_tls = threading.local()


class BoxSettings(BaseSettings):
    """Unified settings for the boxctl CLI.

    Stored in ``click.Context.obj`` (via :class:`AppContext`) at the CLI root.

    Attributes:
        state_dir: Host state directory holding every generated artifact.
        config_path: The TOML file the settings were read from, if any.
    """

    model_config = {
        "frozen": True,
        "env_prefix": "BOXCTL_",
        "env_nested_delimiter": "__",
    }

    state_dir: Path = Field(default_factory=default_state_dir)
    config_path: Path | None = None

    # --- CLI flags ---
    json_output: bool = False
    quiet: bool = False
    verbose: bool = False
    log_json: bool = False

    # --- TOML sections ---
    dns: DnsConfig = Field(default_factory=DnsConfig)
    docker: DockerConfig = Field(default_factory=DockerConfig)
    php: PhpConfig = Field(default_factory=PhpConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Insert TOML source between env vars and defaults."""
        toml_path = getattr(_tls, "toml_path", None)
        return (
            init_settings,
            env_settings,
            TomlSettingsSource(settings_cls, toml_path),
        )

    @classmethod
    def from_cli(
        cls,
        *,
        config_path: str | None = None,
        state_dir: Path | None = None,
        **cli_flags: Any,
    ) -> BoxSettings:
        """Construct settings from a CLI invocation.

        Uses the explicit *config_path* when given, otherwise discovers
        ``config.toml`` in the state directory. CLI flags win over everything.
        """
        toml_path: Path | None = None
        if config_path:
            p = Path(config_path)
            if p.is_file():
                toml_path = p
        else:
            toml_path = find_config(state_dir)

        kwargs: dict[str, Any] = dict(cli_flags)
        if state_dir is not None:
            kwargs["state_dir"] = state_dir

        _tls.toml_path = toml_path
        try:
            return cls(config_path=toml_path, **kwargs)
        finally:
            _tls.toml_path = None
