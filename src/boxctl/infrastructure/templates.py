"""Shared Jinja2 template loading with per-host override support."""

from __future__ import annotations

from pathlib import Path

from jinja2 import BaseLoader, ChoiceLoader, Environment, FileSystemLoader, PackageLoader

TEMPLATE_GROUPS: tuple[str, ...] = ("dns", "nginx", "php", "varnish")


def override_root(state_dir: Path) -> Path:
    return state_dir / "templates"


def build_template_environment(group: str, *, state_dir: Path | None = None) -> Environment:
    """Build a Jinja2 environment with user overrides before packaged defaults.

    User overrides are loaded from ``<state_dir>/templates/<group>/``, so a
    file such as ``~/.boxctl/templates/nginx/vhost.conf.j2`` replaces the
    packaged vhost template for every project on the host.
    """

    loaders: list[BaseLoader] = []
    if state_dir is not None:
        loaders.append(FileSystemLoader(str(override_root(state_dir) / group)))

    loaders.append(PackageLoader("boxctl", f"templates/{group}"))
    return Environment(
        loader=ChoiceLoader(loaders),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def list_group_templates(group: str, *, state_dir: Path | None = None) -> list[tuple[str, bool]]:
    """``(name, overridden)`` for every template visible in *group*."""
    packaged = set(PackageLoader("boxctl", f"templates/{group}").list_templates())
    overrides: set[str] = set()
    if state_dir is not None:
        group_dir = override_root(state_dir) / group
        if group_dir.is_dir():
            overrides = set(FileSystemLoader(str(group_dir)).list_templates())
    return [(name, name in overrides) for name in sorted(packaged | overrides)]
